"""
Configuration settings for the artisan completion backend.
Handles environment setup (RPC endpoint, downloads) and the YAML completion policy.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

from src.backend.jobs.use_cases.completion_checks import GatePolicy

load_dotenv(override=False)

logger = logging.getLogger(__name__)


def _repo_root_from_this_file() -> Path:
    """settings.py is at: src/backend/jobs/config/settings.py"""
    return Path(__file__).resolve().parents[4]


DEFAULT_POLICY_PATH = _repo_root_from_this_file() / "data" / "completion_policy.yaml"


@dataclass(frozen=True, slots=True)
class NotificationPolicy:
    error_duration_seconds: float = 10.0
    default_duration_seconds: float = 4.0


@dataclass(frozen=True, slots=True)
class CompletionPolicy:
    """Thresholds and UX timings loaded from the policy YAML."""

    gate: GatePolicy = field(default_factory=GatePolicy)
    notifications: NotificationPolicy = field(default_factory=NotificationPolicy)
    confirmation_timeout_seconds: float = 300.0
    currency_symbol: str = "R"


def _int_or(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _float_or(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def load_completion_policy(path: Optional[Path] = None) -> CompletionPolicy:
    """Load the completion policy YAML; a missing file means defaults."""
    policy_path = Path(path) if path else DEFAULT_POLICY_PATH
    if not policy_path.exists():
        logger.warning("Completion policy not found at %s; using defaults", policy_path)
        return CompletionPolicy()

    with open(policy_path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    root = raw.get("completion_policy") or {}
    evidence = root.get("evidence") or {}
    notifications = root.get("notifications") or {}
    confirmation = root.get("confirmation") or {}

    defaults = GatePolicy()
    gate = GatePolicy(
        min_after_photos=_int_or(evidence.get("min_after_photos"), defaults.min_after_photos),
        min_before_photos=_int_or(evidence.get("min_before_photos"), defaults.min_before_photos),
        min_expense_records=_int_or(
            evidence.get("min_expense_records"), defaults.min_expense_records
        ),
    )
    note_defaults = NotificationPolicy()
    return CompletionPolicy(
        gate=gate,
        notifications=NotificationPolicy(
            error_duration_seconds=_float_or(
                notifications.get("error_duration_seconds"),
                note_defaults.error_duration_seconds,
            ),
            default_duration_seconds=_float_or(
                notifications.get("default_duration_seconds"),
                note_defaults.default_duration_seconds,
            ),
        ),
        confirmation_timeout_seconds=_float_or(confirmation.get("timeout_seconds"), 300.0),
        currency_symbol=str(root.get("currency_symbol") or "R"),
    )


@dataclass(frozen=True, slots=True)
class CompletionSettings:
    """Runtime settings resolved from environment variables."""

    rpc_base_url: str
    rpc_timeout_seconds: float
    download_dir: Path
    policy_path: Path
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "CompletionSettings":
        load_dotenv(override=False)
        policy_path = os.environ.get("COMPLETION_POLICY_PATH")
        return cls(
            rpc_base_url=os.environ.get("PLATFORM_RPC_BASE_URL", "http://127.0.0.1:3000"),
            rpc_timeout_seconds=_float_or(
                os.environ.get("PLATFORM_RPC_TIMEOUT_SECONDS"), 30.0
            ),
            download_dir=Path(
                os.environ.get("COMPLETION_DOWNLOAD_DIR", os.path.abspath("downloads"))
            ),
            policy_path=Path(policy_path) if policy_path else DEFAULT_POLICY_PATH,
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
        )

    def load_policy(self) -> CompletionPolicy:
        return load_completion_policy(self.policy_path)
