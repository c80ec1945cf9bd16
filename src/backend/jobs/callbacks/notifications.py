"""
User-facing notifications for completion actions.

Errors from remote steps stay on screen longer than the default toast because
they may describe a half-finished completion.
"""

import logging
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional, Protocol

from src.backend.jobs.config.settings import NotificationPolicy

logger = logging.getLogger(__name__)


class NotificationLevel(str, Enum):
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(slots=True)
class Notification:
    level: NotificationLevel
    message: str
    duration_seconds: float
    step: Optional[str] = None
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["level"] = self.level.value
        return data


class Notifier(Protocol):
    async def notify(self, notification: Notification) -> None: ...


class NotificationFactory:
    """Builds notifications with durations taken from the policy."""

    def __init__(self, policy: Optional[NotificationPolicy] = None):
        self.policy = policy or NotificationPolicy()

    def success(self, message: str) -> Notification:
        return Notification(
            NotificationLevel.SUCCESS, message, self.policy.default_duration_seconds
        )

    def info(self, message: str) -> Notification:
        return Notification(
            NotificationLevel.INFO, message, self.policy.default_duration_seconds
        )

    def warning(self, message: str, step: Optional[str] = None) -> Notification:
        return Notification(
            NotificationLevel.WARNING,
            message,
            self.policy.default_duration_seconds,
            step=step,
        )

    def error(self, message: str, step: Optional[str] = None) -> Notification:
        return Notification(
            NotificationLevel.ERROR,
            message,
            self.policy.error_duration_seconds,
            step=step,
        )

    def validation(self, message: str) -> Notification:
        """Gate failures are quick to fix, so they use the short duration."""
        return Notification(
            NotificationLevel.ERROR, message, self.policy.default_duration_seconds
        )


class LoggingNotifier:
    """Writes notifications to the application log."""

    _LEVELS = {
        NotificationLevel.SUCCESS: logging.INFO,
        NotificationLevel.INFO: logging.INFO,
        NotificationLevel.WARNING: logging.WARNING,
        NotificationLevel.ERROR: logging.ERROR,
    }

    async def notify(self, notification: Notification) -> None:
        logger.log(
            self._LEVELS[notification.level],
            "[%s] %s (step=%s, %.0fs)",
            notification.level.value,
            notification.message,
            notification.step,
            notification.duration_seconds,
        )


class RecordingNotifier:
    """Keeps notifications in memory so a caller can return them."""

    def __init__(self, forward_to: Optional[Notifier] = None):
        self.notifications: list[Notification] = []
        self._forward_to = forward_to

    async def notify(self, notification: Notification) -> None:
        self.notifications.append(notification)
        if self._forward_to is not None:
            await self._forward_to.notify(notification)

    def to_list(self) -> list[dict[str, Any]]:
        return [n.to_dict() for n in self.notifications]
