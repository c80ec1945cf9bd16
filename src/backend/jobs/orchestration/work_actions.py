"""Single-call artisan actions that sit around a completion.

Each action validates locally, then makes exactly one remote call. Errors use
the same taxonomy as the completion orchestrator: ValidationFailure before the
call, RemoteCallFailure if the call fails.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from pathlib import Path
from typing import Any, Optional

from src.backend.jobs.config.settings import CompletionPolicy
from src.backend.jobs.errors import DecodeFailure, RemoteCallFailure
from src.backend.jobs.integrations.documents import (
    DocumentSaver,
    decode_document_payload,
    document_filename,
    extract_encoded_payload,
)
from src.backend.jobs.integrations.trpc_client import CompletionRemote
from src.backend.jobs.models.completion import (
    AccessCredential,
    CompletionVariant,
    DocumentKind,
    JobStatus,
    MilestoneStatus,
    ProgressUpdate,
    QuotationStatus,
    to_utc_timestamp,
)
from src.backend.jobs.use_cases.completion_checks import (
    check_progress_update,
    check_start_work,
)

logger = logging.getLogger(__name__)

STEP_STATUS = "CommittingStatus"
STEP_DOCUMENT = "GeneratingDocument"


@dataclass(frozen=True, slots=True)
class WeekWindow:
    start: datetime
    end: datetime

    def to_wire(self) -> dict[str, str]:
        return {
            "weekStartDate": to_utc_timestamp(self.start),
            "weekEndDate": to_utc_timestamp(self.end),
        }


def current_week_window(now: datetime) -> WeekWindow:
    """Sunday 00:00:00.000 through Saturday 23:59:59.999 of the week containing ``now``."""
    days_since_sunday = (now.weekday() + 1) % 7
    start = datetime.combine(
        (now - timedelta(days=days_since_sunday)).date(), time.min, tzinfo=now.tzinfo
    )
    end = start + timedelta(days=6, hours=23, minutes=59, seconds=59, milliseconds=999)
    return WeekWindow(start=start, end=end)


def _strip_or_none(value: Optional[str]) -> Optional[str]:
    stripped = (value or "").strip()
    return stripped or None


async def _update_status(
    remote: CompletionRemote,
    variant: CompletionVariant,
    entity_id: int,
    payload: dict[str, Any],
    *,
    credential: AccessCredential,
) -> dict[str, Any]:
    try:
        return await remote.update_status(
            variant, entity_id, payload, credential=credential
        )
    except Exception as e:
        logger.error("%s %s status update failed: %s", variant.value, entity_id, e)
        raise RemoteCallFailure(STEP_STATUS, e) from e


async def start_job(
    remote: CompletionRemote,
    order_id: int,
    before_photos: list[str],
    *,
    credential: AccessCredential,
    is_pm_order: bool = False,
    policy: Optional[CompletionPolicy] = None,
) -> dict[str, Any]:
    policy = policy or CompletionPolicy()
    check_start_work(before_photos, policy=policy.gate).raise_for_failure()

    logger.info("Starting job %s with %s before photo(s)", order_id, len(before_photos))
    return await _update_status(
        remote,
        CompletionVariant.JOB,
        order_id,
        {
            "status": JobStatus.IN_PROGRESS.value,
            "isPMOrder": is_pm_order,
            "beforePictures": list(before_photos),
        },
        credential=credential,
    )


async def start_quotation(
    remote: CompletionRemote,
    quotation_id: int,
    before_photos: list[str],
    *,
    credential: AccessCredential,
    policy: Optional[CompletionPolicy] = None,
) -> dict[str, Any]:
    policy = policy or CompletionPolicy()
    check_start_work(before_photos, policy=policy.gate).raise_for_failure()

    logger.info("Starting quotation %s", quotation_id)
    return await _update_status(
        remote,
        CompletionVariant.QUOTATION,
        quotation_id,
        {
            "status": QuotationStatus.IN_PROGRESS.value,
            "beforePictures": list(before_photos),
        },
        credential=credential,
    )


async def start_milestone(
    remote: CompletionRemote,
    milestone_id: int,
    *,
    credential: AccessCredential,
) -> dict[str, Any]:
    logger.info("Starting milestone %s", milestone_id)
    return await _update_status(
        remote,
        CompletionVariant.MILESTONE,
        milestone_id,
        {"status": MilestoneStatus.IN_PROGRESS.value},
        credential=credential,
    )


def progress_update_payload(update: ProgressUpdate, window: WeekWindow) -> dict[str, Any]:
    """Wire payload for a weekly progress report; blank optional fields are omitted."""
    payload: dict[str, Any] = {
        "status": MilestoneStatus.IN_PROGRESS.value,
        "progressPercentage": float(update.progress_percentage),
        **window.to_wire(),
    }
    optional = {
        "workDone": _strip_or_none(update.work_done),
        "challenges": _strip_or_none(update.challenges),
        "successes": _strip_or_none(update.successes),
        "nextWeekPlan": _strip_or_none(update.next_week_plan),
    }
    payload.update({k: v for k, v in optional.items() if v is not None})
    if update.images_done:
        payload["imagesDone"] = list(update.images_done)
    if update.itemized_expenses:
        payload["itemizedExpenses"] = [line.to_wire() for line in update.itemized_expenses]
    return payload


async def update_milestone_progress(
    remote: CompletionRemote,
    update: ProgressUpdate,
    *,
    credential: AccessCredential,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    check_progress_update(update).raise_for_failure()

    window = current_week_window(now or datetime.now())
    logger.info(
        "Milestone %s progress %s%% for week %s",
        update.milestone_id,
        update.progress_percentage,
        window.start.date(),
    )
    return await _update_status(
        remote,
        CompletionVariant.MILESTONE,
        update.milestone_id,
        progress_update_payload(update, window),
        credential=credential,
    )


async def download_order_summary(
    remote: CompletionRemote,
    order_id: int,
    *,
    credential: AccessCredential,
    saver: DocumentSaver,
    order_number: Optional[str] = None,
    is_pm_order: bool = False,
) -> Path:
    """Generate the order summary PDF and save it as ``order-summary-{number}.pdf``."""
    kind = DocumentKind.ORDER_SUMMARY
    try:
        response = await remote.generate_document(
            kind, order_id, credential=credential, is_pm_order=is_pm_order
        )
    except Exception as e:
        logger.error("Order summary for %s failed: %s", order_id, e)
        raise RemoteCallFailure(STEP_DOCUMENT, e) from e

    filename = document_filename(kind, order_number or str(order_id))
    try:
        content = decode_document_payload(extract_encoded_payload(response))
        return saver.save(filename, content)
    except (ValueError, OSError) as e:
        raise DecodeFailure(kind.value, e) from e
