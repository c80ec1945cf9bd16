"""
Explicit-consent prompts raised during a completion action.

The only prompt today: a manual material cost is about to be used while some
expense slips carry no amount. The orchestrator asks, waits for the answer and
stops without touching the remote system if the operator declines.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Optional, Protocol

from src.backend.jobs.use_cases.cost_calculations import format_money

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ConfirmationRequest:
    entity_id: int
    unattributed_count: int
    manual_cost: Decimal
    currency_symbol: str = "R"
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def message(self) -> str:
        return (
            f"Warning: {self.unattributed_count} expense slip(s) do not have amounts "
            f"specified. The manual material cost of "
            f"{format_money(self.manual_cost, currency_symbol=self.currency_symbol)} "
            f"will be used. Continue?"
        )


class Confirmer(Protocol):
    async def confirm(self, request: ConfirmationRequest) -> bool: ...


class StaticConfirmer:
    """Answers every prompt the same way (API flag, scripts, tests)."""

    def __init__(self, answer: bool):
        self.answer = answer
        self.requests: list[ConfirmationRequest] = []

    async def confirm(self, request: ConfirmationRequest) -> bool:
        self.requests.append(request)
        logger.info(
            "Confirmation %s auto-answered %s: %s",
            request.request_id,
            self.answer,
            request.message,
        )
        return self.answer


class PendingConfirmationManager:
    """
    Event-driven confirmation: the prompt is published, and the orchestrator
    waits until another handler records the operator's answer or the timeout
    expires. A timeout counts as a decline.
    """

    def __init__(self, default_timeout: float = 300.0):
        self.default_timeout = default_timeout
        self.pending: Dict[str, ConfirmationRequest] = {}
        self.answers: Dict[str, Optional[bool]] = {}
        self._events: Dict[str, asyncio.Event] = {}

    def set_pending(self, request: ConfirmationRequest) -> None:
        """Mark a prompt pending and create/reset its event."""
        self.pending[request.request_id] = request
        self.answers[request.request_id] = None
        if request.request_id not in self._events:
            self._events[request.request_id] = asyncio.Event()
        else:
            self._events[request.request_id].clear()

    def set_answer(self, request_id: str, approved: bool) -> None:
        """Record the operator's answer and wake the waiting orchestrator."""
        if request_id not in self.answers:
            raise KeyError(f"Confirmation {request_id} is not pending")
        self.answers[request_id] = approved
        event = self._events.get(request_id)
        if event is not None:
            event.set()

    async def confirm(
        self, request: ConfirmationRequest, timeout: Optional[float] = None
    ) -> bool:
        if timeout is None:
            timeout = self.default_timeout

        self.set_pending(request)
        logger.info("Waiting for confirmation %s", request.request_id)
        try:
            await asyncio.wait_for(self._events[request.request_id].wait(), timeout=timeout)
            answer = bool(self.answers.get(request.request_id))
            logger.info("Confirmation %s answered: %s", request.request_id, answer)
            return answer
        except asyncio.TimeoutError:
            logger.warning(
                "Confirmation %s timed out after %ss; treating as declined",
                request.request_id,
                timeout,
            )
            return False
        finally:
            self.cleanup(request.request_id)

    def cleanup(self, request_id: str) -> None:
        self.pending.pop(request_id, None)
        self.answers.pop(request_id, None)
        self._events.pop(request_id, None)


class TimedConfirmer:
    """Routes prompts to a shared manager with a per-action timeout."""

    def __init__(self, manager: PendingConfirmationManager, timeout: float):
        self.manager = manager
        self.timeout = timeout

    async def confirm(self, request: ConfirmationRequest) -> bool:
        return await self.manager.confirm(request, timeout=self.timeout)
