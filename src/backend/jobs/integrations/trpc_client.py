"""Platform RPC connector.

Purpose
- Provide a small, testable async wrapper for the platform's tRPC mutations
  that a completion action needs.
- Keep procedure names, id keys and envelope handling in one place.

The platform speaks tRPC over HTTP with the SuperJSON transformer: a mutation is
``POST {base}/trpc/{procedure}`` with body ``{"json": input}`` and answers with
``{"result": {"data": {"json": output}}}``. Errors come back as
``{"error": {"json": {"message": ..., "data": {"code": ..., "httpStatus": ...}}}}``.

This module is intentionally independent of FastAPI and the orchestrator.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Protocol

import httpx
from dotenv import load_dotenv

from src.backend.jobs.errors import RemoteCallError
from src.backend.jobs.models.completion import (
    AccessCredential,
    CompletionVariant,
    DocumentKind,
)

load_dotenv(override=False)

logger = logging.getLogger(__name__)


# variant -> (procedure, id key)
STATUS_PROCEDURES: dict[CompletionVariant, tuple[str, str]] = {
    CompletionVariant.JOB: ("updateOrderStatus", "orderId"),
    CompletionVariant.MILESTONE: ("updateMilestoneStatus", "milestoneId"),
    CompletionVariant.QUOTATION: ("updateQuotationStatus", "quotationId"),
    CompletionVariant.REVIEW_EDIT: ("updateCompletedOrderDetails", "orderId"),
}

PAYMENT_PROCEDURES: dict[CompletionVariant, str] = {
    CompletionVariant.JOB: "createPaymentRequest",
    CompletionVariant.MILESTONE: "createMilestonePaymentRequest",
}

DOCUMENT_PROCEDURES: dict[DocumentKind, str] = {
    DocumentKind.JOB_CARD: "generateJobCardPdf",
    DocumentKind.ORDER_SUMMARY: "generateOrderPdf",
}


class CompletionRemote(Protocol):
    """The narrow remote contract the orchestrator depends on."""

    async def update_status(
        self,
        variant: CompletionVariant,
        entity_id: int,
        payload: dict[str, Any],
        *,
        credential: AccessCredential,
    ) -> dict[str, Any]: ...

    async def create_payment_request(
        self,
        variant: CompletionVariant,
        entity_id: int,
        payload: dict[str, Any],
        *,
        credential: AccessCredential,
    ) -> dict[str, Any]: ...

    async def generate_document(
        self,
        kind: DocumentKind,
        entity_id: int,
        *,
        credential: AccessCredential,
        is_pm_order: bool = False,
    ) -> dict[str, Any]: ...


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or f"HTTP {resp.status_code}"

    err = body.get("error") if isinstance(body, dict) else None
    if isinstance(err, dict):
        inner = err.get("json") if isinstance(err.get("json"), dict) else err
        message = inner.get("message")
        if isinstance(message, str) and message.strip():
            return message
    return resp.text or f"HTTP {resp.status_code}"


def _unwrap_result(procedure: str, body: Any) -> dict[str, Any]:
    if not isinstance(body, dict):
        raise RemoteCallError(procedure, "Malformed response: expected a JSON object")
    result = body.get("result")
    data = result.get("data") if isinstance(result, dict) else None
    if isinstance(data, dict) and "json" in data:
        data = data["json"]
    if data is None:
        return {}
    if isinstance(data, dict):
        return data
    return {"value": data}


class TRPCCompletionClient:
    def __init__(
        self,
        *,
        base_url: str,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    @classmethod
    def from_env(cls) -> "TRPCCompletionClient":
        load_dotenv(override=False)
        base_url = os.environ.get("PLATFORM_RPC_BASE_URL", "http://127.0.0.1:3000")
        timeout_seconds = float(os.environ.get("PLATFORM_RPC_TIMEOUT_SECONDS", "30"))
        return cls(base_url=base_url, timeout_seconds=timeout_seconds)

    def procedure_url(self, procedure: str) -> str:
        return f"{self._base_url}/trpc/{procedure}"

    async def call(
        self,
        procedure: str,
        payload: dict[str, Any],
        *,
        credential: AccessCredential,
    ) -> dict[str, Any]:
        """Invoke one mutation. Any failure surfaces as RemoteCallError."""

        url = self.procedure_url(procedure)
        body = {"json": {"token": credential.token, **payload}}

        logger.debug("RPC %s -> %s", procedure, url)
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout_seconds, transport=self._transport
            ) as client:
                resp = await client.post(url, json=body)
        except httpx.TimeoutException as e:
            raise RemoteCallError(
                procedure, f"Request timed out after {self._timeout_seconds}s"
            ) from e
        except httpx.HTTPError as e:
            raise RemoteCallError(procedure, f"Network error: {e}") from e

        if resp.status_code >= 400:
            raise RemoteCallError(
                procedure, _error_message(resp), status_code=resp.status_code
            )

        try:
            parsed = resp.json()
        except ValueError as e:
            raise RemoteCallError(
                procedure, "Malformed response: body is not JSON", status_code=resp.status_code
            ) from e
        return _unwrap_result(procedure, parsed)

    async def update_status(
        self,
        variant: CompletionVariant,
        entity_id: int,
        payload: dict[str, Any],
        *,
        credential: AccessCredential,
    ) -> dict[str, Any]:
        procedure, id_key = STATUS_PROCEDURES[variant]
        return await self.call(
            procedure, {id_key: entity_id, **payload}, credential=credential
        )

    async def create_payment_request(
        self,
        variant: CompletionVariant,
        entity_id: int,
        payload: dict[str, Any],
        *,
        credential: AccessCredential,
    ) -> dict[str, Any]:
        procedure = PAYMENT_PROCEDURES.get(variant)
        if procedure is None:
            raise ValueError(f"No payment request procedure for variant {variant.value}")
        if variant is CompletionVariant.JOB:
            ids: dict[str, Any] = {"orderIds": [entity_id]}
        else:
            ids = {"milestoneId": entity_id}
        return await self.call(procedure, {**ids, **payload}, credential=credential)

    async def generate_document(
        self,
        kind: DocumentKind,
        entity_id: int,
        *,
        credential: AccessCredential,
        is_pm_order: bool = False,
    ) -> dict[str, Any]:
        procedure = DOCUMENT_PROCEDURES[kind]
        payload: dict[str, Any] = {"orderId": entity_id}
        if kind is DocumentKind.ORDER_SUMMARY:
            payload["isPMOrder"] = is_pm_order
        return await self.call(procedure, payload, credential=credential)
