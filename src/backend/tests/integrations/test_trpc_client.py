from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from src.backend.jobs.errors import RemoteCallError
from src.backend.jobs.integrations.trpc_client import TRPCCompletionClient
from src.backend.jobs.models.completion import (
    AccessCredential,
    CompletionVariant,
    DocumentKind,
)

CREDENTIAL = AccessCredential("jwt-abc")


class _Recorder:
    def __init__(self, status_code: int = 200, payload: object | None = None, text: str = "") -> None:
        self.status_code = status_code
        self.payload = payload if payload is not None else {"result": {"data": {"json": {"ok": True}}}}
        self.text = text
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.text:
            return httpx.Response(self.status_code, text=self.text)
        return httpx.Response(self.status_code, json=self.payload)

    def body(self, index: int = -1) -> dict:
        return json.loads(self.requests[index].content)


def _client(handler) -> TRPCCompletionClient:
    return TRPCCompletionClient(
        base_url="http://platform.test/", transport=httpx.MockTransport(handler)
    )


def test_call_wraps_input_and_unwraps_result() -> None:
    rec = _Recorder(payload={"result": {"data": {"json": {"id": 9, "status": "COMPLETED"}}}})
    client = _client(rec)

    res = asyncio.run(
        client.update_status(
            CompletionVariant.JOB, 42, {"status": "COMPLETED"}, credential=CREDENTIAL
        )
    )

    assert res == {"id": 9, "status": "COMPLETED"}
    assert str(rec.requests[0].url) == "http://platform.test/trpc/updateOrderStatus"
    assert rec.body() == {"json": {"token": "jwt-abc", "orderId": 42, "status": "COMPLETED"}}


@pytest.mark.parametrize(
    "variant, procedure, id_key",
    [
        (CompletionVariant.MILESTONE, "updateMilestoneStatus", "milestoneId"),
        (CompletionVariant.QUOTATION, "updateQuotationStatus", "quotationId"),
        (CompletionVariant.REVIEW_EDIT, "updateCompletedOrderDetails", "orderId"),
    ],
)
def test_status_procedure_per_variant(variant, procedure, id_key) -> None:
    rec = _Recorder()
    asyncio.run(_client(rec).update_status(variant, 5, {}, credential=CREDENTIAL))

    assert rec.requests[0].url.path == f"/trpc/{procedure}"
    assert rec.body()["json"][id_key] == 5


def test_payment_request_ids() -> None:
    rec = _Recorder()
    client = _client(rec)

    asyncio.run(
        client.create_payment_request(
            CompletionVariant.JOB, 42, {"calculatedAmount": 2000.0}, credential=CREDENTIAL
        )
    )
    asyncio.run(
        client.create_payment_request(
            CompletionVariant.MILESTONE, 12, {"calculatedAmount": 10.0}, credential=CREDENTIAL
        )
    )

    assert rec.requests[0].url.path == "/trpc/createPaymentRequest"
    assert rec.body(0)["json"]["orderIds"] == [42]
    assert rec.requests[1].url.path == "/trpc/createMilestonePaymentRequest"
    assert rec.body(1)["json"]["milestoneId"] == 12

    with pytest.raises(ValueError):
        asyncio.run(
            client.create_payment_request(
                CompletionVariant.QUOTATION, 1, {}, credential=CREDENTIAL
            )
        )


def test_generate_document_payloads() -> None:
    rec = _Recorder(payload={"result": {"data": {"json": {"pdf": "JVBERi0="}}}})
    client = _client(rec)

    res = asyncio.run(client.generate_document(DocumentKind.JOB_CARD, 42, credential=CREDENTIAL))
    asyncio.run(
        client.generate_document(
            DocumentKind.ORDER_SUMMARY, 42, credential=CREDENTIAL, is_pm_order=True
        )
    )

    assert res == {"pdf": "JVBERi0="}
    assert rec.body(0)["json"] == {"token": "jwt-abc", "orderId": 42}
    assert rec.requests[1].url.path == "/trpc/generateOrderPdf"
    assert rec.body(1)["json"]["isPMOrder"] is True


def test_error_status_raises_with_server_message() -> None:
    rec = _Recorder(
        status_code=403,
        payload={"error": {"json": {"message": "Not assigned to this order", "code": -32003}}},
    )

    with pytest.raises(RemoteCallError) as exc:
        asyncio.run(_client(rec).call("updateOrderStatus", {}, credential=CREDENTIAL))

    assert exc.value.status_code == 403
    assert exc.value.procedure == "updateOrderStatus"
    assert "Not assigned to this order" in str(exc.value)


def test_non_json_body_is_malformed() -> None:
    rec = _Recorder(status_code=200, text="<html>gateway</html>")

    with pytest.raises(RemoteCallError) as exc:
        asyncio.run(_client(rec).call("generateJobCardPdf", {}, credential=CREDENTIAL))
    assert "Malformed response" in str(exc.value)


def test_transport_errors_become_remote_call_errors() -> None:
    def timeout(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    def refused(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(RemoteCallError) as exc:
        asyncio.run(_client(timeout).call("updateOrderStatus", {}, credential=CREDENTIAL))
    assert "timed out" in str(exc.value)

    with pytest.raises(RemoteCallError) as exc:
        asyncio.run(_client(refused).call("updateOrderStatus", {}, credential=CREDENTIAL))
    assert "Network error" in str(exc.value)
    assert exc.value.status_code is None


def test_from_env(monkeypatch) -> None:
    monkeypatch.setenv("PLATFORM_RPC_BASE_URL", "https://platform.example/")
    monkeypatch.setenv("PLATFORM_RPC_TIMEOUT_SECONDS", "5")

    client = TRPCCompletionClient.from_env()

    assert client.procedure_url("updateOrderStatus") == (
        "https://platform.example/trpc/updateOrderStatus"
    )


def test_credential_repr_hides_token() -> None:
    assert "jwt-abc" not in repr(CREDENTIAL)
