from __future__ import annotations

import datetime as dt
import json

import httpx
import pytest

from certsign.contracts import SignatureSubmission
from certsign.document_service import DocumentServiceClient
from certsign.errors import NetworkError, SubmissionRejectedError
from certsign.settings import Settings

BASE = "https://docs.example.test/api/v1"

SIGNABLE_BODY = {
    "instance_id": "inst 1",
    "signature_field": "approval",
    "signable_data": {"b": 2, "a": 1},
    "expires_at": "2026-03-01T12:15:00Z",
    "instructions": "Sign it",
}

SUBMISSION = SignatureSubmission(signature="c2ln", certificate="-----BEGIN CERTIFICATE-----", algorithm="RSA-SHA256")


def _client(handler, token=None) -> DocumentServiceClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return DocumentServiceClient(BASE, token=token, client=http)


@pytest.mark.asyncio
async def test_get_signable_data_builds_quoted_url_and_parses():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["path"] = request.url.raw_path.decode("ascii")
        seen["auth"] = request.headers.get("authorization")
        return httpx.Response(200, json=SIGNABLE_BODY)

    async with _client(handler, token="t0ken") as client:
        data = await client.get_signable_data("inst 1", "approval")

    assert seen["method"] == "GET"
    assert seen["path"] == "/api/v1/signatures/instances/inst%201/signable-data/approval"
    assert seen["auth"] == "Bearer t0ken"
    assert data.signable_data == {"a": 1, "b": 2}
    assert data.expires_at == dt.datetime(2026, 3, 1, 12, 15, tzinfo=dt.timezone.utc)


@pytest.mark.asyncio
async def test_submit_posts_exactly_three_fields():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={"success": True, "message": "ok", "signature_received": True,
                  "verification_result": {"valid": True, "verified_at": "2026-03-01T12:00:05Z"}},
        )

    async with _client(handler) as client:
        resp = await client.submit_signature("inst-1", "approval", SUBMISSION)

    assert seen["path"] == "/api/v1/signatures/instances/inst-1/signatures/approval"
    assert seen["body"] == SUBMISSION.model_dump()
    assert set(seen["body"]) == {"signature", "certificate", "algorithm"}
    assert resp.success and resp.verification_result.valid


@pytest.mark.asyncio
async def test_signature_status():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path.endswith("/signature-status/approval")
        return httpx.Response(200, json={"signature_field": "approval", "exists": True, "status": "signed"})

    async with _client(handler) as client:
        status = await client.get_signature_status("inst-1", "approval")
    assert status.exists is True
    assert status.status == "signed"


@pytest.mark.asyncio
async def test_timeout_is_retryable_network_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    async with _client(handler) as client:
        with pytest.raises(NetworkError) as ei:
            await client.get_signable_data("inst-1", "approval")
    assert ei.value.retryable
    assert "timed out" in str(ei.value)


@pytest.mark.asyncio
async def test_connection_error_is_retryable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    async with _client(handler) as client:
        with pytest.raises(NetworkError) as ei:
            await client.submit_signature("inst-1", "approval", SUBMISSION)
    assert ei.value.retryable


@pytest.mark.asyncio
async def test_server_error_uses_detail():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"detail": "maintenance"})

    async with _client(handler) as client:
        with pytest.raises(NetworkError) as ei:
            await client.submit_signature("inst-1", "approval", SUBMISSION)
    assert ei.value.retryable
    assert ei.value.status_code == 503
    assert str(ei.value) == "Failed to submit signature: maintenance"


@pytest.mark.asyncio
async def test_client_error_on_submit_is_a_rejection():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(422, json={"detail": "Certificate does not match signer"})

    async with _client(handler) as client:
        with pytest.raises(SubmissionRejectedError) as ei:
            await client.submit_signature("inst-1", "approval", SUBMISSION)
    assert ei.value.status_code == 422
    assert "Certificate does not match signer" in str(ei.value)


@pytest.mark.asyncio
async def test_rate_limit_on_submit_is_retryable():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, text="slow down")

    async with _client(handler) as client:
        with pytest.raises(NetworkError) as ei:
            await client.submit_signature("inst-1", "approval", SUBMISSION)
    assert ei.value.retryable


@pytest.mark.asyncio
async def test_not_found_on_fetch_is_not_retryable():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"detail": "No such instance"})

    async with _client(handler) as client:
        with pytest.raises(NetworkError) as ei:
            await client.get_signable_data("missing", "approval")
    assert ei.value.retryable is False
    assert "No such instance" in str(ei.value)


@pytest.mark.asyncio
async def test_unexpected_body_is_reported():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"unexpected": True})

    async with _client(handler) as client:
        with pytest.raises(NetworkError) as ei:
            await client.get_signable_data("inst-1", "approval")
    assert ei.value.retryable is False


@pytest.mark.asyncio
async def test_from_settings_does_not_close_injected_client():
    http = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, json=SIGNABLE_BODY)))
    client = DocumentServiceClient.from_settings(Settings(API_BASE_URL=BASE + "/"), client=http)
    assert client.base_url == BASE
    await client.aclose()
    assert not http.is_closed
    await http.aclose()
