from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ValidationError

from .contracts import SignableData, SignatureStatus, SignatureSubmission, SubmissionResponse
from .errors import NetworkError, SubmissionRejectedError
from .settings import Settings

log = logging.getLogger(__name__)

_RETRYABLE_STATUS = (408, 429)


class DocumentService(Protocol):
    async def get_signable_data(self, instance_id: str, signature_field: str) -> SignableData: ...

    async def submit_signature(
        self, instance_id: str, signature_field: str, submission: SignatureSubmission
    ) -> SubmissionResponse: ...

    async def get_signature_status(self, instance_id: str, signature_field: str) -> SignatureStatus: ...


def _detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict) and body.get("detail"):
        return str(body["detail"])
    return response.reason_phrase


class DocumentServiceClient:
    """
    HTTP client for the document service.

    Transport failures, timeouts and 5xx answers become retryable
    `NetworkError`s. A 4xx answer to a submission is an explicit rejection.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 30.0,
        token: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        headers: Dict[str, str] = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._owns_client = client is None
        self.http = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._headers = headers

    @staticmethod
    def from_settings(settings: Settings, client: Optional[httpx.AsyncClient] = None) -> "DocumentServiceClient":
        return DocumentServiceClient(
            settings.API_BASE_URL,
            timeout_seconds=settings.HTTP_TIMEOUT_SEC,
            token=settings.API_TOKEN,
            client=client,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http.aclose()

    async def __aenter__(self) -> "DocumentServiceClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def _url(self, *parts: str) -> str:
        return self.base_url + "/signatures/instances/" + "/".join(quote(p, safe="") for p in parts)

    async def _request(self, what: str, method: str, url: str, body: Optional[Dict[str, Any]] = None) -> httpx.Response:
        try:
            response = await self.http.request(method, url, json=body, headers=self._headers)
        except httpx.TimeoutException as exc:
            raise NetworkError(f"Failed to {what}: request timed out") from exc
        except httpx.HTTPError as exc:
            raise NetworkError(f"Failed to {what}: {exc}") from exc
        log.debug("%s %s -> %d", method, url, response.status_code)
        if response.status_code >= 500:
            raise NetworkError(f"Failed to {what}: {_detail(response)}", status_code=response.status_code)
        return response

    def _parse(self, what: str, model: type[BaseModel], response: httpx.Response):
        try:
            return model.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise NetworkError(
                f"Failed to {what}: unexpected response body", retryable=False, status_code=response.status_code
            ) from exc

    async def get_signable_data(self, instance_id: str, signature_field: str) -> SignableData:
        what = "get signable data"
        response = await self._request(what, "GET", self._url(instance_id, "signable-data", signature_field))
        if response.is_error:
            raise NetworkError(
                f"Failed to {what}: {_detail(response)}",
                retryable=response.status_code in _RETRYABLE_STATUS,
                status_code=response.status_code,
            )
        return self._parse(what, SignableData, response)

    async def submit_signature(
        self, instance_id: str, signature_field: str, submission: SignatureSubmission
    ) -> SubmissionResponse:
        what = "submit signature"
        response = await self._request(
            what, "POST", self._url(instance_id, "signatures", signature_field), submission.model_dump()
        )
        if response.status_code in _RETRYABLE_STATUS:
            raise NetworkError(f"Failed to {what}: {_detail(response)}", status_code=response.status_code)
        if response.is_error:
            raise SubmissionRejectedError(
                f"Signature rejected: {_detail(response)}", status_code=response.status_code
            )
        return self._parse(what, SubmissionResponse, response)

    async def get_signature_status(self, instance_id: str, signature_field: str) -> SignatureStatus:
        what = "get signature status"
        response = await self._request(what, "GET", self._url(instance_id, "signature-status", signature_field))
        if response.is_error:
            raise NetworkError(
                f"Failed to {what}: {_detail(response)}",
                retryable=response.status_code in _RETRYABLE_STATUS,
                status_code=response.status_code,
            )
        return self._parse(what, SignatureStatus, response)
