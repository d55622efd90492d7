"""Tidepool platform API client.

Thin async transport over httpx.  Each call either returns a typed reply
or raises ``TransportFailure``; the uploader never looks at status codes.

API roots:
    https://int-api.tidepool.org — integration ("development") servers
    https://api.tidepool.org     — production

Endpoints used:
    POST   /auth/login                          — Basic auth → session token
    GET    /v1/users/{userId}/data_sets         — open datasets for a client
    POST   /v1/users/{userId}/data_sets         — create a dataset
    POST   /v1/datasets/{uploadId}/data         — upload a chunk of records
    DELETE /v1/datasets/{datasetId}             — delete a dataset
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from tidesync.uploader.errors import ProtocolError, TransportFailure
from tidesync.uploader.messages import AuthReply, DatasetReply, UploadReply
from tidesync.uploader.session import Credential

logger = logging.getLogger("tidesync.uploader.client")

INTEGRATION_BASE_URL = "https://int-api.tidepool.org"
PRODUCTION_BASE_URL = "https://api.tidepool.org"

SESSION_TOKEN_HEADER = "x-tidepool-session-token"


def base_url_for(dev_servers: bool) -> str:
    return INTEGRATION_BASE_URL if dev_servers else PRODUCTION_BASE_URL


class TidepoolClient:
    """Async client for the handful of Tidepool calls the uploader makes."""

    def __init__(
        self,
        base_url: str = PRODUCTION_BASE_URL,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url:    Service root, see ``base_url_for``.
            timeout:     Per-request timeout in seconds.
            http_client: Optional pre-configured httpx client (for testing).
        """
        self.base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._http_client = http_client

    # ------------------------------------------------------------------
    # API calls
    # ------------------------------------------------------------------

    async def authenticate(self, credential: Credential) -> AuthReply:
        response = await self._request(
            "Login",
            "POST",
            "/auth/login",
            headers={"Authorization": credential.auth_header},
        )
        reply = self._parse(AuthReply, response, "Login")
        reply.token = response.headers.get(SESSION_TOKEN_HEADER)
        if not reply.token:
            raise ProtocolError("Login reply carried no session token")
        logger.debug("Logged in as user %s", reply.user_id)
        return reply

    async def list_open_datasets(
        self, token: str, user_id: str, client_id: str, limit: int = 1
    ) -> list[DatasetReply]:
        response = await self._request(
            "Get Open Datasets",
            "GET",
            f"/v1/users/{user_id}/data_sets",
            token=token,
            params={"client.name": client_id, "size": limit},
        )
        payload = self._json(response, "Get Open Datasets")
        if not isinstance(payload, list):
            raise ProtocolError("Get Open Datasets reply is not a list")
        try:
            return [DatasetReply.model_validate(item) for item in payload]
        except ValidationError as exc:
            raise ProtocolError(f"Malformed dataset in list reply: {exc}") from exc

    async def create_dataset(
        self, token: str, user_id: str, body: dict[str, Any]
    ) -> DatasetReply:
        response = await self._request(
            "Open New Dataset",
            "POST",
            f"/v1/users/{user_id}/data_sets",
            token=token,
            json=body,
        )
        return self._parse(DatasetReply, response, "Open New Dataset")

    async def upload_chunk(self, token: str, upload_id: str, body: str) -> UploadReply:
        response = await self._request(
            "Data Upload",
            "POST",
            f"/v1/datasets/{upload_id}/data",
            token=token,
            content=body.encode("utf-8"),
            headers={"Content-Type": "application/json"},
        )
        if not response.content:
            return UploadReply()
        return self._parse(UploadReply, response, "Data Upload")

    async def delete_dataset(self, token: str, dataset_id: str) -> None:
        await self._request(
            "Delete Dataset", "DELETE", f"/v1/datasets/{dataset_id}", token=token
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        token: str | None = None,
        headers: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Issue one request and map every failure to ``TransportFailure``."""
        url = f"{self.base_url}{path}"
        all_headers = dict(headers or {})
        if token is not None:
            all_headers[SESSION_TOKEN_HEADER] = token

        logger.debug("%s: %s %s", operation, method, url)
        try:
            if self._http_client:
                response = await self._http_client.request(
                    method, url, headers=all_headers, **kwargs
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.request(
                        method, url, headers=all_headers, **kwargs
                    )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            logger.warning("%s: HTTP %d from %s", operation, status, url)
            raise TransportFailure(operation, f"HTTP {status}", status_code=status) from exc
        except httpx.HTTPError as exc:
            logger.warning("%s: %s", operation, exc)
            raise TransportFailure(operation, str(exc) or type(exc).__name__) from exc
        return response

    @staticmethod
    def _json(response: httpx.Response, operation: str) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise ProtocolError(f"{operation} reply is not JSON") from exc

    @classmethod
    def _parse(cls, model: type, response: httpx.Response, operation: str) -> Any:
        payload = cls._json(response, operation)
        try:
            return model.model_validate(payload or {})
        except ValidationError as exc:
            raise ProtocolError(f"Malformed {operation} reply: {exc}") from exc
