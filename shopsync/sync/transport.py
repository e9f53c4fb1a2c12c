"""HTTP adapter for the browser-sync endpoints.

The transport knows URLs, headers and status codes and nothing about store
state. Failures surface as the typed exceptions in ``shopsync.types``; the
orchestrator turns them into SyncResult statuses.
"""

import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from ..types import AuthRequiredError, ServerRejectedError, ServerSnapshot, TransportError
from .wire import SyncRequest, parse_snapshot

logger = logging.getLogger(__name__)

AUTH_STATUS_CODES = (401, 403)


class SyncTransport:
    """Async client for ``<base_url>/browser-sync``.

    Args:
        base_url: API root, e.g. ``https://api.example.com/api``.
        timeout: Per-request timeout in seconds.
        client: Optional preconfigured ``httpx.AsyncClient`` (tests pass one
            built on ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not base_url:
            raise ValueError("base_url is required")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "SyncTransport":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    @staticmethod
    def _headers(token: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    async def _request(
        self,
        method: str,
        path: str,
        token: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            response = await self._client.request(
                method,
                url,
                headers=self._headers(token),
                json=json,
                params=params,
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise TransportError(f"{method} {path} timed out") from e
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {path} failed: {e}") from e

        if response.status_code in AUTH_STATUS_CODES:
            raise AuthRequiredError(f"{method} {path} rejected credentials ({response.status_code})")
        if not response.is_success:
            logger.warning(f"{method} {path} returned {response.status_code}")
            raise ServerRejectedError(response.status_code, response.text)
        return response

    @staticmethod
    def _snapshot(response: httpx.Response) -> ServerSnapshot:
        try:
            return parse_snapshot(response.json())
        except (ValueError, ValidationError) as e:
            raise TransportError(f"Malformed sync response: {e}") from e

    # === Endpoints ===

    async def fetch_full(self, token: str) -> ServerSnapshot:
        response = await self._request("GET", "/browser-sync", token)
        return self._snapshot(response)

    async def fetch_delta(self, token: str, since: int) -> ServerSnapshot:
        response = await self._request("GET", "/browser-sync/delta", token, params={"since": since})
        return self._snapshot(response)

    async def push(self, token: str, request: SyncRequest) -> ServerSnapshot:
        response = await self._request("POST", "/browser-sync", token, json=request.to_payload())
        return self._snapshot(response)

    async def delete_bookmark(self, token: str, url: str) -> None:
        await self._request("DELETE", "/browser-sync/bookmark", token, json={"url": url})

    async def clear_history(self, token: str) -> None:
        await self._request("DELETE", "/browser-sync/history", token)

    async def delete_all_analytics(self, token: str) -> None:
        await self._request("DELETE", "/browser-sync/analytics", token)
