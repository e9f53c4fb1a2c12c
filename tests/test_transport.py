"""Tests for SyncTransport using httpx.MockTransport."""

import json

import httpx
import pytest

from shopsync.sync.transport import SyncTransport
from shopsync.sync.wire import SyncRequest
from shopsync.types import AuthRequiredError, ServerRejectedError, TransportError

BASE = "https://api.example.com/api"
EMPTY_SNAPSHOT = {"serverTimestamp": 42, "bookmarks": [], "history": []}


def make_transport(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SyncTransport(BASE + "/", client=client), client


class TestRequests:
    @pytest.mark.asyncio
    async def test_fetch_full_sends_bearer_token(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=EMPTY_SNAPSHOT)

        transport, client = make_transport(handler)
        async with client:
            snapshot = await transport.fetch_full("tok-1")

        assert snapshot.server_timestamp == 42
        assert seen[0].method == "GET"
        assert str(seen[0].url) == f"{BASE}/browser-sync"
        assert seen[0].headers["Authorization"] == "Bearer tok-1"

    @pytest.mark.asyncio
    async def test_fetch_delta_passes_since(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=EMPTY_SNAPSHOT)

        transport, client = make_transport(handler)
        async with client:
            await transport.fetch_delta("tok", since=1234)

        assert seen[0].url.path == "/api/browser-sync/delta"
        assert seen[0].url.params["since"] == "1234"

    @pytest.mark.asyncio
    async def test_push_posts_camel_case_body(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json=EMPTY_SNAPSHOT)

        transport, client = make_transport(handler)
        async with client:
            await transport.push("tok", SyncRequest(deleted_collection_ids=["c1"]))

        assert bodies[0]["deletedCollectionIds"] == ["c1"]

    @pytest.mark.asyncio
    async def test_delete_bookmark_sends_url(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(204)

        transport, client = make_transport(handler)
        async with client:
            await transport.delete_bookmark("tok", "https://a.example.com/p")

        assert seen[0].method == "DELETE"
        assert seen[0].url.path == "/api/browser-sync/bookmark"
        assert json.loads(seen[0].content) == {"url": "https://a.example.com/p"}

    @pytest.mark.asyncio
    async def test_remote_clears(self):
        paths = []

        def handler(request):
            paths.append((request.method, request.url.path))
            return httpx.Response(200, json={"success": True})

        transport, client = make_transport(handler)
        async with client:
            await transport.clear_history("tok")
            await transport.delete_all_analytics("tok")

        assert paths == [
            ("DELETE", "/api/browser-sync/history"),
            ("DELETE", "/api/browser-sync/analytics"),
        ]


class TestErrorMapping:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 403])
    async def test_auth_statuses(self, status):
        transport, client = make_transport(lambda request: httpx.Response(status))
        async with client:
            with pytest.raises(AuthRequiredError):
                await transport.fetch_full("tok")

    @pytest.mark.asyncio
    async def test_server_error(self):
        transport, client = make_transport(lambda request: httpx.Response(500, text="boom"))
        async with client:
            with pytest.raises(ServerRejectedError) as exc_info:
                await transport.fetch_full("tok")

        assert exc_info.value.status_code == 500
        assert "boom" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        transport, client = make_transport(handler)
        async with client:
            with pytest.raises(TransportError, match="timed out"):
                await transport.fetch_full("tok")

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("offline", request=request)

        transport, client = make_transport(handler)
        async with client:
            with pytest.raises(TransportError):
                await transport.push("tok", SyncRequest())

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [b"not json", b'{"bookmarks": []}'])
    async def test_malformed_body(self, body):
        transport, client = make_transport(lambda request: httpx.Response(200, content=body))
        async with client:
            with pytest.raises(TransportError, match="Malformed"):
                await transport.fetch_full("tok")


class TestLifecycle:
    def test_requires_base_url(self):
        with pytest.raises(ValueError):
            SyncTransport("")

    @pytest.mark.asyncio
    async def test_injected_client_not_closed(self):
        transport, client = make_transport(lambda request: httpx.Response(200, json=EMPTY_SNAPSHOT))
        async with transport:
            pass
        assert not client.is_closed
        await client.aclose()
