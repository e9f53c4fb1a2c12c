"""Tests for SyncOrchestrator against an in-memory transport."""

import asyncio
import dataclasses
from unittest.mock import AsyncMock

import pytest

from shopsync.sync.orchestrator import SyncOrchestrator
from shopsync.types import (
    AuthRequiredError,
    HistoryEntry,
    ServerRejectedError,
    ServerSnapshot,
    SyncPhase,
    SyncStatus,
    TransportError,
)

from conftest import T0, make_bookmark, no_token, static_token


def make_orchestrator(store, transport, token_provider=static_token, **kwargs):
    return SyncOrchestrator(store, transport, token_provider, **kwargs)


async def wait_for_calls(transport, count):
    for _ in range(100):
        if len(transport.calls) >= count:
            return
        await asyncio.sleep(0)
    raise AssertionError(f"expected {count} transport calls, saw {len(transport.calls)}")


class TestPush:
    @pytest.mark.asyncio
    async def test_nothing_to_push(self, store, transport):
        result = await make_orchestrator(store, transport).push_changes()

        assert result.status is SyncStatus.NOTHING_TO_PUSH
        assert result.success
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_success_empties_outbox(self, store, transport, bookmark):
        store.add_bookmark(bookmark())
        store.record_product_interaction("https://shop.example.com/p/1", "view")
        transport.queue("push", ServerSnapshot(server_timestamp=T0 + 5))

        result = await make_orchestrator(store, transport).push_changes()

        assert result.status is SyncStatus.OK
        assert result.pushed == 2
        assert not store.has_pending_changes()
        assert store.product_interactions == ()
        assert store.last_sync_timestamp == T0 + 5
        assert store.is_syncing is False
        assert store.sync_error is None
        request = transport.calls[0]["request"]
        assert request.bookmarks[0].url == "https://shop.example.com/p/1"
        assert request.product_interactions[0].client_event_id

    @pytest.mark.asyncio
    async def test_failure_leaves_outbox_unchanged(self, store, transport, bookmark):
        store.add_bookmark(bookmark())
        store.record_time_to_action("https://shop.example.com/p/1", "bookmark", 4)
        before = store.pending_changes
        buffered = store.time_to_action_log
        transport.queue("push", TransportError("offline"))
        orchestrator = make_orchestrator(store, transport)

        result = await orchestrator.push_changes()

        assert result.status is SyncStatus.RECOVERABLE_ERROR
        assert store.pending_changes == before
        assert store.time_to_action_log == buffered
        assert store.sync_error == "Push failed: offline"
        assert store.is_syncing is False
        assert orchestrator.phase is SyncPhase.IDLE

    @pytest.mark.asyncio
    async def test_server_rejection_is_recoverable(self, store, transport, bookmark):
        store.add_bookmark(bookmark())
        transport.queue("push", ServerRejectedError(500, "boom"))

        result = await make_orchestrator(store, transport).push_changes()

        assert result.status is SyncStatus.RECOVERABLE_ERROR
        assert store.has_pending_changes()

    @pytest.mark.asyncio
    async def test_mutation_during_push_stays_queued(self, store, transport, bookmark):
        store.add_bookmark(bookmark())
        transport.gate = asyncio.Event()
        orchestrator = make_orchestrator(store, transport)

        task = asyncio.ensure_future(orchestrator.push_changes())
        await wait_for_calls(transport, 1)
        assert orchestrator.phase is SyncPhase.PUSHING
        store.increment_view_count("https://shop.example.com/p/1")
        late = store.add_bookmark(bookmark("https://shop.example.com/p/2"))
        transport.gate.set()
        result = await task

        assert result.status is SyncStatus.OK
        urls = [b.url for b in store.pending_changes.bookmarks]
        assert urls == ["https://shop.example.com/p/1", "https://shop.example.com/p/2"]
        assert store.pending_changes.bookmarks[0].view_count == 1
        assert late in store.bookmarks

    @pytest.mark.asyncio
    async def test_deletion_repeated_during_push_stays_queued(self, store, transport, clock, bookmark):
        url = "https://shop.example.com/p/1"
        store.add_bookmark(bookmark(url))
        store.remove_bookmark(url)
        transport.gate = asyncio.Event()
        orchestrator = make_orchestrator(store, transport)

        task = asyncio.ensure_future(orchestrator.push_changes())
        await wait_for_calls(transport, 1)
        clock.advance(1000)
        store.add_bookmark(bookmark(url))
        clock.advance(1000)
        store.remove_bookmark(url)
        transport.gate.set()
        result = await task

        assert result.status is SyncStatus.OK
        assert store.pending_changes.deleted_bookmark_urls == (url,)
        assert not store.is_bookmarked(url)

    @pytest.mark.asyncio
    async def test_timeout_is_recoverable(self, store, transport, bookmark):
        store.add_bookmark(bookmark())
        transport.gate = asyncio.Event()
        orchestrator = make_orchestrator(store, transport, request_timeout=0.05)

        result = await orchestrator.push_changes()

        assert result.status is SyncStatus.RECOVERABLE_ERROR
        assert "timed out" in result.reason
        assert store.has_pending_changes()
        assert store.is_syncing is False

    @pytest.mark.asyncio
    async def test_unexpected_error_does_not_raise(self, store, transport, bookmark):
        store.add_bookmark(bookmark())
        transport.queue("push", RuntimeError("bug"))

        result = await make_orchestrator(store, transport).push_changes()

        assert result.status is SyncStatus.RECOVERABLE_ERROR
        assert store.is_syncing is False


class TestAuth:
    @pytest.mark.asyncio
    async def test_no_token(self, store, transport, bookmark):
        store.add_bookmark(bookmark())

        result = await make_orchestrator(store, transport, no_token).sync()

        assert result.status is SyncStatus.AUTH_REQUIRED
        assert transport.calls == []
        assert store.has_pending_changes()

    @pytest.mark.asyncio
    async def test_rejected_token_keeps_previous_error(self, store, transport, bookmark):
        store.add_bookmark(bookmark())
        store.end_sync("earlier failure")
        transport.queue("push", AuthRequiredError("401"))

        result = await make_orchestrator(store, transport).sync()

        assert result.status is SyncStatus.AUTH_REQUIRED
        assert transport.endpoints() == ["push"]
        assert store.sync_error == "earlier failure"
        assert store.is_syncing is False

    @pytest.mark.asyncio
    async def test_token_provider_raising_auth_error(self, store, transport):
        async def declining():
            raise AuthRequiredError("expired")

        result = await make_orchestrator(store, transport, declining).full_sync()
        assert result.status is SyncStatus.AUTH_REQUIRED

    @pytest.mark.asyncio
    async def test_token_fetched_per_operation(self, store, transport, bookmark):
        provider = AsyncMock(return_value="tok-xyz")
        store.add_bookmark(bookmark())

        await make_orchestrator(store, transport, provider).sync()

        assert provider.await_count == 2
        assert [c["token"] for c in transport.calls] == ["tok-xyz", "tok-xyz"]

    @pytest.mark.asyncio
    async def test_pull_auth_failure(self, store, transport):
        transport.queue("fetch_full", AuthRequiredError("403"))

        result = await make_orchestrator(store, transport).sync()

        assert result.status is SyncStatus.AUTH_REQUIRED
        assert store.sync_error is None


class TestSyncCycle:
    @pytest.mark.asyncio
    async def test_first_sync_is_full(self, store, transport):
        transport.queue("fetch_full", ServerSnapshot(server_timestamp=T0, bookmarks=(make_bookmark(),)))

        result = await make_orchestrator(store, transport).sync()

        assert result.status is SyncStatus.OK
        assert result.pulled == 1
        assert transport.endpoints() == ["fetch_full"]
        assert store.last_sync_timestamp == T0

    @pytest.mark.asyncio
    async def test_later_sync_is_delta(self, store, transport, bookmark):
        store.add_bookmark(bookmark())
        orchestrator = make_orchestrator(store, transport)
        await orchestrator.sync()
        transport.calls.clear()

        await orchestrator.sync()

        assert transport.endpoints() == ["fetch_delta"]
        assert transport.calls[0]["since"] == T0

    @pytest.mark.asyncio
    async def test_empty_local_data_forces_full(self, store, transport):
        store.apply_server_sync(ServerSnapshot(server_timestamp=T0))
        await make_orchestrator(store, transport).sync()
        assert transport.endpoints() == ["fetch_full"]

    @pytest.mark.asyncio
    async def test_delta_without_timestamp_falls_back(self, store, transport):
        await make_orchestrator(store, transport).delta_sync()
        assert transport.endpoints() == ["fetch_full"]

    @pytest.mark.asyncio
    async def test_push_failure_still_pulls(self, store, transport, bookmark):
        store.add_bookmark(bookmark())
        transport.queue("push", TransportError("offline"))
        transport.queue("fetch_full", ServerSnapshot(server_timestamp=T0, bookmarks=(make_bookmark("https://b.example.com/1"),)))

        result = await make_orchestrator(store, transport).sync()

        assert result.status is SyncStatus.RECOVERABLE_ERROR
        assert result.pulled == 1
        assert transport.endpoints() == ["push", "fetch_full"]
        assert store.sync_error == "Push failed: offline"
        assert store.has_pending_changes()
        assert len(store.bookmarks) == 2

    @pytest.mark.asyncio
    async def test_both_failures_reported(self, store, transport, bookmark):
        store.add_bookmark(bookmark())
        transport.queue("push", TransportError("offline"))
        transport.queue("fetch_full", TransportError("still offline"))

        result = await make_orchestrator(store, transport).sync()

        assert result.status is SyncStatus.RECOVERABLE_ERROR
        assert result.reason == "Push failed: offline; Full sync failed: still offline"

    @pytest.mark.asyncio
    async def test_full_sync_keeps_outbox(self, store, transport, bookmark):
        store.add_bookmark(bookmark())
        before = store.pending_changes

        await make_orchestrator(store, transport).full_sync()

        assert store.pending_changes == before
        assert transport.endpoints() == ["fetch_full"]

    @pytest.mark.asyncio
    async def test_cleared_history_survives_older_snapshot(self, store, transport, clock):
        store.add_to_history("https://shop.example.com/p/1", "P", "Shop")
        clock.advance(1000)
        store.clear_history()
        stale = HistoryEntry(url="https://shop.example.com/p/1", title="P", source="Shop", visited_at=T0)
        transport.queue("fetch_full", ServerSnapshot(server_timestamp=T0 + 500, history=(stale,)))

        result = await make_orchestrator(store, transport).sync()

        assert result.success
        assert store.history == ()

    @pytest.mark.asyncio
    async def test_deleted_bookmark_not_resurrected(self, store, transport, bookmark):
        b = store.add_bookmark(bookmark())
        store.remove_bookmark(b.url)
        # The push snapshot was taken before the server applied the deletion
        transport.queue("push", ServerSnapshot(server_timestamp=T0 - 1, bookmarks=(b,)))
        transport.queue("fetch_full", ServerSnapshot(server_timestamp=T0 - 1, bookmarks=(b,)))

        await make_orchestrator(store, transport).sync()

        assert store.bookmarks == ()


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_operations_never_overlap(self, store, transport, bookmark):
        store.add_bookmark(bookmark())
        transport.gate = asyncio.Event()
        orchestrator = make_orchestrator(store, transport)

        tasks = [
            asyncio.ensure_future(orchestrator.push_changes()),
            asyncio.ensure_future(orchestrator.full_sync()),
            asyncio.ensure_future(orchestrator.clear_history()),
        ]
        await wait_for_calls(transport, 1)
        assert orchestrator.is_busy
        transport.gate.set()
        await asyncio.gather(*tasks)

        assert transport.max_active == 1
        assert transport.endpoints() == ["push", "fetch_full", "clear_history"]

    @pytest.mark.asyncio
    async def test_same_operation_coalesces(self, store, transport, bookmark):
        store.add_bookmark(bookmark())
        transport.gate = asyncio.Event()
        orchestrator = make_orchestrator(store, transport)

        first = asyncio.ensure_future(orchestrator.sync())
        second = asyncio.ensure_future(orchestrator.sync())
        await wait_for_calls(transport, 1)
        transport.gate.set()
        a, b = await asyncio.gather(first, second)

        assert a is b
        assert transport.endpoints().count("push") == 1

    @pytest.mark.asyncio
    async def test_new_run_after_completion(self, store, transport):
        orchestrator = make_orchestrator(store, transport)
        await orchestrator.full_sync()
        await orchestrator.full_sync()
        assert transport.endpoints() == ["fetch_full", "fetch_full"]


class TestRemoteOperations:
    @pytest.mark.asyncio
    async def test_delete_bookmark_uses_canonical_url(self, store, transport):
        result = await make_orchestrator(store, transport).delete_bookmark("https://shop.example.com/p/1?utm=x")

        assert result.status is SyncStatus.OK
        assert transport.calls[0]["url"] == "https://shop.example.com/p/1"

    @pytest.mark.asyncio
    async def test_delete_bookmark_invalid_url(self, store, transport):
        result = await make_orchestrator(store, transport).delete_bookmark("not a url")

        assert result.status is SyncStatus.RECOVERABLE_ERROR
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_remote_failure_recorded(self, store, transport):
        transport.queue("delete_all_analytics", ServerRejectedError(500))
        orchestrator = make_orchestrator(store, transport)

        result = await orchestrator.delete_all_analytics()

        assert result.status is SyncStatus.RECOVERABLE_ERROR
        assert store.sync_error.startswith("delete_all_analytics failed")
        assert orchestrator.phase is SyncPhase.IDLE

    @pytest.mark.asyncio
    async def test_clear_history_requires_token(self, store, transport):
        result = await make_orchestrator(store, transport, no_token).clear_history()
        assert result.status is SyncStatus.AUTH_REQUIRED


class TestSwitchStore:
    @pytest.mark.asyncio
    async def test_switch_store(self, store, transport, clock, ids_factory):
        from shopsync.store import LocalStore

        other = LocalStore(now_fn=clock, id_generator=ids_factory())
        orchestrator = make_orchestrator(store, transport)
        await orchestrator.switch_store(other)
        assert orchestrator.store is other


def test_result_success_flag():
    from shopsync.types import SyncResult

    assert SyncResult.ok().success
    assert SyncResult.nothing_to_push().success
    assert not SyncResult.recoverable("x").success
    assert not dataclasses.replace(SyncResult.ok(), status=SyncStatus.AUTH_REQUIRED).success
