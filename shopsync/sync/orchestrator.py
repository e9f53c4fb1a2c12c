"""
Sync orchestrator: the only component that talks to the transport.

Phases run IDLE -> PUSHING -> PULLING -> IDLE, or through ERROR back to
IDLE when a call fails. Every public operation returns a SyncResult; nothing
raises to the caller.

One asyncio.Lock serializes all operations against the store. A call that
arrives while the same operation is already running joins that run instead
of queueing a second one.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Awaitable, Callable, Dict, Optional, TypeVar

from ..logging_config import log_sync
from ..types import (
    AuthRequiredError,
    ServerRejectedError,
    ServerSnapshot,
    SyncPhase,
    SyncResult,
    SyncStatus,
    TransportError,
)
from ..urls import canonicalize_url
from .transport import SyncTransport
from .wire import build_push_request

if TYPE_CHECKING:
    from ..store.local_store import LocalStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

TokenProvider = Callable[[], Awaitable[Optional[str]]]

DEFAULT_REQUEST_TIMEOUT = 15.0


class SyncOrchestrator:
    """Push the outbox, pull server state, fold it into the store.

    Args:
        store: The signed-in user's LocalStore.
        transport: Adapter for the browser-sync endpoints.
        token_provider: Coroutine function returning a bearer token, or
            ``None`` when the user is not signed in.
        request_timeout: Upper bound in seconds for each network call.
        event_log: Append one line per operation to the sync event log.
    """

    def __init__(
        self,
        store: "LocalStore",
        transport: SyncTransport,
        token_provider: TokenProvider,
        *,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        event_log: bool = False,
    ):
        self._store = store
        self._transport = transport
        self._token_provider = token_provider
        self.request_timeout = request_timeout
        self.event_log = event_log
        self._phase = SyncPhase.IDLE
        self._lock = asyncio.Lock()
        self._inflight: Dict[str, "asyncio.Future[SyncResult]"] = {}

    @property
    def phase(self) -> SyncPhase:
        return self._phase

    @property
    def store(self) -> "LocalStore":
        return self._store

    @property
    def is_busy(self) -> bool:
        return self._lock.locked()

    async def switch_store(self, store: "LocalStore") -> None:
        """Point the orchestrator at another user's store once idle."""
        async with self._lock:
            self._store = store
            logger.info(f"Sync store switched to user={store.user_id}")

    # === Public operations ===

    async def push_changes(self) -> SyncResult:
        return await self._single_flight("push", self._push)

    async def full_sync(self) -> SyncResult:
        return await self._single_flight("full_sync", self._full_sync)

    async def delta_sync(self) -> SyncResult:
        return await self._single_flight("delta_sync", self._delta_sync)

    async def sync(self) -> SyncResult:
        return await self._single_flight("sync", self._sync)

    async def delete_bookmark(self, url: str) -> SyncResult:
        canonical = canonicalize_url(url)
        if canonical is None:
            return SyncResult.recoverable(f"Invalid bookmark URL: {url!r}")
        return await self._single_flight(
            f"delete_bookmark:{canonical}",
            lambda: self._remote(
                "delete_bookmark", lambda token: self._transport.delete_bookmark(token, canonical)
            ),
        )

    async def clear_history(self) -> SyncResult:
        return await self._single_flight(
            "clear_history", lambda: self._remote("clear_history", self._transport.clear_history)
        )

    async def delete_all_analytics(self) -> SyncResult:
        return await self._single_flight(
            "delete_all_analytics",
            lambda: self._remote("delete_all_analytics", self._transport.delete_all_analytics),
        )

    # === Scheduling ===

    async def _single_flight(
        self, name: str, operation: Callable[[], Awaitable[SyncResult]]
    ) -> SyncResult:
        task = self._inflight.get(name)
        if task is not None and not task.done():
            logger.debug(f"{name} already in flight; joining it")
        else:
            task = asyncio.ensure_future(self._run_locked(name, operation))
            self._inflight[name] = task
            task.add_done_callback(lambda t, n=name: self._forget(n, t))
        return await asyncio.shield(task)

    def _forget(self, name: str, task: "asyncio.Future[SyncResult]") -> None:
        if self._inflight.get(name) is task:
            del self._inflight[name]

    async def _run_locked(
        self, name: str, operation: Callable[[], Awaitable[SyncResult]]
    ) -> SyncResult:
        async with self._lock:
            try:
                result = await operation()
            except Exception as e:
                logger.exception(f"Unexpected failure during {name}")
                self._store.end_sync(f"Sync failed: {e}")
                self._set_phase(SyncPhase.IDLE)
                result = SyncResult.recoverable(f"Sync failed: {e}")
        self._record(name, result)
        return result

    def _set_phase(self, phase: SyncPhase) -> None:
        if phase is not self._phase:
            logger.debug(f"Sync phase {self._phase.value} -> {phase.value}")
            self._phase = phase

    def _record(self, name: str, result: SyncResult) -> None:
        if result.success:
            logger.info(f"{name}: {result.status.value} (pushed={result.pushed}, pulled={result.pulled})")
        else:
            logger.warning(f"{name}: {result.status.value}: {result.reason}")
        if self.event_log:
            try:
                log_sync(
                    self._store.user_id or "default",
                    name,
                    result.status.value,
                    pushed=result.pushed,
                    pulled=result.pulled,
                    reason=result.reason,
                )
            except OSError as e:
                logger.debug(f"Could not write sync event log: {e}")

    # === Network plumbing ===

    async def _token(self) -> Optional[str]:
        try:
            token = await self._token_provider()
        except AuthRequiredError as e:
            logger.debug(f"Token provider declined: {e}")
            return None
        return token or None

    async def _call(self, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.request_timeout)
        except asyncio.TimeoutError as e:
            raise TransportError(f"Request timed out after {self.request_timeout:g}s") from e

    def _auth_failed(self, error: Exception) -> SyncResult:
        self._store.end_sync(preserve_error=True)
        self._set_phase(SyncPhase.IDLE)
        return SyncResult.auth_required(str(error) or "Not authenticated")

    def _failed(self, label: str, error: Exception) -> SyncResult:
        self._set_phase(SyncPhase.ERROR)
        message = f"{label} failed: {error}"
        self._store.end_sync(message)
        self._set_phase(SyncPhase.IDLE)
        return SyncResult.recoverable(message)

    # === Operations (run under the lock) ===

    async def _push(self) -> SyncResult:
        store = self._store
        sent = store.pending_changes
        interactions = store.product_interactions
        time_to_action = store.time_to_action_log
        sent_meta = store.state.meta
        if sent.is_empty() and not interactions and not time_to_action:
            logger.debug("No changes to push")
            return SyncResult.nothing_to_push()

        token = await self._token()
        if token is None:
            return SyncResult.auth_required()

        request = build_push_request(
            sent, interactions, time_to_action, store.current_session_id
        )
        pushed = sum(sent.counts().values()) + len(interactions) + len(time_to_action)
        logger.debug(f"Pushing {pushed} changes: {sent.counts()}")

        self._set_phase(SyncPhase.PUSHING)
        store.begin_sync()
        try:
            snapshot = await self._call(self._transport.push(token, request))
        except AuthRequiredError as e:
            return self._auth_failed(e)
        except (TransportError, ServerRejectedError) as e:
            return self._failed("Push", e)

        # Only what went out is acknowledged; edits made meanwhile stay queued
        store.acknowledge_push(sent, interactions, time_to_action, sent_meta=sent_meta)
        store.apply_server_sync(snapshot)
        store.end_sync()
        self._set_phase(SyncPhase.IDLE)
        return SyncResult.ok(pushed=pushed, pulled=snapshot.record_count)

    async def _pull(
        self, label: str, fetch: Callable[[str], Awaitable[ServerSnapshot]]
    ) -> SyncResult:
        token = await self._token()
        if token is None:
            return SyncResult.auth_required()

        self._set_phase(SyncPhase.PULLING)
        self._store.begin_sync()
        try:
            snapshot = await self._call(fetch(token))
        except AuthRequiredError as e:
            return self._auth_failed(e)
        except (TransportError, ServerRejectedError) as e:
            return self._failed(label, e)

        self._store.apply_server_sync(snapshot)
        self._store.end_sync()
        self._set_phase(SyncPhase.IDLE)
        return SyncResult.ok(pulled=snapshot.record_count)

    async def _full_sync(self) -> SyncResult:
        # Pending changes are left alone; only a successful push clears them
        return await self._pull("Full sync", self._transport.fetch_full)

    async def _delta_sync(self) -> SyncResult:
        since = self._store.last_sync_timestamp
        if since is None:
            return await self._full_sync()
        return await self._pull(
            "Delta sync", lambda token: self._transport.fetch_delta(token, since)
        )

    async def _sync(self) -> SyncResult:
        push = await self._push()
        if push.status is SyncStatus.AUTH_REQUIRED:
            return push

        store = self._store
        if store.last_sync_timestamp is None or store.is_local_data_empty():
            logger.debug("Sync decision: full pull")
            pull = await self._full_sync()
        else:
            pull = await self._delta_sync()

        if pull.status is SyncStatus.AUTH_REQUIRED:
            return pull
        if push.status is SyncStatus.RECOVERABLE_ERROR:
            reason = push.reason
            if not pull.success:
                reason = f"{push.reason}; {pull.reason}"
            store.end_sync(reason)
            return SyncResult.recoverable(reason, pulled=pull.pulled)
        if not pull.success:
            return SyncResult(pull.status, reason=pull.reason, pushed=push.pushed)
        return SyncResult.ok(pushed=push.pushed, pulled=pull.pulled)

    async def _remote(self, label: str, call: Callable[[str], Awaitable[None]]) -> SyncResult:
        token = await self._token()
        if token is None:
            return SyncResult.auth_required()
        try:
            await self._call(call(token))
        except AuthRequiredError as e:
            return self._auth_failed(e)
        except (TransportError, ServerRejectedError) as e:
            return self._failed(label, e)
        return SyncResult.ok(pushed=1)
