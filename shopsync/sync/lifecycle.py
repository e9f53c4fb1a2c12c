"""Map app lifecycle events onto orchestrator calls.

- cold start: full cycle until one succeeds
- foreground: full cycle
- background: push only, so nothing is stranded if the OS kills the app
- user change: switch to that user's store and sync from scratch
"""

import logging
from typing import TYPE_CHECKING, Callable, Optional

from ..types import SyncResult
from .orchestrator import SyncOrchestrator

if TYPE_CHECKING:
    from ..store.local_store import LocalStore

logger = logging.getLogger(__name__)


class LifecycleSync:
    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        store_factory: Optional[Callable[[str], "LocalStore"]] = None,
        user_id: Optional[str] = None,
    ):
        self.orchestrator = orchestrator
        self._store_factory = store_factory
        self._user_id = user_id or orchestrator.store.user_id
        self._signed_out = False
        self._initial_sync_succeeded = False

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    @property
    def initial_sync_succeeded(self) -> bool:
        return self._initial_sync_succeeded

    def _note(self, result: SyncResult) -> SyncResult:
        if result.success:
            self._initial_sync_succeeded = True
        return result

    async def on_cold_start(self) -> Optional[SyncResult]:
        """Run the first sync; later calls are no-ops once it succeeded."""
        if self._signed_out:
            return SyncResult.auth_required("Signed out")
        if self._initial_sync_succeeded:
            return None
        return self._note(await self.orchestrator.sync())

    async def on_foreground(self) -> SyncResult:
        if self._signed_out:
            return SyncResult.auth_required("Signed out")
        return self._note(await self.orchestrator.sync())

    async def on_background(self) -> SyncResult:
        if self._signed_out:
            return SyncResult.auth_required("Signed out")
        return await self.orchestrator.push_changes()

    async def on_user_changed(self, user_id: Optional[str]) -> Optional[SyncResult]:
        """Handle sign-in, sign-out or account switch.

        Returns the result of the fresh sync, or ``None`` when nothing ran.
        """
        if user_id is None:
            logger.info("User signed out; lifecycle sync paused")
            self._signed_out = True
            self._user_id = None
            self._initial_sync_succeeded = False
            return None
        if user_id == self._user_id and not self._signed_out:
            return None

        logger.info(f"Sync user changed to {user_id}")
        self._signed_out = False
        self._user_id = user_id
        self._initial_sync_succeeded = False
        if self._store_factory is not None:
            await self.orchestrator.switch_store(self._store_factory(user_id))
        return await self.on_cold_start()
