"""
shopsync CLI - inspect and drive the local sync store.

Usage:
    shopsync status [--json]
    shopsync sync [--json]
    shopsync push [--json]
    shopsync pull [--full] [--json]
    shopsync consent {accepted,declined}
    shopsync clear-history [--remote]
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Optional

from .config import Settings, get_settings
from .credentials import load_credentials, make_token_provider
from .logging_config import setup_shopsync_logging
from .storage import SQLiteBlobStorage
from .store import LocalStore
from .sync import SyncOrchestrator, SyncTransport
from .types import SyncResult
from .urls import validate_backend_url

logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)


def open_store(settings: Settings, user_id: str) -> LocalStore:
    storage = SQLiteBlobStorage(settings.resolved_db_path())
    return LocalStore.open(
        storage,
        user_id,
        store_name=settings.store_name,
        history_limit=settings.history_limit,
        cart_dedup_window_ms=settings.cart_dedup_window_ms,
        max_buffered_events=settings.max_buffered_events,
    )


def print_result(result: SyncResult, as_json: bool) -> None:
    if as_json:
        print(
            json.dumps(
                {
                    "status": result.status.value,
                    "reason": result.reason,
                    "pushed": result.pushed,
                    "pulled": result.pulled,
                },
                indent=2,
            )
        )
        return
    mark = "✓" if result.success else "✗"
    line = f"{mark} {result.status.value} (pushed {result.pushed}, pulled {result.pulled})"
    if result.reason and not result.success:
        line += f": {result.reason}"
    print(line)


def cmd_status(args, store: LocalStore):
    """Show local store and outbox status."""
    pending = store.pending_changes.counts()
    info = {
        "user_id": store.user_id,
        "consent": store.state.consent.value,
        "bookmarks": len(store.bookmarks),
        "history": len(store.history),
        "collections": len(store.collections),
        "cart_sessions": len(store.cart_history),
        "pending": pending,
        "buffered_analytics": len(store.product_interactions) + len(store.time_to_action_log),
        "last_sync_timestamp": store.last_sync_timestamp,
        "sync_error": store.sync_error,
    }
    if args.json:
        print(json.dumps(info, indent=2))
        return
    print(f"User:        {info['user_id']}")
    print(f"Consent:     {info['consent']}")
    print(
        f"Local:       {info['bookmarks']} bookmarks, {info['history']} history, "
        f"{info['collections']} collections, {info['cart_sessions']} carts"
    )
    print(f"Pending:     {sum(pending.values())} changes, {info['buffered_analytics']} analytics events")
    print(f"Last sync:   {info['last_sync_timestamp'] or 'never'}")
    if info["sync_error"]:
        print(f"Last error:  {info['sync_error']}")


def cmd_consent(args, store: LocalStore):
    """Accept or decline analytics tracking."""
    state = store.set_consent(args.value)
    print(f"✓ Tracking consent {state.value}")


async def _run_sync(args, store: LocalStore, settings: Settings, backend_url: str, token_provider) -> SyncResult:
    async with SyncTransport(backend_url, timeout=settings.request_timeout) as transport:
        orchestrator = SyncOrchestrator(
            store,
            transport,
            token_provider,
            request_timeout=settings.request_timeout,
            event_log=True,
        )
        if args.command == "push":
            return await orchestrator.push_changes()
        if args.command == "pull":
            if args.full:
                return await orchestrator.full_sync()
            return await orchestrator.delta_sync()
        if args.command == "clear-history":
            return await orchestrator.clear_history()
        return await orchestrator.sync()


def main(argv: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="shopsync",
        description="Offline-first sync for the shopping store",
    )
    parser.add_argument("--user", "-u", help="User ID (defaults to credentials)", default=None)

    subparsers = parser.add_subparsers(dest="command", required=True)

    p_status = subparsers.add_parser("status", help="Show store and outbox status")
    p_status.add_argument("--json", "-j", action="store_true")

    p_sync = subparsers.add_parser("sync", help="Push pending changes, then pull")
    p_sync.add_argument("--json", "-j", action="store_true")

    p_push = subparsers.add_parser("push", help="Push pending changes only")
    p_push.add_argument("--json", "-j", action="store_true")

    p_pull = subparsers.add_parser("pull", help="Pull server changes")
    p_pull.add_argument("--full", "-f", action="store_true", help="Full pull instead of delta")
    p_pull.add_argument("--json", "-j", action="store_true")

    p_consent = subparsers.add_parser("consent", help="Set analytics consent")
    p_consent.add_argument("value", choices=["accepted", "declined"])

    p_clear = subparsers.add_parser("clear-history", help="Clear browsing history")
    p_clear.add_argument("--remote", action="store_true", help="Also clear history on the server")
    p_clear.add_argument("--json", "-j", action="store_true")

    args = parser.parse_args(argv)

    settings = get_settings()
    credentials = load_credentials()
    user_id = args.user or credentials.user_id
    if not user_id:
        print("✗ No user configured (pass --user or set SHOPSYNC_USER_ID)")
        return 1

    setup_shopsync_logging(user_id, settings.log_level)
    store = open_store(settings, user_id)

    if args.command == "status":
        cmd_status(args, store)
        return 0
    if args.command == "consent":
        cmd_consent(args, store)
        return 0
    if args.command == "clear-history":
        store.clear_history()
        print("✓ Local history cleared")
        if not args.remote:
            return 0

    backend_url = settings.backend_url or validate_backend_url(credentials.backend_url)
    if not backend_url:
        print("✗ No backend URL configured (set SHOPSYNC_BACKEND_URL)")
        return 1

    result = asyncio.run(
        _run_sync(args, store, settings, backend_url, make_token_provider(credentials))
    )
    print_result(result, getattr(args, "json", False))
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
