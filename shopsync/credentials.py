"""Sync credentials lookup.

Priority:
1. ``<home>/credentials.json`` (written by the host app's sign-in flow)
2. ``SHOPSYNC_AUTH_TOKEN`` / ``SHOPSYNC_USER_ID`` environment variables

Only the bearer token is read here; passwords never reach this package.
"""

import json
import logging
import os
from dataclasses import dataclass
from typing import Optional

from .utils import get_shopsync_home

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credentials:
    auth_token: Optional[str] = None
    user_id: Optional[str] = None
    backend_url: Optional[str] = None


def load_credentials() -> Credentials:
    auth_token = user_id = backend_url = None

    credentials_path = get_shopsync_home() / "credentials.json"
    if credentials_path.exists():
        try:
            with open(credentials_path) as f:
                creds = json.load(f)
            auth_token = creds.get("auth_token") or creds.get("token")
            user_id = creds.get("user_id")
            backend_url = creds.get("backend_url")
        except (json.JSONDecodeError, OSError, AttributeError) as e:
            logger.debug(f"Failed to load credentials file: {e}")

    if not auth_token:
        auth_token = os.environ.get("SHOPSYNC_AUTH_TOKEN")
    if not user_id:
        user_id = os.environ.get("SHOPSYNC_USER_ID")
    return Credentials(auth_token=auth_token, user_id=user_id, backend_url=backend_url)


def make_token_provider(credentials: Credentials):
    """Wrap static credentials as the orchestrator's async token provider."""

    async def provide() -> Optional[str]:
        return credentials.auth_token

    return provide
