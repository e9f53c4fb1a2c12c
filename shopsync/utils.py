"""Filesystem helpers."""

import os
from pathlib import Path


def get_shopsync_home() -> Path:
    """Return the shopsync data directory.

    Honours ``SHOPSYNC_DATA_DIR`` and falls back to ``~/.shopsync``.
    """
    custom = os.environ.get("SHOPSYNC_DATA_DIR")
    if custom:
        return Path(custom).expanduser()
    return Path.home() / ".shopsync"
