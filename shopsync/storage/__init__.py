"""Persistence backends for the local store."""

from .base import BlobStorage, scoped_key
from .sqlite import SQLiteBlobStorage

__all__ = ["BlobStorage", "SQLiteBlobStorage", "scoped_key"]
