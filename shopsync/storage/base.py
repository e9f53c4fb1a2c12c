"""Storage protocol for user-scoped store blobs."""

from typing import List, Optional, Protocol, runtime_checkable


@runtime_checkable
class BlobStorage(Protocol):
    """Async-storage style key-value interface.

    Values are opaque strings (the serialized StoreState). Implementations
    must make ``set_item`` atomic per key.
    """

    def get_item(self, key: str) -> Optional[str]: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...

    def keys(self, prefix: str = "") -> List[str]: ...


def scoped_key(user_id: str, store_name: str) -> str:
    """Build the per-user storage key, e.g. ``u-123:shopping-store``.

    Raises:
        ValueError: If either part is empty or the user id contains ``:``.
    """
    if not user_id or not user_id.strip():
        raise ValueError("user_id cannot be empty")
    if ":" in user_id:
        raise ValueError("user_id cannot contain ':'")
    if not store_name or not store_name.strip():
        raise ValueError("store_name cannot be empty")
    return f"{user_id.strip()}:{store_name.strip()}"
