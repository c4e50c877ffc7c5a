"""Key-value storage interface."""

from collections.abc import Sequence
from enum import Enum
from typing import Protocol


class StorageOp(Enum):
    """Kinds of key-value operation, as seen by the fault injection shim."""

    GET = "getItem"
    SET = "setItem"
    REMOVE = "removeItem"
    MULTI_GET = "multiGet"
    MULTI_SET = "multiSet"
    MULTI_REMOVE = "multiRemove"


class KeyValueStore(Protocol):
    """Async string key-value primitive the stores persist through."""

    async def get_item(self, key: str) -> str | None:
        """Read the value for a key. Returns None if not found."""
        ...

    async def set_item(self, key: str, value: str) -> None:
        """Write/overwrite the value for a key."""
        ...

    async def remove_item(self, key: str) -> None:
        """Remove a key. Missing keys are not an error."""
        ...

    async def multi_get(self, keys: Sequence[str]) -> list[tuple[str, str | None]]:
        """Read several keys, preserving the requested order."""
        ...

    async def multi_set(self, pairs: Sequence[tuple[str, str]]) -> None:
        """Write several key/value pairs."""
        ...

    async def multi_remove(self, keys: Sequence[str]) -> None:
        """Remove several keys."""
        ...

    async def get_all_keys(self) -> list[str]:
        """List every stored key."""
        ...
