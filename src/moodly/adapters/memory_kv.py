"""In-memory key-value adapter."""

from collections.abc import Sequence


class MemoryKeyValueStore:
    """
    Dict-backed key-value storage.

    Implements KeyValueStore protocol. Used by tests and as a scratch store;
    nothing survives the process.
    """

    def __init__(self, initial: dict[str, str] | None = None):
        self.data: dict[str, str] = dict(initial or {})

    async def get_item(self, key: str) -> str | None:
        return self.data.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self.data[key] = value

    async def remove_item(self, key: str) -> None:
        self.data.pop(key, None)

    async def multi_get(self, keys: Sequence[str]) -> list[tuple[str, str | None]]:
        return [(key, self.data.get(key)) for key in keys]

    async def multi_set(self, pairs: Sequence[tuple[str, str]]) -> None:
        for key, value in pairs:
            self.data[key] = value

    async def multi_remove(self, keys: Sequence[str]) -> None:
        for key in keys:
            self.data.pop(key, None)

    async def get_all_keys(self) -> list[str]:
        return list(self.data)

    def clear(self) -> None:
        self.data.clear()
