"""File-based key-value adapter."""

import asyncio
import os
import tempfile
from collections.abc import Sequence
from pathlib import Path
from urllib.parse import quote, unquote

SUFFIX = ".kv"


class FileKeyValueStore:
    """
    File-based key-value storage.

    Implements KeyValueStore protocol. Each key gets one file in storage_dir;
    writes go to a temp file first and are swapped in with os.replace so a
    crash never leaves a half-written value behind. Blocking file I/O runs
    in a worker thread.
    """

    def __init__(self, storage_dir: Path | str):
        self.storage_dir = Path(storage_dir).expanduser()
        self.storage_dir.mkdir(parents=True, exist_ok=True)

    def _path_for_key(self, key: str) -> Path:
        """Get the file path for a given key."""
        return self.storage_dir / f"{quote(key, safe='')}{SUFFIX}"

    def _read(self, key: str) -> str | None:
        path = self._path_for_key(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def _write(self, key: str, value: str) -> None:
        path = self._path_for_key(key)
        fd, tmp = tempfile.mkstemp(dir=self.storage_dir, prefix=".tmp-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def _remove(self, key: str) -> None:
        self._path_for_key(key).unlink(missing_ok=True)

    def _keys(self) -> list[str]:
        return sorted(unquote(p.name[: -len(SUFFIX)]) for p in self.storage_dir.glob(f"*{SUFFIX}"))

    async def get_item(self, key: str) -> str | None:
        return await asyncio.to_thread(self._read, key)

    async def set_item(self, key: str, value: str) -> None:
        await asyncio.to_thread(self._write, key, value)

    async def remove_item(self, key: str) -> None:
        await asyncio.to_thread(self._remove, key)

    async def multi_get(self, keys: Sequence[str]) -> list[tuple[str, str | None]]:
        return await asyncio.to_thread(lambda: [(k, self._read(k)) for k in keys])

    async def multi_set(self, pairs: Sequence[tuple[str, str]]) -> None:
        def write_all() -> None:
            for key, value in pairs:
                self._write(key, value)

        await asyncio.to_thread(write_all)

    async def multi_remove(self, keys: Sequence[str]) -> None:
        def remove_all() -> None:
            for key in keys:
                self._remove(key)

        await asyncio.to_thread(remove_all)

    async def get_all_keys(self) -> list[str]:
        return await asyncio.to_thread(self._keys)
