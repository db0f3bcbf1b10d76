from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import msgpack


DEFAULT_STORE: dict[str, Any] = {
    "meta": {"version": 1},
    "owners": [],
    "token": "",
    "cooldowns": [],
    "disabled_users": [],
    "manual_users": [],
    "channel_users": {},
    "logs": [],
}


class MessagePackStore:
    def __init__(self, path: Path) -> None:
        self.path = path
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()
        self._dirty = False
        self.data: dict[str, Any] = {}

    async def load(self) -> None:
        async with self._lock:
            if not self.path.exists():
                self.data = _clone_defaults()
                await self._save_unlocked()
                return
            raw = self.path.read_bytes()
            self.data = msgpack.unpackb(raw, raw=False, strict_map_key=False)
            self._ensure_schema()

    async def autosave_loop(self, interval_sec: float = 5.0) -> None:
        while True:
            await asyncio.sleep(interval_sec)
            if self._dirty:
                await self.save()

    async def save(self) -> None:
        async with self._lock:
            await self._save_unlocked()

    async def _save_unlocked(self) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        packed = msgpack.packb(self.data, use_bin_type=True)
        tmp.write_bytes(packed)
        tmp.replace(self.path)
        self._dirty = False

    @property
    def dirty(self) -> bool:
        return self._dirty

    def touch(self) -> None:
        self._dirty = True

    def _ensure_schema(self) -> None:
        if not isinstance(self.data, dict):
            self.data = {}
        defaults = _clone_defaults()
        for key, value in defaults.items():
            if key not in self.data or self.data[key] is None:
                self.data[key] = value
        self._dirty = True


def _clone_defaults() -> dict[str, Any]:
    return msgpack.unpackb(msgpack.packb(DEFAULT_STORE, use_bin_type=True), raw=False)


def peek(path: Path, key: str, default: Any = None) -> Any:
    """Read one top-level field from a snapshot on disk without taking ownership of it."""
    if not path.exists():
        return default
    data = msgpack.unpackb(path.read_bytes(), raw=False, strict_map_key=False)
    if not isinstance(data, dict):
        return default
    return data.get(key, default)
