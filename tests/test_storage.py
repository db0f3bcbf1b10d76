from __future__ import annotations

import asyncio
from pathlib import Path

import msgpack

from zookeeper.storage import DEFAULT_STORE, MessagePackStore, peek


def test_load_creates_defaults(tmp_path: Path) -> None:
    store = MessagePackStore(tmp_path / "nested" / "state.msgpack")
    asyncio.run(store.load())

    assert store.path.exists()
    assert set(DEFAULT_STORE) <= set(store.data)
    assert store.data["cooldowns"] == []
    assert store.data["channel_users"] == {}


def test_absent_fields_default_to_empty(tmp_path: Path) -> None:
    path = tmp_path / "state.msgpack"
    path.write_bytes(msgpack.packb({"token": "abc", "disabled_users": None}, use_bin_type=True))

    store = MessagePackStore(path)
    asyncio.run(store.load())

    assert store.data["token"] == "abc"
    assert store.data["disabled_users"] == []
    assert store.data["manual_users"] == []
    assert store.dirty is True


def test_save_round_trip_and_peek(tmp_path: Path) -> None:
    store = MessagePackStore(tmp_path / "state.msgpack")
    asyncio.run(store.load())
    store.data["token"] = "secret"
    store.data["channel_users"] = {"100": [1, 2]}
    asyncio.run(store.save())

    other = MessagePackStore(tmp_path / "state.msgpack")
    asyncio.run(other.load())

    assert other.data["channel_users"] == {"100": [1, 2]}
    assert peek(store.path, "token") == "secret"
    assert peek(tmp_path / "missing.msgpack", "token", "") == ""
    assert not store.path.with_suffix(".msgpack.tmp").exists()
