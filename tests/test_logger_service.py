from __future__ import annotations

import asyncio
from pathlib import Path

from zookeeper.services.logger_service import MAX_LOG_ROWS, LoggerService, event_level
from zookeeper.storage import MessagePackStore


def _make_logger(tmp_path: Path) -> LoggerService:
    store = MessagePackStore(tmp_path / "state.msgpack")
    asyncio.run(store.load())
    return LoggerService(store)


def test_event_level_from_suffix() -> None:
    assert event_level("sweeper.notify_failed") == "warn"
    assert event_level("zoo.fetch_rejected") == "warn"
    assert event_level("command.error") == "warn"
    assert event_level("cooldown.captured") == "info"


def test_log_marks_store_dirty_and_prints(tmp_path: Path, capsys) -> None:
    logger = _make_logger(tmp_path)
    logger.log("cooldown.captured", kind="Rescue", user_id=1)

    assert logger.store.dirty
    out = capsys.readouterr().out
    assert "INFO cooldown.captured kind=Rescue user_id=1" in out


def test_ring_is_bounded(tmp_path: Path) -> None:
    logger = _make_logger(tmp_path)
    for i in range(MAX_LOG_ROWS + 10):
        logger.log("tick", i=i)

    rows = logger.store.data["logs"]
    assert len(rows) == MAX_LOG_ROWS
    assert rows[0]["data"]["i"] == 10


def test_last_failure(tmp_path: Path) -> None:
    logger = _make_logger(tmp_path)
    assert logger.last_failure() is None

    logger.log("zoo.fetch_failed", user_id=1)
    logger.log("cooldown.captured", user_id=1)

    failure = logger.last_failure()
    assert failure is not None
    assert failure["event"] == "zoo.fetch_failed"
    assert [row["event"] for row in logger.recent(5)] == ["zoo.fetch_failed", "cooldown.captured"]


def test_underscored_failure_events_are_warnings(tmp_path: Path) -> None:
    logger = _make_logger(tmp_path)
    for event in ("cooldown.persist_failed", "sweeper.notify_failed", "zoo.fetch_rejected", "store.final_save_failed"):
        assert event_level(event) == "warn"

    logger.log("cooldown.persist_failed", message_id=900, error="disk full")

    failure = logger.last_failure()
    assert failure is not None
    assert failure["event"] == "cooldown.persist_failed"
