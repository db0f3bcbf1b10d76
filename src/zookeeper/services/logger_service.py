from __future__ import annotations

from datetime import datetime, timezone

from zookeeper.storage import MessagePackStore

MAX_LOG_ROWS = 500
FAILURE_SUFFIXES = ("failed", "error", "rejected")


def event_level(event: str) -> str:
    return "warn" if event.endswith(FAILURE_SUFFIXES) else "info"


class LoggerService:
    """Event log kept in the snapshot as a bounded ring and echoed to stdout."""

    def __init__(self, store: MessagePackStore) -> None:
        self.store = store

    def log(self, event: str, **data: object) -> None:
        row = {
            "ts": datetime.now(tz=timezone.utc).isoformat(),
            "level": event_level(event),
            "event": event,
            "data": data,
        }
        rows = self.store.data.setdefault("logs", [])
        rows.append(row)
        if len(rows) > MAX_LOG_ROWS:
            del rows[: len(rows) - MAX_LOG_ROWS]
        self.store.touch()
        fields = " ".join(f"{key}={value}" for key, value in data.items())
        print(f"[{row['ts']}] {row['level'].upper()} {event} {fields}".rstrip())

    def recent(self, limit: int = 20, *, level: str | None = None) -> list[dict[str, object]]:
        rows = self.store.data.get("logs", []) or []
        if level is not None:
            rows = [row for row in rows if row.get("level") == level]
        return list(rows[-limit:])

    def last_failure(self) -> dict[str, object] | None:
        rows = self.recent(1, level="warn")
        return rows[0] if rows else None
