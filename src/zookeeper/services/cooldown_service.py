from __future__ import annotations

from typing import Iterable

from zookeeper.models import Cooldown, CooldownKey
from zookeeper.reconcile import CooldownChange, Outcome, merge, would_change
from zookeeper.storage import MessagePackStore
from zookeeper.utils.rwlock import ReadWriteLock


class SnapshotWriteError(RuntimeError):
    """The snapshot could not be written. `changed` holds the entries already applied in memory."""

    def __init__(self, message: str, changed: list[Cooldown] | None = None) -> None:
        super().__init__(message)
        self.changed = list(changed or [])


class CooldownService:
    """
    Table of tracked cooldowns keyed by (kind, user, profile).

    This is the only shared mutable state in the bot. Reads take the shared
    side of the lock, mutations take the exclusive side and write the full
    snapshot before returning. A failed write propagates to the caller; the
    in-memory table keeps the change.
    """

    def __init__(self, store: MessagePackStore) -> None:
        self.store = store
        self._lock = ReadWriteLock()
        self._cooldowns: dict[CooldownKey, Cooldown] = {}
        self._disabled: set[int] = set()
        self._manual: set[int] = set()
        self._channel_users: dict[int, set[int]] = {}
        self._owners: list[int] = []
        self._token = ""

    async def load(self) -> None:
        await self.store.load()
        async with self._lock.write():
            self._hydrate_unlocked()

    async def save(self) -> None:
        async with self._lock.read():
            await self._persist_unlocked()

    def _hydrate_unlocked(self) -> None:
        data = self.store.data
        self._cooldowns = {}
        for row in data.get("cooldowns", []) or []:
            if not isinstance(row, dict):
                continue
            cooldown = Cooldown.from_row(row)
            self._cooldowns[cooldown.key] = cooldown
        self._disabled = {int(uid) for uid in data.get("disabled_users", []) or []}
        self._manual = {int(uid) for uid in data.get("manual_users", []) or []}
        self._channel_users = {
            int(channel_id): {int(uid) for uid in users or []}
            for channel_id, users in (data.get("channel_users", {}) or {}).items()
        }
        self._owners = [int(uid) for uid in data.get("owners", []) or []]
        self._token = str(data.get("token", "") or "")

    def _snapshot_unlocked(self) -> dict[str, object]:
        return {
            "owners": list(self._owners),
            "token": self._token,
            "cooldowns": [c.to_row() for c in self._cooldowns.values()],
            "disabled_users": sorted(self._disabled),
            "manual_users": sorted(self._manual),
            "channel_users": {str(cid): sorted(users) for cid, users in self._channel_users.items()},
        }

    async def _persist_unlocked(self) -> None:
        self.store.data.update(self._snapshot_unlocked())
        try:
            await self.store.save()
        except (OSError, ValueError, TypeError) as exc:
            raise SnapshotWriteError(f"snapshot write failed: {exc}") from exc

    async def upsert_many(self, candidates: Iterable[Cooldown]) -> list[CooldownChange]:
        """Apply a batch of observations; return the ones that were added or updated."""
        changes: list[CooldownChange] = []
        async with self._lock.write():
            for candidate in candidates:
                kept, change = merge(self._cooldowns.get(candidate.key), candidate)
                self._cooldowns[kept.key] = kept
                if change.outcome is not Outcome.UNCHANGED:
                    changes.append(change)
            await self._persist_unlocked()
        return changes

    async def pending_changes(self, candidates: Iterable[Cooldown]) -> list[Cooldown]:
        async with self._lock.read():
            return [c.copy() for c in candidates if would_change(self._cooldowns.get(c.key), c)]

    async def remove_many(self, keys: Iterable[CooldownKey]) -> list[Cooldown]:
        removed: list[Cooldown] = []
        async with self._lock.write():
            for key in keys:
                cooldown = self._cooldowns.pop(key, None)
                if cooldown is not None:
                    removed.append(cooldown)
            if removed:
                await self._persist_unlocked()
        return removed

    async def sweep_expired(self, now: float) -> list[Cooldown]:
        async with self._lock.write():
            expired = [c for c in self._cooldowns.values() if c.expiry <= now]
            if not expired:
                return []
            for cooldown in expired:
                del self._cooldowns[cooldown.key]
            try:
                await self._persist_unlocked()
            except SnapshotWriteError as exc:
                exc.changed = [c.copy() for c in expired]
                raise
        return expired

    async def query(self, *, user_id: int | None = None, channel_id: int | None = None) -> list[Cooldown]:
        """
        Cooldowns for one user, for every user ever seen in a channel, or both.

        With neither filter every entry is returned.
        """

        async with self._lock.read():
            members = self._channel_users.get(int(channel_id), set()) if channel_id is not None else set()
            rows: list[Cooldown] = []
            for cooldown in self._cooldowns.values():
                if user_id is None and channel_id is None:
                    rows.append(cooldown.copy())
                elif user_id is not None and cooldown.user_id == user_id:
                    rows.append(cooldown.copy())
                elif channel_id is not None and cooldown.user_id in members:
                    rows.append(cooldown.copy())
        rows.sort(key=lambda c: c.expiry)
        return rows

    async def get(self, key: CooldownKey) -> Cooldown | None:
        async with self._lock.read():
            cooldown = self._cooldowns.get(key)
            return cooldown.copy() if cooldown else None

    async def count(self) -> int:
        async with self._lock.read():
            return len(self._cooldowns)

    async def is_disabled(self, user_id: int) -> bool:
        async with self._lock.read():
            return user_id in self._disabled

    async def is_manual(self, user_id: int) -> bool:
        async with self._lock.read():
            return user_id in self._manual

    async def disabled_snapshot(self) -> frozenset[int]:
        async with self._lock.read():
            return frozenset(self._disabled)

    async def set_disabled(self, user_id: int, disabled: bool) -> bool:
        return await self._set_flag(self._disabled, user_id, disabled)

    async def set_manual(self, user_id: int, manual: bool) -> bool:
        return await self._set_flag(self._manual, user_id, manual)

    async def _set_flag(self, target: set[int], user_id: int, enabled: bool) -> bool:
        async with self._lock.write():
            changed = (user_id in target) != enabled
            if enabled:
                target.add(user_id)
            else:
                target.discard(user_id)
            if changed:
                await self._persist_unlocked()
        return changed

    async def observe_channel_user(self, channel_id: int, user_id: int) -> bool:
        async with self._lock.read():
            if user_id in self._channel_users.get(channel_id, set()):
                return False
        async with self._lock.write():
            users = self._channel_users.setdefault(channel_id, set())
            if user_id in users:
                return False
            users.add(user_id)
            await self._persist_unlocked()
        return True

    async def channel_user_ids(self, channel_id: int) -> list[int]:
        async with self._lock.read():
            return sorted(self._channel_users.get(channel_id, set()))

    async def owners(self) -> list[int]:
        async with self._lock.read():
            return list(self._owners)

    async def token(self) -> str:
        async with self._lock.read():
            return self._token
