from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from zookeeper.models import Cooldown, CooldownKind
from zookeeper.reconcile import Outcome
from zookeeper.services.cooldown_service import CooldownService, SnapshotWriteError
from zookeeper.storage import MessagePackStore


def _make_service(tmp_path: Path) -> CooldownService:
    service = CooldownService(MessagePackStore(tmp_path / "state.msgpack"))
    asyncio.run(service.load())
    return service


def _reload(tmp_path: Path) -> CooldownService:
    return _make_service(tmp_path)


def _cooldown(
    expiry: float,
    *,
    kind: CooldownKind = CooldownKind.RESCUE,
    user_id: int = 1,
    profile: str = "P",
    channel_id: int = 100,
) -> Cooldown:
    return Cooldown(
        kind=kind,
        channel_id=channel_id,
        user_id=user_id,
        profile=profile,
        profile_name=f"Zoo {profile}",
        expiry=expiry,
    )


def test_same_observation_twice_is_idempotent(tmp_path: Path) -> None:
    service = _make_service(tmp_path)

    first = asyncio.run(service.upsert_many([_cooldown(5000)]))
    second = asyncio.run(service.upsert_many([_cooldown(5000)]))

    assert [change.outcome for change in first] == [Outcome.ADDED]
    assert second == []
    assert asyncio.run(service.count()) == 1


def test_jitter_and_real_update(tmp_path: Path) -> None:
    service = _make_service(tmp_path)
    key = (CooldownKind.RESCUE, 1, "P")
    asyncio.run(service.upsert_many([_cooldown(5000)]))

    assert asyncio.run(service.upsert_many([_cooldown(5001)])) == []
    stored = asyncio.run(service.get(key))
    assert stored is not None and stored.expiry == 5000

    changes = asyncio.run(service.upsert_many([_cooldown(5010)]))
    assert [change.outcome for change in changes] == [Outcome.UPDATED]
    stored = asyncio.run(service.get(key))
    assert stored is not None and stored.expiry == 5010


def test_identity_is_kind_user_profile(tmp_path: Path) -> None:
    service = _make_service(tmp_path)
    changes = asyncio.run(
        service.upsert_many(
            [
                _cooldown(5000),
                _cooldown(5000, kind=CooldownKind.QUEST),
                _cooldown(5000, profile="Q"),
                _cooldown(5000, user_id=2),
                _cooldown(9000, channel_id=999),
            ]
        )
    )
    assert [change.outcome for change in changes] == [Outcome.ADDED] * 4 + [Outcome.UPDATED]
    assert asyncio.run(service.count()) == 4


def test_mutations_are_persisted_before_returning(tmp_path: Path) -> None:
    service = _make_service(tmp_path)
    asyncio.run(service.upsert_many([_cooldown(5000), _cooldown(6000, kind=CooldownKind.CARD)]))
    asyncio.run(service.set_disabled(7, True))
    asyncio.run(service.set_manual(8, True))
    asyncio.run(service.observe_channel_user(100, 1))

    reloaded = _reload(tmp_path)
    before = asyncio.run(service.query())
    after = asyncio.run(reloaded.query())
    assert [c.to_row() for c in after] == [c.to_row() for c in before]
    assert asyncio.run(reloaded.is_disabled(7)) is True
    assert asyncio.run(reloaded.is_manual(8)) is True
    assert asyncio.run(reloaded.channel_user_ids(100)) == [1]


def test_remove_many_is_unconditional(tmp_path: Path) -> None:
    service = _make_service(tmp_path)
    asyncio.run(service.upsert_many([_cooldown(5000), _cooldown(6000, profile="Q")]))

    removed = asyncio.run(service.remove_many([(CooldownKind.RESCUE, 1, "P"), (CooldownKind.CARD, 1, "P")]))

    assert [c.profile for c in removed] == ["P"]
    assert [c.profile for c in asyncio.run(_reload(tmp_path).query())] == ["Q"]


def test_query_by_user_and_by_channel_membership(tmp_path: Path) -> None:
    service = _make_service(tmp_path)
    asyncio.run(
        service.upsert_many(
            [
                _cooldown(3000, user_id=1, channel_id=100),
                _cooldown(2000, user_id=2, channel_id=555),
                _cooldown(1000, user_id=3, channel_id=100),
            ]
        )
    )
    asyncio.run(service.observe_channel_user(100, 1))
    asyncio.run(service.observe_channel_user(100, 2))

    mine = asyncio.run(service.query(user_id=1))
    assert [c.user_id for c in mine] == [1]

    channel = asyncio.run(service.query(channel_id=100))
    assert [c.user_id for c in channel] == [2, 1]

    both = asyncio.run(service.query(user_id=3, channel_id=100))
    assert [c.user_id for c in both] == [3, 2, 1]


def test_observe_channel_user_reports_first_sighting_only(tmp_path: Path) -> None:
    service = _make_service(tmp_path)
    assert asyncio.run(service.observe_channel_user(100, 1)) is True
    assert asyncio.run(service.observe_channel_user(100, 1)) is False


def test_pending_changes_does_not_write(tmp_path: Path) -> None:
    service = _make_service(tmp_path)
    asyncio.run(service.upsert_many([_cooldown(5000)]))

    pending = asyncio.run(
        service.pending_changes([_cooldown(5001), _cooldown(8000, kind=CooldownKind.QUEST)])
    )

    assert [c.kind for c in pending] == [CooldownKind.QUEST]
    assert asyncio.run(service.count()) == 1


def test_sweep_expired_removes_due_entries(tmp_path: Path) -> None:
    service = _make_service(tmp_path)
    asyncio.run(service.upsert_many([_cooldown(5000), _cooldown(6000, profile="Q"), _cooldown(7000, profile="R")]))

    removed = asyncio.run(service.sweep_expired(6000))

    assert sorted(c.profile for c in removed) == ["P", "Q"]
    assert [c.profile for c in asyncio.run(_reload(tmp_path).query())] == ["R"]
    assert asyncio.run(service.sweep_expired(6000)) == []


def test_persistence_failure_propagates_and_keeps_memory(tmp_path: Path) -> None:
    service = _make_service(tmp_path)

    async def broken_save() -> None:
        raise OSError("disk full")

    service.store.save = broken_save  # type: ignore[method-assign]

    with pytest.raises(SnapshotWriteError):
        asyncio.run(service.upsert_many([_cooldown(5000)]))
    assert asyncio.run(service.count()) == 1

    with pytest.raises(SnapshotWriteError) as excinfo:
        asyncio.run(service.sweep_expired(9999))
    assert [c.profile for c in excinfo.value.changed] == ["P"]
    assert asyncio.run(service.count()) == 0


def test_legacy_rows_without_kind_load_as_rescue(tmp_path: Path) -> None:
    store = MessagePackStore(tmp_path / "state.msgpack")
    asyncio.run(store.load())
    store.data["cooldowns"] = [
        {"channel_id": 1, "user_id": 2, "profile": "P", "profile_name": "Zoo", "expiry": 50.0},
    ]
    store.data["owners"] = [42]
    store.data["token"] = "abc"
    asyncio.run(store.save())

    service = _reload(tmp_path)

    rows = asyncio.run(service.query())
    assert [c.kind for c in rows] == [CooldownKind.RESCUE]
    assert asyncio.run(service.owners()) == [42]
    assert asyncio.run(service.token()) == "abc"
