from __future__ import annotations

import asyncio
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any

from zookeeper.models import Cooldown, CooldownKind
from zookeeper.parsers import extract_cooldowns
from zookeeper.reconcile import CooldownChange
from zookeeper.services.cooldown_service import CooldownService
from zookeeper.services.logger_service import LoggerService
from zookeeper.services.zoo_service import ZooFetchError, ZooProfile, ZooService, describe_failure
from zookeeper.utils.discord_utils import invoking_user_id

ADVERTISED_CACHE_LIMIT = 500
FIND_ANIMAL_CONCURRENCY = 4


@dataclass
class TrackResult:
    status: str  # ignored | disabled | no_match | fetch_failed | tracked | advertised
    user_id: int | None = None
    changes: list[CooldownChange] = field(default_factory=list)
    advertised: list[Cooldown] = field(default_factory=list)
    error: str = ""

    @property
    def reaction_kinds(self) -> list[CooldownKind]:
        if self.status == "tracked":
            return [change.cooldown.kind for change in self.changes]
        if self.status == "advertised":
            return [cooldown.kind for cooldown in self.advertised]
        return []


@dataclass
class AnimalOwner:
    user_id: int
    profile_name: str
    emoji: str
    amount: int


class CooldownTracker:
    def __init__(self, zoo_user_id: int, cooldowns: CooldownService, zoo: ZooService, logger: LoggerService) -> None:
        self.zoo_user_id = zoo_user_id
        self.cooldowns = cooldowns
        self.zoo = zoo
        self.logger = logger
        self._advertised: OrderedDict[int, list[Cooldown]] = OrderedDict()

    async def process_message(self, message: Any) -> TrackResult:
        if int(getattr(message.author, "id", 0) or 0) != self.zoo_user_id:
            return TrackResult("ignored")
        user_id = invoking_user_id(message)
        if user_id is None:
            return TrackResult("ignored")
        if await self.cooldowns.is_disabled(user_id):
            return TrackResult("disabled", user_id=user_id)
        await self.cooldowns.observe_channel_user(int(message.channel.id), user_id)
        found = extract_cooldowns(message)
        if not found:
            return TrackResult("no_match", user_id=user_id)
        try:
            profile = await self._fetch_profile(user_id)
        except ZooFetchError as exc:
            return TrackResult("fetch_failed", user_id=user_id, error=str(exc)[:300])
        candidates = self._build(found, message, user_id, profile)

        if await self.cooldowns.is_manual(user_id):
            pending = await self.cooldowns.pending_changes(candidates)
            if pending:
                self._remember(int(message.id), pending)
            return TrackResult("advertised", user_id=user_id, advertised=pending)

        changes = await self.cooldowns.upsert_many(candidates)
        for change in changes:
            cooldown = change.cooldown
            self.logger.log(
                "cooldown.captured",
                kind=cooldown.kind.value,
                outcome=change.outcome.value,
                expiry=cooldown.expiry,
                user_id=cooldown.user_id,
                profile=cooldown.profile,
            )
        return TrackResult("tracked", user_id=user_id, changes=changes)

    async def confirm(self, message_id: int, user_id: int, kind: CooldownKind, message: Any | None = None) -> Cooldown | None:
        """Commit an advertised cooldown once its owner reacts with the kind's glyph."""
        candidate = await self._advertised_candidate(message_id, user_id, kind, message)
        if candidate is None:
            return None
        await self.cooldowns.upsert_many([candidate])
        self.logger.log(
            "cooldown.confirmed",
            kind=kind.value,
            expiry=candidate.expiry,
            user_id=user_id,
            profile=candidate.profile,
        )
        return candidate

    async def revoke(self, message_id: int, user_id: int, kind: CooldownKind, message: Any | None = None) -> list[Cooldown]:
        candidate = await self._advertised_candidate(message_id, user_id, kind, message)
        if candidate is None:
            return []
        removed = await self.cooldowns.remove_many([candidate.key])
        if removed:
            self.logger.log("cooldown.revoked", kind=kind.value, user_id=user_id, profile=candidate.profile)
        return removed

    async def find_animal(self, channel_id: int, query: str) -> list[AnimalOwner]:
        user_ids = await self.cooldowns.channel_user_ids(channel_id)
        semaphore = asyncio.Semaphore(FIND_ANIMAL_CONCURRENCY)

        async def lookup(user_id: int) -> AnimalOwner | None:
            async with semaphore:
                try:
                    profile = await self._fetch_profile(user_id)
                except ZooFetchError:
                    return None
            animal = profile.find_animal(query)
            if animal is None or animal.amount <= 0:
                return None
            return AnimalOwner(user_id=user_id, profile_name=profile.name, emoji=animal.emoji, amount=animal.amount)

        results = await asyncio.gather(*(lookup(uid) for uid in user_ids))
        owners = [owner for owner in results if owner is not None]
        owners.sort(key=lambda owner: owner.amount, reverse=True)
        return owners

    async def _advertised_candidate(
        self,
        message_id: int,
        user_id: int,
        kind: CooldownKind,
        message: Any | None,
    ) -> Cooldown | None:
        for cooldown in self._advertised.get(message_id, []):
            if cooldown.kind is kind and cooldown.user_id == user_id:
                return cooldown.copy()
        if message is None or invoking_user_id(message) != user_id:
            return None
        # Cache miss (restart or evicted): derive it from the message again.
        expiry = extract_cooldowns(message).get(kind)
        if expiry is None:
            return None
        try:
            profile = await self._fetch_profile(user_id)
        except ZooFetchError:
            return None
        return self._build({kind: expiry}, message, user_id, profile)[0]

    async def _fetch_profile(self, user_id: int) -> ZooProfile:
        try:
            result = await self.zoo.fetch_profile(user_id)
        except ZooFetchError as exc:
            self.logger.log("zoo.fetch_failed", user_id=user_id, error=str(exc)[:300])
            raise
        if not isinstance(result, ZooProfile):
            detail = describe_failure(result)
            self.logger.log("zoo.fetch_rejected", user_id=user_id, error=detail[:300])
            raise ZooFetchError(detail)
        return result

    def _build(self, found: dict[CooldownKind, float], message: Any, user_id: int, profile: ZooProfile) -> list[Cooldown]:
        return [
            Cooldown(
                kind=kind,
                channel_id=int(message.channel.id),
                user_id=user_id,
                profile=profile.profile_id,
                profile_name=profile.name,
                expiry=expiry,
            )
            for kind, expiry in found.items()
        ]

    def _remember(self, message_id: int, pending: list[Cooldown]) -> None:
        self._advertised[message_id] = pending
        self._advertised.move_to_end(message_id)
        while len(self._advertised) > ADVERTISED_CACHE_LIMIT:
            self._advertised.popitem(last=False)

    def forget(self, message_id: int) -> None:
        self._advertised.pop(message_id, None)
