from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any


class CooldownKind(str, Enum):
    RESCUE = "Rescue"
    QUEST = "Quest"
    CARD = "Card"
    MECHANIC = "Mechanic"
    PROFILE = "Profile"

    @property
    def emoji(self) -> str:
        return KIND_EMOJI[self]

    @property
    def label(self) -> str:
        return self.value

    @classmethod
    def from_emoji(cls, emoji: str) -> "CooldownKind | None":
        # Clients may drop the variation selector on reaction events.
        bare = emoji.replace("\uFE0F", "")
        for kind, glyph in KIND_EMOJI.items():
            if glyph.replace("\uFE0F", "") == bare:
                return kind
        return None

    def __str__(self) -> str:
        return self.value


KIND_EMOJI: dict[CooldownKind, str] = {
    CooldownKind.RESCUE: "\U0001F43E",
    CooldownKind.QUEST: "\U0001F3D5\uFE0F",
    CooldownKind.CARD: "\U0001F3B4",
    CooldownKind.MECHANIC: "\U0001F527",
    CooldownKind.PROFILE: "\U0001F464",
}

CooldownKey = tuple[CooldownKind, int, str]


@dataclass
class Cooldown:
    kind: CooldownKind
    channel_id: int
    user_id: int
    profile: str
    profile_name: str
    expiry: float

    @property
    def key(self) -> CooldownKey:
        return (self.kind, self.user_id, self.profile)

    def copy(self) -> "Cooldown":
        return replace(self)

    def to_row(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "channel_id": int(self.channel_id),
            "user_id": int(self.user_id),
            "profile": self.profile,
            "profile_name": self.profile_name,
            "expiry": float(self.expiry),
        }

    @staticmethod
    def from_row(row: dict[str, Any]) -> "Cooldown":
        # Rows written before kinds existed are rescue timers.
        kind = CooldownKind(str(row.get("kind") or CooldownKind.RESCUE.value))
        return Cooldown(
            kind=kind,
            channel_id=int(row.get("channel_id", 0) or 0),
            user_id=int(row.get("user_id", 0) or 0),
            profile=str(row.get("profile", "")),
            profile_name=str(row.get("profile_name", "")),
            expiry=float(row.get("expiry", 0) or 0),
        )
