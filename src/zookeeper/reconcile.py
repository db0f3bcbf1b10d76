from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from zookeeper.models import Cooldown

# Two renderings of the same server-side timer can disagree by a second or so.
JITTER_TOLERANCE_SEC = 2.0


class Outcome(str, Enum):
    ADDED = "added"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


@dataclass
class CooldownChange:
    outcome: Outcome
    cooldown: Cooldown
    previous_expiry: float | None = None


def classify(existing: Cooldown | None, candidate: Cooldown) -> Outcome:
    if existing is None:
        return Outcome.ADDED
    if abs(existing.expiry - candidate.expiry) <= JITTER_TOLERANCE_SEC:
        return Outcome.UNCHANGED
    return Outcome.UPDATED


def would_change(existing: Cooldown | None, candidate: Cooldown) -> bool:
    return classify(existing, candidate) is not Outcome.UNCHANGED


def merge(existing: Cooldown | None, candidate: Cooldown) -> tuple[Cooldown, CooldownChange]:
    """
    Fold a fresh observation into the stored entry for the same identity.

    Returns the entry to keep and the change it represents. The existing
    object is mutated in place when present.
    """

    outcome = classify(existing, candidate)
    if existing is None:
        kept = candidate.copy()
        return kept, CooldownChange(outcome, kept.copy())
    previous = existing.expiry
    existing.channel_id = candidate.channel_id
    existing.profile_name = candidate.profile_name
    if outcome is Outcome.UPDATED:
        existing.expiry = candidate.expiry
    return existing, CooldownChange(outcome, existing.copy(), previous_expiry=previous)
