"""
Cooldown extraction from Zoo bot messages.

Each cooldown kind has an ordered tuple of strategies. A strategy looks at one
part of a message (embed field, embed description, embed footer or the plain
content) and returns an absolute expiry as UTC unix seconds, or None. The
first strategy that returns a value wins.

Relative strategies anchor the parsed duration on the message creation time.
Absolute strategies trust the `<t:SECONDS>` tag and ignore the duration shown
next to it.
"""

from __future__ import annotations

import re
from typing import Any, Callable

from zookeeper.models import CooldownKind

DURATION_PATTERN = r"(?:(?P<days>\d+)d \+ )?(?:(?P<hours>\d+):)?(?P<minutes>\d+):(?P<seconds>\d+)"
TIMESTAMP_TAG_PATTERN = r"\(<t:(?P<ts>\d+)(?::[a-zA-Z])?>\)"

_DURATION_RE = re.compile(DURATION_PATTERN)

RESCUE_RE = re.compile(rf"another animal in \*\*{DURATION_PATTERN}\*\*")
RESCUE_MODIFIER_RE = re.compile(rf"finishes in {DURATION_PATTERN}")
QUEST_RE = re.compile(rf"quest will finish in \*\*{DURATION_PATTERN}\*\*")
PROFILE_RE = re.compile(rf"change profiles in {DURATION_PATTERN}")


def _listing_re(label: str) -> re.Pattern[str]:
    return re.compile(rf"{re.escape(label)} \*\*{DURATION_PATTERN}\*\* {TIMESTAMP_TAG_PATTERN}")


RESCUE_TODO_RE = _listing_re("Next Rescue:")
QUEST_TODO_RE = _listing_re("Quest Finishes:")
CARD_TODO_RE = _listing_re("Next Card Pull:")
MECHANIC_TODO_RE = _listing_re("Next Mechanic:")

RESCUE_FIELD = "\U0001F553 Cooldown"
QUEST_FIELD = "\U0001F332 Quest ends"

Strategy = Callable[[Any], float | None]


def parse_duration(text: str) -> int | None:
    """Return the number of seconds in a `[Dd + ][H:]M:S` token, or None."""
    match = _DURATION_RE.search(text or "")
    if match is None:
        return None
    return _duration_from_match(match)


def _duration_from_match(match: re.Match[str]) -> int:
    # Every group is \d+, so only the optional ones need a default.
    days = int(match.group("days") or 0)
    hours = int(match.group("hours") or 0)
    minutes = int(match.group("minutes"))
    seconds = int(match.group("seconds"))
    return days * 86400 + hours * 3600 + minutes * 60 + seconds


def message_time(message: Any) -> float:
    created_at = getattr(message, "created_at", None)
    if created_at is None:
        return 0.0
    return float(created_at.timestamp())


def _first_embed(message: Any) -> Any | None:
    embeds = getattr(message, "embeds", None) or []
    return embeds[0] if embeds else None


def _content(message: Any) -> str:
    return str(getattr(message, "content", "") or "")


def _description(message: Any) -> str:
    embed = _first_embed(message)
    if embed is None:
        return ""
    return str(getattr(embed, "description", None) or "")


def _footer(message: Any) -> str:
    embed = _first_embed(message)
    if embed is None:
        return ""
    footer = getattr(embed, "footer", None)
    if footer is None:
        return ""
    return str(getattr(footer, "text", None) or "")


def embed_field(name: str) -> Strategy:
    def strategy(message: Any) -> float | None:
        embed = _first_embed(message)
        if embed is None:
            return None
        field = next((f for f in getattr(embed, "fields", []) if f.name == name), None)
        if field is None:
            return None
        seconds = parse_duration(str(field.value or ""))
        if seconds is None:
            return None
        return message_time(message) + seconds

    return strategy


def relative(pattern: re.Pattern[str], source: Callable[[Any], str]) -> Strategy:
    def strategy(message: Any) -> float | None:
        match = pattern.search(source(message))
        if match is None:
            return None
        return message_time(message) + _duration_from_match(match)

    return strategy


def absolute(pattern: re.Pattern[str], source: Callable[[Any], str]) -> Strategy:
    def strategy(message: Any) -> float | None:
        match = pattern.search(source(message))
        if match is None:
            return None
        return float(match.group("ts"))

    return strategy


KIND_STRATEGIES: dict[CooldownKind, tuple[Strategy, ...]] = {
    CooldownKind.RESCUE: (
        embed_field(RESCUE_FIELD),
        absolute(RESCUE_TODO_RE, _description),
        relative(RESCUE_RE, _content),
        absolute(RESCUE_TODO_RE, _content),
        # Items that raise the cooldown after a rescue report the new value here.
        relative(RESCUE_MODIFIER_RE, _content),
    ),
    CooldownKind.QUEST: (
        embed_field(QUEST_FIELD),
        absolute(QUEST_TODO_RE, _description),
        relative(QUEST_RE, _content),
        absolute(QUEST_TODO_RE, _content),
    ),
    CooldownKind.CARD: (
        absolute(CARD_TODO_RE, _description),
        absolute(CARD_TODO_RE, _content),
    ),
    CooldownKind.MECHANIC: (
        absolute(MECHANIC_TODO_RE, _description),
        absolute(MECHANIC_TODO_RE, _content),
    ),
    CooldownKind.PROFILE: (
        relative(PROFILE_RE, _footer),
        relative(PROFILE_RE, _content),
    ),
}


def extract(kind: CooldownKind, message: Any) -> float | None:
    for strategy in KIND_STRATEGIES[kind]:
        expiry = strategy(message)
        if expiry is not None:
            return expiry
    return None


def extract_rescue_cooldown(message: Any) -> float | None:
    return extract(CooldownKind.RESCUE, message)


def extract_quest_cooldown(message: Any) -> float | None:
    return extract(CooldownKind.QUEST, message)


def extract_card_cooldown(message: Any) -> float | None:
    return extract(CooldownKind.CARD, message)


def extract_mechanic_cooldown(message: Any) -> float | None:
    return extract(CooldownKind.MECHANIC, message)


def extract_profile_cooldown(message: Any) -> float | None:
    return extract(CooldownKind.PROFILE, message)


def extract_cooldowns(message: Any) -> dict[CooldownKind, float]:
    """Run every kind against the message; kinds with no match are left out."""
    found: dict[CooldownKind, float] = {}
    for kind in CooldownKind:
        expiry = extract(kind, message)
        if expiry is not None:
            found[kind] = expiry
    return found
