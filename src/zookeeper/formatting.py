from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

import discord

from zookeeper.models import Cooldown, CooldownKind

LIST_LIMIT = 15

ProfileUrl = Callable[[int, str | None], str]


def relative_time(ts: float) -> str:
    return discord.utils.format_dt(datetime.fromtimestamp(ts, tz=timezone.utc), style="R")


def format_cooldown(cooldown: Cooldown, profile_url: ProfileUrl) -> str:
    kind = cooldown.kind
    if kind is CooldownKind.PROFILE:
        return f"{kind.emoji} {kind.label} {relative_time(cooldown.expiry)}"
    url = profile_url(cooldown.user_id, cooldown.profile)
    return f"[**{cooldown.profile_name}**](<{url}>) {kind.emoji} {kind.label} {relative_time(cooldown.expiry)}"


def notification_text(cooldown: Cooldown, profile_url: ProfileUrl) -> str:
    kind = cooldown.kind
    mention = f"<@{cooldown.user_id}>"
    if kind is CooldownKind.PROFILE:
        return f"{mention} {kind.emoji} {kind.label} cooldown finished"
    url = profile_url(cooldown.user_id, cooldown.profile)
    return (
        f"{mention} {kind.emoji} {kind.label} cooldown finished for [**{cooldown.profile_name}**](<{url}>)\n"
        f"```/profiles profile:{cooldown.profile}```"
    )


def cooldown_list_text(
    cooldowns: list[Cooldown],
    profile_url: ProfileUrl,
    *,
    heading: str,
    empty: str,
    show_owner: bool = False,
    tracking_enabled: bool | None = None,
) -> str:
    if not cooldowns:
        body = empty
    else:
        lines = [heading]
        for cooldown in cooldowns[:LIST_LIMIT]:
            text = format_cooldown(cooldown, profile_url)
            lines.append(f"- <@{cooldown.user_id}>: {text}" if show_owner else f"- {text}")
        if len(cooldowns) > LIST_LIMIT:
            lines.append(f"... and {len(cooldowns) - LIST_LIMIT} more")
        body = "\n".join(lines)
    if tracking_enabled is None:
        return body
    status = "**enabled** ✅" if tracking_enabled else "**disabled** ❌"
    return f"Tracking & notifications: {status}\n{body}"
