from __future__ import annotations

from typing import Any

import discord


def invoking_user_id(message: Any) -> int | None:
    """
    Resolve who ran the slash command that produced a bot message.

    Newer gateways send `interaction_metadata`; older payloads only carry the
    deprecated `interaction` block.
    """

    metadata = getattr(message, "interaction_metadata", None)
    user = getattr(metadata, "user", None) if metadata is not None else None
    if user is None:
        interaction = getattr(message, "interaction", None)
        user = getattr(interaction, "user", None) if interaction is not None else None
    if user is None:
        return None
    return int(user.id)


async def resolve_text_channel(bot: discord.Client, channel_id: int) -> discord.abc.Messageable | None:
    channel = bot.get_channel(channel_id)
    if channel is not None:
        return channel  # type: ignore[return-value]
    try:
        fetched = await bot.fetch_channel(channel_id)
    except (discord.NotFound, discord.Forbidden, discord.HTTPException):
        return None
    if isinstance(fetched, discord.abc.Messageable):
        return fetched
    return None
