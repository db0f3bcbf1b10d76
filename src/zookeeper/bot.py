from __future__ import annotations

import asyncio
import contextlib
import platform
import traceback
import uuid
from datetime import datetime, timezone
from importlib.metadata import PackageNotFoundError, version
from typing import Any

import discord
from discord.ext import commands

from zookeeper.config import Settings
from zookeeper.formatting import cooldown_list_text, relative_time
from zookeeper.models import CooldownKind
from zookeeper.services.cooldown_service import CooldownService, SnapshotWriteError
from zookeeper.services.logger_service import LoggerService
from zookeeper.services.sweeper_service import ExpirySweeper
from zookeeper.services.tracker_service import CooldownTracker
from zookeeper.services.zoo_service import ZooService
from zookeeper.storage import MessagePackStore, peek
from zookeeper.utils.discord_utils import resolve_text_channel

WARNING_EMOJI = "⚠️"
FIND_ANIMAL_LIMIT = 20


def _package_version() -> str:
    try:
        return version("zookeeper-bot")
    except PackageNotFoundError:
        return "dev"


class ZookeeperBot(commands.Bot):
    def __init__(self, settings: Settings) -> None:
        intents = discord.Intents.default()
        intents.guilds = True
        intents.messages = True
        intents.message_content = True
        intents.reactions = True
        super().__init__(
            command_prefix=settings.command_prefix,
            intents=intents,
            help_command=None,
            owner_ids=set(settings.owner_ids) or None,
        )
        self.settings = settings
        self.store = MessagePackStore(settings.store_path)
        self.logger = LoggerService(self.store)
        self.cooldowns = CooldownService(self.store)
        self.zoo = ZooService(settings)
        self.tracker = CooldownTracker(settings.zoo_user_id, self.cooldowns, self.zoo, self.logger)
        self.sweeper = ExpirySweeper(
            self.cooldowns,
            self.logger,
            self._send_channel_message,
            self.zoo.profile_url,
            interval_sec=settings.sweep_interval_sec,
        )
        self.started_at = datetime.now(tz=timezone.utc)
        self._autosave_task: asyncio.Task | None = None
        self._ready_once = False

    async def setup_hook(self) -> None:
        await self.cooldowns.load()
        stored_owners = set(await self.cooldowns.owners())
        if stored_owners:
            self.owner_ids = set(self.owner_ids or set()) | stored_owners
        self._autosave_task = asyncio.create_task(self.store.autosave_loop(), name="msgpack-autosave")
        self._register_commands()

    async def close(self) -> None:
        await self._shutdown_services()
        await super().close()

    async def _shutdown_services(self) -> None:
        await self.sweeper.stop()
        if self._autosave_task is not None:
            self._autosave_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._autosave_task
            self._autosave_task = None
        # The read side waits out any mutation still holding the write lock.
        try:
            await self.cooldowns.save()
        except SnapshotWriteError as exc:
            self.logger.log("store.final_save_failed", error=str(exc)[:300])

    def _register_commands(self) -> None:
        @self.command(name="botstatus")
        async def botstatus(ctx: commands.Context) -> None:
            tracked = await self.cooldowns.count()
            embed = discord.Embed(
                description=(
                    f"**Version:** v{_package_version()}\n"
                    f"**Uptime:** {relative_time(self.started_at.timestamp())}\n"
                    f"**Python version:** v{platform.python_version()}\n"
                    f"**discord.py version:** v{discord.__version__}\n"
                    f"**Tracked cooldowns:** {tracked}\n"
                    f"**Sweeper active:** `{self.sweeper.running}`"
                )
            )
            failure = self.logger.last_failure()
            if failure is not None:
                embed.add_field(name="Last failure", value=f"`{failure['event']}` at {failure['ts']}", inline=False)
            embed.set_author(name="Zookeeper")
            await ctx.send(embed=embed)

        @self.command(name="cooldowns")
        async def cooldowns_cmd(ctx: commands.Context, user: discord.User | None = None) -> None:
            text = await self._cooldowns_text(ctx, user)
            await ctx.send(text, allowed_mentions=discord.AllowedMentions.none())

        @self.command(name="disable")
        async def disable(ctx: commands.Context) -> None:
            await self.cooldowns.set_disabled(ctx.author.id, True)
            self.logger.log("user.disabled", user_id=ctx.author.id)
            await ctx.send(
                "No longer tracking your cooldowns or sending notifications.\n"
                f"Use `{self.settings.command_prefix}enable` to start again."
            )

        @self.command(name="enable")
        async def enable(ctx: commands.Context) -> None:
            await self.cooldowns.set_disabled(ctx.author.id, False)
            self.logger.log("user.enabled", user_id=ctx.author.id)
            await ctx.send(
                "Tracking your cooldowns and sending notifications.\n"
                f"Use `{self.settings.command_prefix}disable` to stop."
            )

        @self.command(name="manual")
        async def manual(ctx: commands.Context, mode: str | None = None) -> None:
            if mode is None:
                enabled = not await self.cooldowns.is_manual(ctx.author.id)
            elif mode.lower() in {"on", "true", "yes"}:
                enabled = True
            elif mode.lower() in {"off", "false", "no"}:
                enabled = False
            else:
                raise commands.BadArgument("Mode must be `on` or `off`.")
            await self.cooldowns.set_manual(ctx.author.id, enabled)
            self.logger.log("user.manual", user_id=ctx.author.id, enabled=enabled)
            if enabled:
                await ctx.send("Manual mode on. React with the cooldown emoji I add to start tracking it.")
            else:
                await ctx.send("Manual mode off. Cooldowns are tracked automatically.")

        @self.command(name="findanimal")
        async def findanimal(ctx: commands.Context, *, animal: str) -> None:
            async with ctx.typing():
                owners = await self.tracker.find_animal(ctx.channel.id, animal)
            if not owners:
                await ctx.send(f"Nobody seen in this channel has **{animal}**.")
                return
            lines = [f"Owners of **{animal}**:"]
            for owner in owners[:FIND_ANIMAL_LIMIT]:
                lines.append(f"- <@{owner.user_id}> ({owner.profile_name}): {owner.emoji} x{owner.amount}")
            if len(owners) > FIND_ANIMAL_LIMIT:
                lines.append(f"... and {len(owners) - FIND_ANIMAL_LIMIT} more")
            await ctx.send("\n".join(lines), allowed_mentions=discord.AllowedMentions.none())

    async def _cooldowns_text(self, ctx: commands.Context, user: discord.User | None) -> str:
        profile_url = self.zoo.profile_url
        if user is not None:
            rows = await self.cooldowns.query(user_id=user.id)
            return cooldown_list_text(
                rows,
                profile_url,
                heading=f"Cooldowns tracked for {user.mention}:",
                empty=f"No cooldowns tracked for {user.mention}.",
                tracking_enabled=not await self.cooldowns.is_disabled(user.id),
            )
        if await self.is_owner(ctx.author):
            rows = await self.cooldowns.query(user_id=ctx.author.id, channel_id=ctx.channel.id)
            channel = getattr(ctx.channel, "mention", "this channel")
            return cooldown_list_text(
                rows,
                profile_url,
                heading=f"Cooldowns tracked in {channel}:",
                empty=f"No cooldowns tracked in {channel}.",
                show_owner=True,
            )
        rows = await self.cooldowns.query(user_id=ctx.author.id)
        return cooldown_list_text(
            rows,
            profile_url,
            heading="Your tracked cooldowns:",
            empty="No cooldowns tracked. Use Zoo `/rescue` to start.",
            tracking_enabled=not await self.cooldowns.is_disabled(ctx.author.id),
        )

    async def on_ready(self) -> None:
        if self._ready_once:
            return
        self._ready_once = True
        self.sweeper.start()
        self.logger.log("bot.ready", user_id=self.user.id if self.user else None, guilds=len(self.guilds))
        print(f"Connected as {self.user} ({self.user.id if self.user else '?'})")

    async def on_command(self, ctx: commands.Context) -> None:
        self.logger.log(
            "command.invoked",
            user_id=ctx.author.id,
            user_name=str(ctx.author),
            command=ctx.command.qualified_name if ctx.command else "unknown",
        )

    async def on_command_error(self, ctx: commands.Context, exception: Exception) -> None:
        if isinstance(exception, commands.CommandNotFound):
            return
        if isinstance(exception, commands.CheckFailure):
            await ctx.send("Not authorized.")
            return
        if isinstance(exception, (commands.BadArgument, commands.MissingRequiredArgument)):
            await ctx.send(str(exception))
            return
        error_id = uuid.uuid4().hex[:8]
        original = getattr(exception, "original", exception)
        detail = "".join(traceback.format_exception(type(original), original, original.__traceback__))
        self.logger.log(
            "command.error",
            error_id=error_id,
            command=ctx.command.name if ctx.command else "unknown",
            error=detail[-1500:],
        )
        await ctx.send(f"Something went wrong. Error id: `{error_id}`")

    async def on_message(self, message: discord.Message) -> None:
        if message.author.id == self.settings.zoo_user_id:
            await self._track_message(message)
            return
        if message.author.bot:
            return
        await self.process_commands(message)

    async def _track_message(self, message: discord.Message) -> None:
        try:
            result = await self.tracker.process_message(message)
        except SnapshotWriteError as exc:
            self.logger.log("cooldown.persist_failed", message_id=message.id, error=str(exc)[:300])
            return
        if result.status == "fetch_failed":
            self.logger.log(
                "cooldown.track_failed",
                message_id=message.id,
                channel_id=message.channel.id,
                user_id=result.user_id,
                error=result.error,
            )
            await self._react(message, WARNING_EMOJI)
            return
        for kind in result.reaction_kinds:
            await self._react(message, kind.emoji)

    async def _react(self, message: discord.Message, emoji: str) -> None:
        try:
            await message.add_reaction(emoji)
        except discord.HTTPException as exc:
            self.logger.log("reaction.failed", message_id=message.id, emoji=emoji, error=str(exc)[:300])

    async def on_raw_reaction_add(self, payload: discord.RawReactionActionEvent) -> None:
        kind = await self._manual_reaction_kind(payload)
        if kind is None:
            return
        try:
            confirmed = await self.tracker.confirm(payload.message_id, payload.user_id, kind)
            if confirmed is None:
                message = await self._fetch_message(payload.channel_id, payload.message_id)
                if message is not None:
                    await self.tracker.confirm(payload.message_id, payload.user_id, kind, message)
        except SnapshotWriteError as exc:
            self.logger.log("cooldown.persist_failed", message_id=payload.message_id, error=str(exc)[:300])

    async def on_raw_reaction_remove(self, payload: discord.RawReactionActionEvent) -> None:
        kind = await self._manual_reaction_kind(payload)
        if kind is None:
            return
        try:
            removed = await self.tracker.revoke(payload.message_id, payload.user_id, kind)
            if not removed:
                message = await self._fetch_message(payload.channel_id, payload.message_id)
                if message is not None:
                    await self.tracker.revoke(payload.message_id, payload.user_id, kind, message)
        except SnapshotWriteError as exc:
            self.logger.log("cooldown.persist_failed", message_id=payload.message_id, error=str(exc)[:300])

    async def on_raw_message_delete(self, payload: discord.RawMessageDeleteEvent) -> None:
        self.tracker.forget(payload.message_id)

    async def _manual_reaction_kind(self, payload: discord.RawReactionActionEvent) -> CooldownKind | None:
        if self.user is not None and payload.user_id == self.user.id:
            return None
        kind = CooldownKind.from_emoji(str(payload.emoji))
        if kind is None:
            return None
        if not await self.cooldowns.is_manual(payload.user_id):
            return None
        return kind

    async def _fetch_message(self, channel_id: int, message_id: int) -> Any | None:
        channel = await resolve_text_channel(self, channel_id)
        if channel is None:
            return None
        try:
            return await channel.fetch_message(message_id)
        except discord.HTTPException as exc:
            self.logger.log("message.fetch_failed", channel_id=channel_id, message_id=message_id, error=str(exc)[:300])
            return None

    async def _send_channel_message(self, channel_id: int, text: str) -> None:
        channel = await resolve_text_channel(self, channel_id)
        if channel is None:
            raise RuntimeError(f"Channel {channel_id} is not reachable.")
        await channel.send(text, allowed_mentions=discord.AllowedMentions(users=True))


def main() -> None:
    settings = Settings.load()
    token = settings.discord_token or str(peek(settings.store_path, "token", ""))
    if not token:
        raise RuntimeError("DISCORD_TOKEN is required in passwords.txt or the stored state.")
    bot = ZookeeperBot(settings)
    bot.run(token)
