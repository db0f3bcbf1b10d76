from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

from zookeeper.formatting import ProfileUrl, notification_text
from zookeeper.models import Cooldown
from zookeeper.services.cooldown_service import CooldownService, SnapshotWriteError
from zookeeper.services.logger_service import LoggerService

# Expired longer ago than this (bot was down or stalled) means drop without pinging.
NOTIFY_GRACE_SEC = 10 * 60

SendFn = Callable[[int, str], Awaitable[None]]


@dataclass
class Notification:
    channel_id: int
    text: str
    cooldown: Cooldown


def should_notify(cooldown: Cooldown, now: float, disabled: frozenset[int] | set[int]) -> bool:
    if cooldown.user_id in disabled:
        return False
    return now - cooldown.expiry <= NOTIFY_GRACE_SEC


class ExpirySweeper:
    def __init__(
        self,
        cooldowns: CooldownService,
        logger: LoggerService,
        send: SendFn,
        profile_url: ProfileUrl,
        interval_sec: float = 1.0,
    ) -> None:
        self.cooldowns = cooldowns
        self.logger = logger
        self.send = send
        self.profile_url = profile_url
        self.interval_sec = interval_sec
        self._task: asyncio.Task | None = None
        self._stopping: asyncio.Event | None = None

    @property
    def running(self) -> bool:
        return bool(self._task and not self._task.done())

    def start(self) -> None:
        if self.running:
            return
        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._run_loop(), name="cooldown-sweeper")

    async def stop(self) -> None:
        """Stop scheduling ticks and wait for a tick that is already running."""
        if self._stopping is not None:
            self._stopping.set()
        if self._task is not None:
            await self._task
            self._task = None

    async def _run_loop(self) -> None:
        assert self._stopping is not None
        while not self._stopping.is_set():
            try:
                await self.run_once()
            except Exception as exc:  # noqa: BLE001
                self.logger.log("sweeper.tick_failed", error=str(exc)[:300])
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval_sec)
            except asyncio.TimeoutError:
                continue

    async def run_once(self, now: float | None = None) -> list[Notification]:
        """
        One sweep: drop every expired entry, then notify the ones still worth a ping.

        Removal is persisted before anything is sent, so a failed send can never
        cause a second notification for the same timer.
        """

        now_ts = float(now if now is not None else time.time())
        try:
            expired = await self.cooldowns.sweep_expired(now_ts)
        except SnapshotWriteError as exc:
            expired = exc.changed
            self.logger.log("sweeper.persist_failed", removed=len(expired), error=str(exc)[:300])
        if not expired:
            return []
        disabled = await self.cooldowns.disabled_snapshot()
        notifications: list[Notification] = []
        for cooldown in expired:
            self.logger.log(
                "cooldown.finished",
                kind=cooldown.kind.value,
                expiry=cooldown.expiry,
                user_id=cooldown.user_id,
                profile=cooldown.profile,
            )
            if not should_notify(cooldown, now_ts, disabled):
                continue
            notifications.append(
                Notification(
                    channel_id=cooldown.channel_id,
                    text=notification_text(cooldown, self.profile_url),
                    cooldown=cooldown,
                )
            )
        for notification in notifications:
            await self._dispatch(notification)
        return notifications

    async def _dispatch(self, notification: Notification) -> None:
        try:
            await self.send(notification.channel_id, notification.text)
        except Exception as exc:  # noqa: BLE001
            self.logger.log(
                "sweeper.notify_failed",
                channel_id=notification.channel_id,
                user_id=notification.cooldown.user_id,
                error=str(exc)[:300],
            )
