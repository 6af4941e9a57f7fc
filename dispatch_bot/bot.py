"""Discord bot hosting the dispatch slash commands and reminder loop."""

from __future__ import annotations

import datetime
import logging
from typing import Any

import discord
from discord.ext import commands, tasks

from .adapters.base import Notifier
from .commands.utils import ensure_channels
from .core.notifications import send_pending_notifications, send_reminders
from .data.store import DispatchStore

log = logging.getLogger(__name__)


class DispatchBot(commands.Bot):
    """``discord.py`` bot used by dispatch admins.

    The store and notifier are handed in by the caller; the bot only owns
    the periodic reminder task.
    """

    reminder_task: tasks.Loop | None

    def __init__(
        self,
        store: DispatchStore,
        notifier: Notifier | None = None,
        *,
        reminder_lead_hours: int = 24,
        sync_per_guild: bool = True,
        **kwargs: Any,
    ) -> None:
        intents = kwargs.pop("intents", None) or discord.Intents.default()
        # Slash commands only; message content is never read.
        intents.message_content = False
        super().__init__(
            command_prefix=kwargs.pop("command_prefix", "!"),
            intents=intents,
        )
        self.store = store
        self.notifier = notifier
        self.reminder_lead = datetime.timedelta(hours=reminder_lead_hours)
        self.sync_per_guild = sync_per_guild
        self.reminder_task = None

    async def setup_hook(self) -> None:
        """Start the reminder loop, sync slash commands and prepare channels."""
        if self.notifier is not None:
            self.reminder_task = tasks.loop(minutes=15.0, reconnect=True)(
                self._send_due_reminders
            )
            self.reminder_task.start()

        await self.tree.sync()

        for guild in self.guilds:
            try:
                if self.sync_per_guild:
                    self.tree.copy_global_to(guild=guild)
                    await self.tree.sync(guild=guild)
                await ensure_channels(guild)
            except Exception:  # pragma: no cover - avoid failing startup
                log.exception(
                    "Failed to prepare dispatch channel for guild %s",
                    getattr(guild, "id", "?"),
                )

        await super().setup_hook()

    async def _send_due_reminders(self) -> None:
        if self.notifier is None:
            return
        retried = await send_pending_notifications(self.store, self.notifier)
        if retried:
            sent = sum(1 for o in retried if o.success)
            log.info("Delivered %d/%d pending assignment notices", sent, len(retried))
        outcomes = await send_reminders(self.store, self.notifier, self.reminder_lead)
        if outcomes:
            sent = sum(1 for o in outcomes if o.success)
            log.info("Sent %d/%d assignment reminders", sent, len(outcomes))

    async def on_ready(self) -> None:  # pragma: no cover - requires discord
        await self.change_presence(activity=discord.Game(name="Escort dispatch"))
        log.info(
            "Logged in as %s (%s)",
            self.user,
            self.user.id if self.user else "?",
        )

    async def close(self) -> None:
        if self.reminder_task is not None:
            self.reminder_task.cancel()
        close_notifier = getattr(self.notifier, "close", None)
        if close_notifier is not None:
            await close_notifier()
        await super().close()


__all__ = ["DispatchBot"]
