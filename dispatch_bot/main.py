from __future__ import annotations

import asyncio

from .adapters.discord import DiscordNotifier
from .bot import DispatchBot
from .commands.register import register_commands
from .config import load_settings
from .core.reconciler import AssignmentReconciler, CandidatePolicy
from .data.store import DispatchStore
from .logging_config import setup_logging


def main() -> int:
    settings = load_settings()
    log = setup_logging(settings.log_level)
    if not settings.token:
        log.error(
            "DISCORD_BOT_TOKEN is not set. "
            "Export it in your environment before running."
        )
        return 2
    store = DispatchStore(path=settings.data_path)
    reconciler = AssignmentReconciler(
        store,
        policy=CandidatePolicy(settings.candidate_policy),
        check_availability=settings.check_availability,
        max_attempts=settings.reconcile_attempts,
    )
    notifier = DiscordNotifier(settings.token, lookup=store.discord_id_for)
    bot = DispatchBot(
        store,
        notifier,
        reminder_lead_hours=settings.reminder_lead_hours,
        sync_per_guild=settings.sync_per_guild,
    )
    register_commands(bot, store, reconciler, notifier)

    async def runner():
        try:
            async with bot:
                await bot.start(settings.token)
        except KeyboardInterrupt:
            log.info("Shutting down...")
        return 0

    return asyncio.run(runner())


if __name__ == "__main__":
    raise SystemExit(main())
