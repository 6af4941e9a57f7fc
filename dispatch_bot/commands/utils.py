from __future__ import annotations

import discord

DISPATCH_CHANNEL = "escort-dispatch"


async def ensure_channels(guild: discord.Guild) -> discord.TextChannel:
    """
    Ensure the dispatch channel exists in ``guild`` and return it.
    """

    channel = discord.utils.get(guild.text_channels, name=DISPATCH_CHANNEL)
    if channel is None:
        channel = await guild.create_text_channel(DISPATCH_CHANNEL)
    return channel
