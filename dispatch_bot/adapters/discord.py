"""Discord notifier implementing :class:`~dispatch_bot.adapters.base.Notifier`.

Riders are reached by direct message. The adapter uses :mod:`httpx` to talk
to Discord's HTTP API directly, which keeps it independent of the gateway
connection held by the bot.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

import httpx

from .base import Notifier, NotifyResult

log = logging.getLogger(__name__)


class DiscordNotifier(Notifier):
    """Notifier that sends direct messages through the Discord HTTP API."""

    api_base = "https://discord.com/api"

    def __init__(
        self,
        token: str,
        lookup: Callable[[str], int | None],
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Store the bot ``token`` and how to map rider IDs to Discord users.

        Parameters
        ----------
        token:
            Bot token used for the ``Authorization`` header.
        lookup:
            Returns the Discord user ID linked to a rider, or ``None``.
        client:
            Optional preconfigured :class:`httpx.AsyncClient`.

        """
        self.token = token
        self.lookup = lookup
        self.client = client or httpx.AsyncClient()

    @property
    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bot {self.token}"}

    # ------------------------------------------------------------------
    async def open_dm_channel(self, user_id: int) -> str:
        """Open (or fetch) the DM channel with ``user_id`` and return its id."""
        url = f"{self.api_base}/users/@me/channels"
        response = await self.client.post(
            url, json={"recipient_id": str(user_id)}, headers=self._headers
        )
        response.raise_for_status()
        data: dict[str, Any] = response.json()
        return str(data["id"])

    async def send_message(self, channel_id: str, content: str) -> None:
        """Send ``content`` to a channel."""
        url = f"{self.api_base}/channels/{channel_id}/messages"
        response = await self.client.post(
            url, json={"content": content}, headers=self._headers
        )
        response.raise_for_status()

    async def notify(self, rider_id: str, message: str) -> NotifyResult:
        user_id = self.lookup(rider_id)
        if user_id is None:
            return NotifyResult(False, f"Rider {rider_id} has no linked Discord account")
        try:
            channel_id = await self.open_dm_channel(user_id)
            await self.send_message(channel_id, message)
        except httpx.HTTPError as exc:
            log.warning("Discord delivery to rider %s failed: %s", rider_id, exc)
            return NotifyResult(False, str(exc))
        return NotifyResult(True)

    async def close(self) -> None:
        """Close the underlying :class:`httpx.AsyncClient`."""
        await self.client.aclose()
