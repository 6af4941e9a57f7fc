"""Base notifier interface for delivering messages to riders."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class NotifyResult:
    success: bool
    error: str | None = None


class Notifier(ABC):
    """Abstract channel for reaching a rider (chat, SMS, email ...)."""

    @abstractmethod
    async def notify(self, rider_id: str, message: str) -> NotifyResult:
        """Deliver ``message`` to ``rider_id``; report failure instead of raising."""
