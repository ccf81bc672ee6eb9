"""Telegram status narration for the signal desk."""

from .narrator import TelegramNarrator
from .telegram_client import TelegramClient, TelegramConfig

__all__ = [
    "TelegramClient",
    "TelegramConfig",
    "TelegramNarrator",
]
