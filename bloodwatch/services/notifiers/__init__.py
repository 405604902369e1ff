from typing import Any, List, Optional

import httpx

from .base import (
    DISCORD_WEBHOOK,
    LEGACY_DISCORD_WEBHOOK,
    LEGACY_TELEGRAM_CHAT,
    TELEGRAM_CHAT,
    BaseNotifier,
    NotifierRegistry,
    is_canonical,
    normalize_type_key,
    to_legacy,
)
from .discord import DiscordWebhookNotifier
from .telegram import TelegramNotifier


def create_http_client(settings: Any) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=settings.NOTIFIER_HTTP_TIMEOUT_SECONDS)


def default_notifiers(
    settings: Any, client: Optional[httpx.AsyncClient] = None
) -> List[BaseNotifier]:
    """Both built-in channels, sharing one HTTP client."""
    http_client = client or create_http_client(settings)
    return [
        DiscordWebhookNotifier(http_client),
        TelegramNotifier(
            http_client,
            bot_token=settings.TELEGRAM_BOT_TOKEN,
            api_base_url=settings.TELEGRAM_API_BASE_URL,
        ),
    ]


__all__ = [
    "DISCORD_WEBHOOK",
    "LEGACY_DISCORD_WEBHOOK",
    "LEGACY_TELEGRAM_CHAT",
    "TELEGRAM_CHAT",
    "BaseNotifier",
    "DiscordWebhookNotifier",
    "NotifierRegistry",
    "TelegramNotifier",
    "create_http_client",
    "default_notifiers",
    "is_canonical",
    "normalize_type_key",
    "to_legacy",
]
