"""Discord webhook channel."""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from bloodwatch.services.contracts import DispatchEvent
from bloodwatch.services.notifiers.base import DISCORD_WEBHOOK, BaseNotifier
from bloodwatch.services.notifiers.formatter import build_message
from bloodwatch.utils.exceptions import (
    PermanentNotifierError,
    TransientNotifierError,
)
from bloodwatch.utils.logger import get_logger, mask_target

logger = get_logger(__name__)


def build_webhook_payload(event: DispatchEvent) -> Dict[str, Any]:
    message = build_message(event)
    return {
        "content": f"BloodWatch: {message.title}",
        "embeds": [
            {
                "title": message.title,
                "description": message.description,
                "color": message.color,
                "fields": [
                    {"name": name, "value": value, "inline": inline}
                    for name, value, inline in message.fields()
                ],
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        ],
    }


class DiscordWebhookNotifier(BaseNotifier):
    """
    Posts an embed to a Discord webhook URL.

    2xx is success; 429 and 5xx are transient; any other 4xx and a target
    that is not an http(s) URL are permanent.
    """

    type_key = DISCORD_WEBHOOK

    def __init__(self, client: httpx.AsyncClient, timeout: Optional[float] = None):
        self.client = client
        self.timeout = timeout

    async def _deliver(self, event: DispatchEvent, target: str) -> None:
        url = (target or "").strip()
        if not url.lower().startswith(("http://", "https://")):
            raise PermanentNotifierError("Discord webhook target is not an http(s) URL.")

        try:
            request_url = httpx.URL(url)
        except (httpx.InvalidURL, ValueError) as e:
            raise PermanentNotifierError(f"Invalid Discord webhook URL: {e}") from e

        kwargs: Dict[str, Any] = {"json": build_webhook_payload(event)}
        if self.timeout is not None:
            kwargs["timeout"] = self.timeout
        response = await self.client.post(request_url, **kwargs)

        if response.is_success:
            logger.debug(
                "discord_webhook_sent",
                target=mask_target(url),
                event_id=event.event_id,
            )
            return

        status = response.status_code
        error = f"Discord webhook returned {status} ({response.reason_phrase or 'no reason'})."
        if status == 429 or status >= 500:
            raise TransientNotifierError(error)
        raise PermanentNotifierError(error)
