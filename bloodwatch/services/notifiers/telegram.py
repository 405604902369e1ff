"""Telegram Bot API channel."""

from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from bloodwatch.services.contracts import DispatchEvent, FailureKind
from bloodwatch.services.notifiers.base import TELEGRAM_CHAT, BaseNotifier
from bloodwatch.services.notifiers.formatter import FormattedMessage, build_message
from bloodwatch.utils.exceptions import (
    PermanentNotifierError,
    TransientNotifierError,
)
from bloodwatch.utils.logger import get_logger, mask_target

logger = get_logger(__name__)

DEFAULT_API_BASE_URL = "https://api.telegram.org"

_TRANSIENT_DESCRIPTIONS = ("too many requests", "timeout")
_PERMANENT_DESCRIPTIONS = (
    "chat not found",
    "chat_id",
    "bot was blocked",
    "forbidden",
    "unauthorized",
)


@dataclass(frozen=True)
class TelegramApiResponse:
    ok: bool = False
    error_code: Optional[int] = None
    description: Optional[str] = None

    @classmethod
    def from_response(cls, response: httpx.Response) -> "TelegramApiResponse":
        try:
            body = response.json()
        except ValueError:
            return cls()
        if not isinstance(body, dict):
            return cls()
        error_code = body.get("error_code")
        description = body.get("description")
        return cls(
            ok=body.get("ok") is True,
            error_code=error_code
            if isinstance(error_code, int) and not isinstance(error_code, bool)
            else None,
            description=description if isinstance(description, str) else None,
        )


def classify_telegram_failure(
    status_code: int, error_code: Optional[int], description: Optional[str]
) -> FailureKind:
    if status_code == 429 or error_code == 429:
        return FailureKind.TRANSIENT
    if status_code >= 500 or (error_code is not None and error_code >= 500):
        return FailureKind.TRANSIENT
    if status_code in (401, 403):
        return FailureKind.PERMANENT

    normalized = (description or "").strip().lower()
    if any(marker in normalized for marker in _TRANSIENT_DESCRIPTIONS):
        return FailureKind.TRANSIENT
    if any(marker in normalized for marker in _PERMANENT_DESCRIPTIONS):
        return FailureKind.PERMANENT

    if 400 <= status_code < 500:
        return FailureKind.PERMANENT
    return FailureKind.TRANSIENT


def build_text(message: FormattedMessage) -> str:
    lines = [
        f"BloodWatch: {message.title}",
        message.description,
        "",
        f"Change: {message.change_summary}",
        f"Blood group: {message.category_label}",
        f"Region: {message.region_label}",
        f"Source: {message.source_label}",
        f"Captured at: {message.captured_at_label}",
    ]
    return "\n".join(lines)


class TelegramNotifier(BaseNotifier):
    """Sends a plain-text message to a chat through `sendMessage`."""

    type_key = TELEGRAM_CHAT

    def __init__(
        self,
        client: httpx.AsyncClient,
        bot_token: Optional[str],
        api_base_url: str = DEFAULT_API_BASE_URL,
        timeout: Optional[float] = None,
    ):
        self.client = client
        self.bot_token = (bot_token or "").strip()
        self.api_base_url = api_base_url.rstrip("/")
        self.timeout = timeout

    async def _deliver(self, event: DispatchEvent, target: str) -> None:
        if not self.bot_token:
            raise PermanentNotifierError("Telegram bot token is not configured.")
        chat_id = (target or "").strip()
        if not chat_id:
            raise PermanentNotifierError("Telegram chat id is empty.")

        body: Dict[str, Any] = {
            "chat_id": chat_id,
            "text": build_text(build_message(event)),
            "disable_web_page_preview": True,
        }
        kwargs: Dict[str, Any] = {"json": body}
        if self.timeout is not None:
            kwargs["timeout"] = self.timeout

        response = await self.client.post(
            f"{self.api_base_url}/bot{self.bot_token}/sendMessage", **kwargs
        )
        api_response = TelegramApiResponse.from_response(response)
        if response.is_success and api_response.ok:
            logger.debug(
                "telegram_message_sent",
                target=mask_target(chat_id),
                event_id=event.event_id,
            )
            return

        failure_kind = classify_telegram_failure(
            response.status_code, api_response.error_code, api_response.description
        )
        detail = f" {api_response.description.strip()}" if api_response.description else ""
        error = (
            f"Telegram send failed with {response.status_code} "
            f"({response.reason_phrase or 'no reason'}).{detail}"
        )
        if failure_kind == FailureKind.PERMANENT:
            raise PermanentNotifierError(error)
        raise TransientNotifierError(error)
