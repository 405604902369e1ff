"""
Notifier channel contract, channel type catalog and registry.

Channels never raise for ordinary remote failures. Implementations raise
`TransientNotifierError` / `PermanentNotifierError` from `_deliver`, and
`send` converts those (and any httpx transport error) into a
`NotificationOutcome`. Only cancellation propagates.
"""

from abc import ABC, abstractmethod
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional

import httpx

from bloodwatch.services.contracts import (
    DispatchEvent,
    FailureKind,
    NotificationOutcome,
)
from bloodwatch.utils.exceptions import (
    NotifierError,
    PermanentNotifierError,
    TransientNotifierError,
)
from bloodwatch.utils.logger import get_logger, mask_target

logger = get_logger(__name__)

DISCORD_WEBHOOK = "discord:webhook"
TELEGRAM_CHAT = "telegram:chat"

LEGACY_DISCORD_WEBHOOK = "discord-webhook"
LEGACY_TELEGRAM_CHAT = "telegram-chat"

# both spellings -> canonical
_CANONICAL_BY_SPELLING: Mapping[str, str] = MappingProxyType(
    {
        DISCORD_WEBHOOK: DISCORD_WEBHOOK,
        LEGACY_DISCORD_WEBHOOK: DISCORD_WEBHOOK,
        TELEGRAM_CHAT: TELEGRAM_CHAT,
        LEGACY_TELEGRAM_CHAT: TELEGRAM_CHAT,
    }
)
_LEGACY_BY_CANONICAL: Mapping[str, str] = MappingProxyType(
    {
        DISCORD_WEBHOOK: LEGACY_DISCORD_WEBHOOK,
        TELEGRAM_CHAT: LEGACY_TELEGRAM_CHAT,
    }
)


def normalize_type_key(raw: Optional[str]) -> Optional[str]:
    """Canonical type key for a stored spelling, or None if unrecognized."""
    if raw is None or not raw.strip():
        return None
    return _CANONICAL_BY_SPELLING.get(raw.strip())


def to_legacy(canonical: str) -> Optional[str]:
    return _LEGACY_BY_CANONICAL.get(canonical)


def is_canonical(raw: Optional[str]) -> bool:
    return raw in _LEGACY_BY_CANONICAL


class BaseNotifier(ABC):
    """Abstract base class for notification channels."""

    type_key: str = ""

    async def send(self, event: DispatchEvent, target: str) -> NotificationOutcome:
        """
        Send one event to one target.

        Args:
            event: Event resolved for display
            target: Channel-specific address (webhook URL, chat id)

        Returns:
            Outcome with failure classification; never raises except on
            cancellation
        """
        try:
            await self._deliver(event, target)
        except PermanentNotifierError as e:
            self._log_failure(target, e, FailureKind.PERMANENT)
            return NotificationOutcome.failed(str(e), FailureKind.PERMANENT)
        except TransientNotifierError as e:
            self._log_failure(target, e, FailureKind.TRANSIENT)
            return NotificationOutcome.failed(str(e), FailureKind.TRANSIENT)
        except httpx.TimeoutException as e:
            self._log_failure(target, e, FailureKind.TRANSIENT)
            return NotificationOutcome.failed(
                f"Request timed out: {e}", FailureKind.TRANSIENT
            )
        except httpx.HTTPError as e:
            self._log_failure(target, e, FailureKind.TRANSIENT)
            return NotificationOutcome.failed(
                f"HTTP error: {e}", FailureKind.TRANSIENT
            )
        return NotificationOutcome.sent()

    @abstractmethod
    async def _deliver(self, event: DispatchEvent, target: str) -> None:
        """Transmit the event; raise a NotifierError subclass on failure."""

    def _log_failure(
        self, target: str, error: Exception, failure_kind: FailureKind
    ) -> None:
        logger.warning(
            "notifier_send_failed",
            type_key=self.type_key,
            target=mask_target(target),
            failure_kind=failure_kind.value,
            error=str(error),
            error_type=type(error).__name__,
        )


class NotifierRegistry:
    """
    Notifier lookup by channel type key.

    Keys are normalized on both registration and lookup so legacy
    subscription spellings resolve to the canonical channel.
    """

    def __init__(self, notifiers: Iterable[BaseNotifier] = ()):
        self._notifiers: Dict[str, BaseNotifier] = {}
        for notifier in notifiers:
            self.register(notifier)

    def register(self, notifier: BaseNotifier) -> None:
        key = normalize_type_key(notifier.type_key) or notifier.type_key.strip()
        if not key:
            raise NotifierError(f"Notifier {type(notifier).__name__} has no type key")
        self._notifiers[key] = notifier

    def get(self, type_key: Optional[str]) -> Optional[BaseNotifier]:
        if type_key is None:
            return None
        key = normalize_type_key(type_key) or type_key.strip()
        return self._notifiers.get(key)

    @property
    def type_keys(self) -> list:
        return sorted(self._notifiers)

    def __contains__(self, type_key: object) -> bool:
        return isinstance(type_key, str) and self.get(type_key) is not None

    def __len__(self) -> int:
        return len(self._notifiers)
