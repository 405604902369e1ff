"""
Steady-state suppression over alert episodes.

An episode is tracked per (subscription, region, category, rule). Fresh
alerts are always delivered and open the episode once sent; steady-state
signals are delivered only while no episode is open, or when the critical
bucket has worsened by the configured delta; recovery closes the episode.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Tuple

from bloodwatch.models import SubscriptionNotificationState
from bloodwatch.services.contracts import (
    KIND_CRITICAL_ALERT,
    KIND_CRITICAL_WORSENING,
    KIND_RECOVERY,
    KIND_STATUS_ALERT,
    SIGNAL_CRITICAL_ACTIVE,
    SIGNAL_STATUS_ALERT,
    EventPayload,
)

StateKey = Tuple[str, str, str, str]


@dataclass(frozen=True)
class DispatchDecision:
    should_send: bool
    notification_kind: Optional[str] = None
    closes_episode: bool = False
    reason: Optional[str] = None

    @classmethod
    def send(cls, kind: str, closes_episode: bool = False) -> "DispatchDecision":
        return cls(True, kind, closes_episode)

    @classmethod
    def skip(cls, reason: str, closes_episode: bool = False) -> "DispatchDecision":
        return cls(False, None, closes_episode, reason)


class SuppressionPolicy:
    def __init__(self, worsening_bucket_delta: int = 1, send_recovery: bool = True):
        self.worsening_bucket_delta = max(1, int(worsening_bucket_delta))
        self.send_recovery = send_recovery

    @classmethod
    def from_settings(cls, settings: Any) -> "SuppressionPolicy":
        return cls(
            worsening_bucket_delta=settings.ALERT_WORSENING_BUCKET_DELTA,
            send_recovery=settings.ALERT_SEND_RECOVERY_NOTIFICATION,
        )

    def decide(
        self,
        payload: EventPayload,
        state: Optional[SubscriptionNotificationState],
    ) -> DispatchDecision:
        if payload.is_recovery:
            if not self.send_recovery:
                return DispatchDecision.skip("recovery-disabled", closes_episode=True)
            return DispatchDecision.send(KIND_RECOVERY, closes_episode=True)

        if payload.signal == SIGNAL_CRITICAL_ACTIVE:
            kind = KIND_CRITICAL_ALERT
        elif payload.signal == SIGNAL_STATUS_ALERT:
            kind = KIND_STATUS_ALERT
        else:
            return DispatchDecision.skip("unknown-signal")

        if not payload.is_steady_state:
            return DispatchDecision.send(kind)

        if state is None or not state.is_open:
            return DispatchDecision.send(kind)

        if self._has_worsened(payload, state):
            return DispatchDecision.send(KIND_CRITICAL_WORSENING)

        return DispatchDecision.skip("episode-open")

    def _has_worsened(
        self, payload: EventPayload, state: SubscriptionNotificationState
    ) -> bool:
        current = payload.current_critical_bucket
        last = state.last_notified_bucket
        if current is None or last is None:
            return False
        return current >= last + self.worsening_bucket_delta

    @staticmethod
    def open_episode(
        state: SubscriptionNotificationState,
        payload: EventPayload,
        sent_at: datetime,
    ) -> None:
        state.is_open = True
        state.last_notified_at = sent_at
        state.last_notified_bucket = payload.current_critical_bucket
        state.last_notified_value = payload.current_units
        state.updated_at = sent_at

    @staticmethod
    def close_episode(
        state: SubscriptionNotificationState,
        now: datetime,
        recovery_sent_at: Optional[datetime] = None,
    ) -> None:
        state.is_open = False
        state.last_notified_bucket = None
        state.last_notified_value = None
        state.updated_at = now
        if recovery_sent_at is not None:
            state.last_recovery_notified_at = recovery_sent_at
