"""
Dispatch engine.

Turns newly persisted events into deliveries: matches subscriptions by
scope and category, applies steady-state suppression, sends through the
registered notifier with bounded retries and records every outcome on the
delivery row. The caller owns the commit.
"""

import asyncio
import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from bloodwatch.models import (
    WILDCARD_CATEGORY,
    Delivery,
    DeliveryStatus,
    Event,
    Institution,
    Region,
    Subscription,
    SubscriptionNotificationState,
    SubscriptionScope,
)
from bloodwatch.monitoring.metrics import (
    DELIVERIES_TOTAL,
    DELIVERY_ATTEMPTS_TOTAL,
    NOTIFICATIONS_SUPPRESSED_TOTAL,
    NOTIFIER_SEND_LATENCY_SECONDS,
)
from bloodwatch.services.contracts import (
    Category,
    DispatchEvent,
    EventPayload,
    FailureKind,
    NotificationOutcome,
    RegionRef,
    SourceRef,
    ensure_utc,
)
from bloodwatch.services.dispatch.suppression import (
    DispatchDecision,
    StateKey,
    SuppressionPolicy,
)
from bloodwatch.services.notifiers.base import (
    BaseNotifier,
    NotifierRegistry,
    normalize_type_key,
)
from bloodwatch.services.repository import AlertingRepository
from bloodwatch.utils.logger import get_logger, mask_target
from bloodwatch.utils.resilience import Bulkhead, ScheduledBackoffStrategy

logger = get_logger(__name__)

MAX_ERROR_LENGTH = 1024
DEFAULT_MAX_ATTEMPTS = 3

Sleep = Callable[[float], Awaitable[Any]]


def trim_error(value: Optional[str]) -> Optional[str]:
    if value is None or not value.strip():
        return None
    return value.strip()[:MAX_ERROR_LENGTH]


def category_matches(category_filter: Optional[str], category_key: str) -> bool:
    normalized = (category_filter or "").strip()
    return not normalized or normalized == WILDCARD_CATEGORY or normalized == category_key


@dataclass
class _PendingPair:
    event: Event
    dispatch_event: DispatchEvent
    subscription: Subscription


class DispatchEngine:
    """
    Owns the notification lifecycle for one batch of events.

    Pairs that share a notification episode are processed strictly in
    order; independent episodes run concurrently, with notifier sends
    bounded by a bulkhead.
    """

    def __init__(
        self,
        repository: AlertingRepository,
        notifiers: NotifierRegistry,
        policy: Optional[SuppressionPolicy] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff: Optional[ScheduledBackoffStrategy] = None,
        bulkhead: Optional[Bulkhead] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.repository = repository
        self.notifiers = notifiers
        self.policy = policy or SuppressionPolicy()
        self.max_attempts = max(1, int(max_attempts))
        self.backoff = backoff or ScheduledBackoffStrategy()
        self.bulkhead = bulkhead or Bulkhead("notifier_dispatch", 4)
        self.sleep = sleep

    @classmethod
    def from_settings(
        cls,
        repository: AlertingRepository,
        notifiers: NotifierRegistry,
        settings: Any,
        sleep: Sleep = asyncio.sleep,
    ) -> "DispatchEngine":
        return cls(
            repository,
            notifiers,
            policy=SuppressionPolicy.from_settings(settings),
            max_attempts=settings.DISPATCH_MAX_ATTEMPTS,
            backoff=ScheduledBackoffStrategy.from_sequence(
                settings.DISPATCH_BACKOFF_SCHEDULE_SECONDS
            ),
            bulkhead=Bulkhead("notifier_dispatch", settings.DISPATCH_MAX_CONCURRENCY),
            sleep=sleep,
        )

    async def dispatch(self, events: Sequence[Event]) -> int:
        """
        Dispatch a batch of newly persisted events.

        Args:
            events: Events inserted by the current cycle

        Returns:
            Number of deliveries that reached `sent` in this call
        """
        if not events:
            return 0

        subscriptions = self.repository.enabled_subscriptions(
            event.source_id for event in events
        )
        if not subscriptions:
            logger.debug("dispatch_no_subscriptions", events=len(events))
            return 0

        regions = self.repository.regions_by_ids(
            event.region_id for event in events if event.region_id
        )
        institutions = self.repository.institutions_by_ids(
            sub.institution_id for sub in subscriptions if sub.institution_id
        )
        deliveries = self.repository.deliveries_for(
            (event.id for event in events), (sub.id for sub in subscriptions)
        )
        states = self.repository.notification_states(sub.id for sub in subscriptions)

        groups: "OrderedDict[StateKey, List[_PendingPair]]" = OrderedDict()
        for event in events:
            region = regions.get(event.region_id) if event.region_id else None
            if region is None:
                logger.warning("dispatch_event_without_region", event_id=event.id)
                continue

            dispatch_event = self._to_dispatch_event(event, region)
            for subscription in subscriptions:
                if subscription.source_id != event.source_id:
                    continue
                if not self._scope_matches(subscription, region, institutions):
                    continue
                if not category_matches(subscription.category_filter, event.category_key):
                    continue
                key = (subscription.id, region.id, event.category_key, event.rule_key)
                groups.setdefault(key, []).append(
                    _PendingPair(event, dispatch_event, subscription)
                )

        if not groups:
            return 0

        tasks = [
            asyncio.ensure_future(self._dispatch_group(key, pairs, deliveries, states))
            for key, pairs in groups.items()
        ]
        try:
            results = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            raise

        sent = sum(results)
        logger.info(
            "dispatch_completed",
            events=len(events),
            pairs=sum(len(pairs) for pairs in groups.values()),
            sent=sent,
        )
        return sent

    async def _dispatch_group(
        self,
        key: StateKey,
        pairs: List[_PendingPair],
        deliveries: Dict[Any, Delivery],
        states: Dict[StateKey, SubscriptionNotificationState],
    ) -> int:
        sent = 0
        for pair in pairs:
            if await self._dispatch_pair(key, pair, deliveries, states):
                sent += 1
        return sent

    async def _dispatch_pair(
        self,
        key: StateKey,
        pair: _PendingPair,
        deliveries: Dict[Any, Delivery],
        states: Dict[StateKey, SubscriptionNotificationState],
    ) -> bool:
        event, subscription = pair.event, pair.subscription
        payload = pair.dispatch_event.payload

        existing = deliveries.get((event.id, subscription.id))
        if existing is not None and existing.status != DeliveryStatus.PENDING.value:
            return False

        state = states.get(key)
        decision = self.policy.decide(payload, state)
        if not decision.should_send:
            self._record_skip(event, subscription, decision, state)
            return False

        delivery = existing or self._create_delivery(event, subscription, deliveries)
        dispatch_event = pair.dispatch_event.with_notification_kind(
            decision.notification_kind
        )

        notifier = self.notifiers.get(subscription.type_key)
        if notifier is None:
            delivery.attempt_count = 0
            delivery.status = DeliveryStatus.FAILED.value
            delivery.last_error = (
                f"No notifier registered for type '{subscription.type_key}'."
            )
            delivery.sent_at = None
            DELIVERIES_TOTAL.labels(
                type_key=subscription.type_key, status=DeliveryStatus.FAILED.value
            ).inc()
            logger.warning(
                "notifier_not_registered",
                type_key=subscription.type_key,
                subscription_id=subscription.id,
            )
            was_sent = False
        else:
            was_sent = await self._send_with_retries(
                notifier, dispatch_event, subscription, delivery
            )

        now = datetime.now(timezone.utc)
        if payload.is_recovery:
            state = state or self._create_state(key, states)
            self.policy.close_episode(
                state, now, ensure_utc(delivery.sent_at) if was_sent else None
            )
        elif was_sent:
            state = state or self._create_state(key, states)
            self.policy.open_episode(state, payload, ensure_utc(delivery.sent_at) or now)
        return was_sent

    async def _send_with_retries(
        self,
        notifier: BaseNotifier,
        event: DispatchEvent,
        subscription: Subscription,
        delivery: Delivery,
    ) -> bool:
        type_key = normalize_type_key(subscription.type_key) or subscription.type_key

        for attempt in range(1, self.max_attempts + 1):
            delivery.attempt_count = attempt
            started = time.perf_counter()
            try:
                async with self.bulkhead.acquire():
                    outcome = await notifier.send(event, subscription.target)
            except Exception as e:
                logger.warning(
                    "delivery_attempt_raised",
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                    event_id=event.event_id,
                    subscription_id=subscription.id,
                    target=mask_target(subscription.target),
                    error=str(e),
                    error_type=type(e).__name__,
                )
                outcome = NotificationOutcome.failed(
                    str(e) or "Unexpected dispatch error.", FailureKind.TRANSIENT
                )
            finally:
                NOTIFIER_SEND_LATENCY_SECONDS.labels(type_key=type_key).observe(
                    time.perf_counter() - started
                )

            if outcome.is_sent:
                delivery.status = DeliveryStatus.SENT.value
                delivery.last_error = None
                delivery.sent_at = outcome.sent_at or datetime.now(timezone.utc)
                DELIVERY_ATTEMPTS_TOTAL.labels(type_key=type_key, result="sent").inc()
                DELIVERIES_TOTAL.labels(
                    type_key=type_key, status=DeliveryStatus.SENT.value
                ).inc()
                return True

            delivery.last_error = (
                trim_error(outcome.error) or "Notifier returned failed delivery status."
            )
            failure_kind = outcome.failure_kind
            if failure_kind == FailureKind.NONE:
                failure_kind = FailureKind.TRANSIENT
            DELIVERY_ATTEMPTS_TOTAL.labels(
                type_key=type_key, result=failure_kind.value
            ).inc()

            if failure_kind == FailureKind.PERMANENT:
                logger.warning(
                    "delivery_failed_permanently",
                    attempt=attempt,
                    event_id=event.event_id,
                    subscription_id=subscription.id,
                    target=mask_target(subscription.target),
                )
                break

            if attempt < self.max_attempts:
                await self.sleep(self.backoff.delay_for(attempt))

        delivery.status = DeliveryStatus.FAILED.value
        delivery.sent_at = None
        if not delivery.last_error:
            delivery.last_error = "Delivery failed after retry attempts."
        DELIVERIES_TOTAL.labels(
            type_key=type_key, status=DeliveryStatus.FAILED.value
        ).inc()
        return False

    def _record_skip(
        self,
        event: Event,
        subscription: Subscription,
        decision: DispatchDecision,
        state: Optional[SubscriptionNotificationState],
    ) -> None:
        if decision.closes_episode and state is not None:
            self.policy.close_episode(state, datetime.now(timezone.utc))
        NOTIFICATIONS_SUPPRESSED_TOTAL.labels(rule_key=event.rule_key).inc()
        logger.debug(
            "notification_suppressed",
            reason=decision.reason,
            event_id=event.id,
            subscription_id=subscription.id,
        )

    def _create_delivery(
        self, event: Event, subscription: Subscription, deliveries: Dict[Any, Delivery]
    ) -> Delivery:
        delivery = Delivery(
            event_id=event.id,
            subscription_id=subscription.id,
            attempt_count=0,
            status=DeliveryStatus.PENDING.value,
        )
        self.repository.session.add(delivery)
        deliveries[(event.id, subscription.id)] = delivery
        return delivery

    def _create_state(
        self, key: StateKey, states: Dict[StateKey, SubscriptionNotificationState]
    ) -> SubscriptionNotificationState:
        subscription_id, region_id, category_key, rule_key = key
        state = SubscriptionNotificationState(
            subscription_id=subscription_id,
            region_id=region_id,
            category_key=category_key,
            rule_key=rule_key,
            is_open=False,
        )
        self.repository.session.add(state)
        states[key] = state
        return state

    @staticmethod
    def _scope_matches(
        subscription: Subscription,
        region: Region,
        institutions: Dict[str, Institution],
    ) -> bool:
        scope = (subscription.scope_type or "").strip().lower()
        if scope == SubscriptionScope.REGION.value:
            return (subscription.region_filter or "").strip() == region.key
        if scope == SubscriptionScope.INSTITUTION.value:
            institution = institutions.get(subscription.institution_id or "")
            return institution is not None and institution.region_id == region.id
        return False

    @staticmethod
    def _to_dispatch_event(event: Event, region: Region) -> DispatchEvent:
        source = event.source
        reserve = event.current_reserve
        return DispatchEvent(
            event_id=event.id,
            rule_key=event.rule_key,
            source=SourceRef(adapter_key=source.adapter_key, name=source.name),
            region=RegionRef(key=region.key, display_name=region.display_name),
            category=Category(
                key=event.category_key,
                label=event.category_key,
                unit=reserve.unit if reserve is not None and reserve.unit else "units",
            ),
            created_at=ensure_utc(event.created_at),
            payload=EventPayload.parse(event.payload_json),
        )
