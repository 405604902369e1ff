"""
Data access for the alerting pipeline.

Wraps one SQLAlchemy session; the caller owns the unit of work and commits
through `transaction()`. Query methods never commit on their own.
"""

from contextlib import contextmanager
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Set, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bloodwatch.models import (
    CurrentReserve,
    Delivery,
    Event,
    Institution,
    Region,
    Source,
    Subscription,
    SubscriptionNotificationState,
)
from bloodwatch.utils.exceptions import RepositoryError
from bloodwatch.utils.logger import get_logger

logger = get_logger(__name__)

# keeps IN (...) lists well under driver parameter limits
_IN_CHUNK_SIZE = 500


def _chunks(values: Sequence[str], size: int = _IN_CHUNK_SIZE) -> Iterator[Sequence[str]]:
    for start in range(0, len(values), size):
        yield values[start : start + size]


class AlertingRepository:
    def __init__(self, session: Session):
        self.session = session

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """
        Commit on success, roll back on any exception.

        BaseException is caught so that cancellation (asyncio.CancelledError)
        never leaves half-written delivery state behind.
        """
        try:
            yield self.session
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error("transaction_rolled_back", error=str(e), exc_info=True)
            raise RepositoryError(f"Transaction failed: {e}") from e
        except BaseException:
            self.session.rollback()
            raise

    # Sources, regions, institutions

    def get_source(self, adapter_key: str) -> Optional[Source]:
        return self.session.execute(
            select(Source).where(Source.adapter_key == adapter_key)
        ).scalar_one_or_none()

    def get_or_create_source(self, adapter_key: str, name: str) -> Source:
        source = self.get_source(adapter_key)
        if source is None:
            source = Source(adapter_key=adapter_key, name=name or adapter_key)
            self.session.add(source)
            self.session.flush()
            logger.info("source_created", adapter_key=adapter_key)
        return source

    def regions_by_key(self, source_id: str) -> Dict[str, Region]:
        rows = self.session.execute(
            select(Region).where(Region.source_id == source_id)
        ).scalars()
        return {region.key: region for region in rows}

    def regions_by_ids(self, region_ids: Iterable[str]) -> Dict[str, Region]:
        ids = sorted(set(region_ids))
        found: Dict[str, Region] = {}
        for chunk in _chunks(ids):
            for region in self.session.execute(
                select(Region).where(Region.id.in_(chunk))
            ).scalars():
                found[region.id] = region
        return found

    def institutions_by_ids(self, institution_ids: Iterable[str]) -> Dict[str, Institution]:
        ids = sorted(set(institution_ids))
        found: Dict[str, Institution] = {}
        for chunk in _chunks(ids):
            for institution in self.session.execute(
                select(Institution).where(Institution.id.in_(chunk))
            ).scalars():
                found[institution.id] = institution
        return found

    # Current reserves

    def current_reserves(self, source_id: str) -> List[CurrentReserve]:
        return list(
            self.session.execute(
                select(CurrentReserve)
                .where(CurrentReserve.source_id == source_id)
                .order_by(CurrentReserve.region_id, CurrentReserve.category_key)
            ).scalars()
        )

    def get_current_reserve(
        self, source_id: str, region_id: str, category_key: str
    ) -> Optional[CurrentReserve]:
        return self.session.execute(
            select(CurrentReserve).where(
                CurrentReserve.source_id == source_id,
                CurrentReserve.region_id == region_id,
                CurrentReserve.category_key == category_key,
            )
        ).scalar_one_or_none()

    # Events

    def existing_idempotency_keys(self, keys: Iterable[str]) -> Set[str]:
        candidates = sorted(set(keys))
        existing: Set[str] = set()
        for chunk in _chunks(candidates):
            existing.update(
                self.session.execute(
                    select(Event.idempotency_key).where(
                        Event.idempotency_key.in_(chunk)
                    )
                ).scalars()
            )
        return existing

    def events_for_current_reserve(self, current_reserve_id: str) -> List[Event]:
        return list(
            self.session.execute(
                select(Event)
                .where(Event.current_reserve_id == current_reserve_id)
                .order_by(Event.created_at)
            ).scalars()
        )

    # Subscriptions

    def enabled_subscriptions(self, source_ids: Iterable[str]) -> List[Subscription]:
        ids = sorted(set(source_ids))
        if not ids:
            return []
        return list(
            self.session.execute(
                select(Subscription)
                .where(
                    Subscription.source_id.in_(ids),
                    Subscription.is_enabled.is_(True),
                )
                .order_by(Subscription.created_at, Subscription.id)
            ).scalars()
        )

    def get_subscription(self, subscription_id: str) -> Optional[Subscription]:
        return self.session.get(Subscription, subscription_id)

    # Deliveries

    def deliveries_for(
        self, event_ids: Iterable[str], subscription_ids: Iterable[str]
    ) -> Dict[Tuple[str, str], Delivery]:
        events = sorted(set(event_ids))
        subscriptions = set(subscription_ids)
        found: Dict[Tuple[str, str], Delivery] = {}
        if not events or not subscriptions:
            return found
        for chunk in _chunks(events):
            for delivery in self.session.execute(
                select(Delivery).where(Delivery.event_id.in_(chunk))
            ).scalars():
                if delivery.subscription_id in subscriptions:
                    found[(delivery.event_id, delivery.subscription_id)] = delivery
        return found

    def get_delivery(self, event_id: str, subscription_id: str) -> Optional[Delivery]:
        return self.session.execute(
            select(Delivery).where(
                Delivery.event_id == event_id,
                Delivery.subscription_id == subscription_id,
            )
        ).scalar_one_or_none()

    def deliveries_for_subscription(
        self, subscription_id: str, limit: Optional[int] = None
    ) -> List[Delivery]:
        query = (
            select(Delivery)
            .where(Delivery.subscription_id == subscription_id)
            .order_by(Delivery.created_at.desc(), Delivery.id)
        )
        if limit is not None:
            query = query.limit(limit)
        return list(self.session.execute(query).scalars())

    # Notification episodes

    def notification_states(
        self, subscription_ids: Iterable[str]
    ) -> Dict[Tuple[str, str, str, str], SubscriptionNotificationState]:
        ids = sorted(set(subscription_ids))
        found: Dict[Tuple[str, str, str, str], SubscriptionNotificationState] = {}
        for chunk in _chunks(ids):
            for state in self.session.execute(
                select(SubscriptionNotificationState).where(
                    SubscriptionNotificationState.subscription_id.in_(chunk)
                )
            ).scalars():
                key = (
                    state.subscription_id,
                    state.region_id,
                    state.category_key,
                    state.rule_key,
                )
                found[key] = state
        return found
