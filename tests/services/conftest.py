from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

import pytest
from sqlalchemy.orm import Session

from bloodwatch.models import (
    CurrentReserve,
    Delivery,
    Event,
    Institution,
    Region,
    Source,
    Subscription,
)
from bloodwatch.services.contracts import (
    Category,
    DispatchEvent,
    EventPayload,
    FailureKind,
    NotificationOutcome,
    RegionRef,
    RuleEvent,
    SourceRef,
)
from bloodwatch.services.idempotency import EventCandidate, EventPersister
from bloodwatch.services.notifiers.base import BaseNotifier
from bloodwatch.services.repository import AlertingRepository

SOURCE_KEY = "pt-transparencia-sns"
LOW_STOCK_RULE = "low-stock-threshold.v1"
BASE_CAPTURED_AT = datetime(2026, 2, 19, 12, 0, tzinfo=timezone.utc)


class ScriptedNotifier(BaseNotifier):
    """Notifier double that replays a script of outcomes, then keeps sending."""

    def __init__(self, type_key: str = "discord:webhook", script: Optional[List] = None):
        self.type_key = type_key
        self.script = list(script or [])
        self.calls: List[DispatchEvent] = []
        self.targets: List[str] = []

    async def send(self, event: DispatchEvent, target: str) -> NotificationOutcome:
        self.calls.append(event)
        self.targets.append(target)
        step = self.script.pop(0) if self.script else "sent"
        if isinstance(step, BaseException):
            raise step
        if step == "transient":
            return NotificationOutcome.failed("HTTP 503", FailureKind.TRANSIENT)
        if step == "permanent":
            return NotificationOutcome.failed("HTTP 404", FailureKind.PERMANENT)
        return NotificationOutcome.sent()

    async def _deliver(self, event: DispatchEvent, target: str) -> None:
        raise NotImplementedError


class AlertingWorld:
    """Seeds sources, regions and subscriptions into a test database."""

    def __init__(self, session: Session):
        self.session = session
        self.repository = AlertingRepository(session)
        self.source = Source(adapter_key=SOURCE_KEY, name="Portugal SNS Transparency")
        session.add(self.source)
        session.flush()
        self.regions: Dict[str, Region] = {}
        self.reserves: Dict[Tuple[str, str], CurrentReserve] = {}
        self._tick = 0

    def region(self, key: str = "pt-norte") -> Region:
        if key not in self.regions:
            self.session.flush()
            region = self.repository.regions_by_key(self.source.id).get(key)
            if region is None:
                region = Region(
                    source_id=self.source.id, key=key, display_name=key.title()
                )
                self.session.add(region)
                self.session.flush()
            self.regions[key] = region
        return self.regions[key]

    def reserve(
        self, region_key: str = "pt-norte", category_key: str = "overall"
    ) -> CurrentReserve:
        key = (region_key, category_key)
        if key not in self.reserves:
            reserve = CurrentReserve(
                source_id=self.source.id,
                region_id=self.region(region_key).id,
                category_key=category_key,
                value=Decimal("90"),
                unit="units",
                captured_at=BASE_CAPTURED_AT,
            )
            self.session.add(reserve)
            self.session.flush()
            self.reserves[key] = reserve
        return self.reserves[key]

    def event(
        self,
        transition: str = "initial-critical",
        signal: str = "critical-active",
        bucket: Optional[int] = 1,
        region_key: str = "pt-norte",
        category_key: str = "overall",
        rule_key: str = LOW_STOCK_RULE,
    ) -> Event:
        """Persist one event; every call gets a later capture time."""
        self._tick += 1
        region = self.region(region_key)
        reserve = self.reserve(region_key, category_key)
        payload = EventPayload(
            signal=signal,
            transition_kind=transition,
            source=SOURCE_KEY,
            region=region_key,
            category=category_key,
            captured_at=BASE_CAPTURED_AT + timedelta(minutes=10 * self._tick),
            current_units=Decimal("90"),
            critical_units=Decimal("100"),
            current_state="normal" if signal == "recovery" else "critical",
            current_critical_bucket=bucket,
        )
        rule_event = RuleEvent(
            rule_key=rule_key,
            source=SourceRef(self.source.adapter_key, self.source.name),
            region=RegionRef(region.key, region.display_name),
            category=Category(category_key, category_key),
            payload=payload,
        )
        persisted = EventPersister(self.repository).persist(
            [EventCandidate(rule_event, self.source.id, region.id, reserve.id)]
        )
        assert len(persisted) == 1
        return persisted[0]

    def deliveries(self) -> List[Delivery]:
        self.session.flush()
        return list(self.session.query(Delivery).order_by(Delivery.created_at).all())

    def institution(self, region_key: str = "pt-norte", code: str = "IPST-N") -> Institution:
        institution = Institution(
            source_id=self.source.id,
            region_id=self.region(region_key).id,
            code=code,
            name=f"Institution {code}",
        )
        self.session.add(institution)
        self.session.flush()
        return institution

    def subscription(
        self,
        type_key: str = "discord:webhook",
        target: str = "https://discord.com/api/webhooks/1/abc",
        region_key: Optional[str] = "pt-norte",
        category_filter: str = "*",
        institution: Optional[Institution] = None,
        is_enabled: bool = True,
    ) -> Subscription:
        subscription = Subscription(
            source_id=self.source.id,
            type_key=type_key,
            target=target,
            scope_type="institution" if institution is not None else "region",
            region_filter=None if institution is not None else region_key,
            institution_id=institution.id if institution is not None else None,
            category_filter=category_filter,
            is_enabled=is_enabled,
        )
        self.session.add(subscription)
        self.session.flush()
        return subscription


@pytest.fixture
def world(db_session: Session) -> AlertingWorld:
    return AlertingWorld(db_session)


@pytest.fixture
def notifier_factory():
    return ScriptedNotifier
