from datetime import datetime, timezone
from decimal import Decimal

from bloodwatch.models import Event
from bloodwatch.services.contracts import (
    Category,
    EventPayload,
    RegionRef,
    RuleEvent,
    SourceRef,
)
from bloodwatch.services.idempotency import (
    EventCandidate,
    EventPersister,
    compute_idempotency_key,
)

SOURCE = SourceRef("pt-transparencia-sns", "Portugal SNS Transparency")
CAPTURED_AT = datetime(2026, 2, 19, 12, 0, tzinfo=timezone.utc)


def make_rule_event(units: str = "90", critical: str = "100", **payload) -> RuleEvent:
    values = dict(
        signal="critical-active",
        transition_kind="entered-critical",
        source=SOURCE.adapter_key,
        region="pt-norte",
        category="overall",
        captured_at=CAPTURED_AT,
        current_units=Decimal(units),
        critical_units=Decimal(critical),
        current_state="critical",
        current_critical_bucket=1,
    )
    values.update(payload)
    return RuleEvent(
        rule_key="low-stock-threshold.v1",
        source=SOURCE,
        region=RegionRef("pt-norte", "Norte"),
        category=Category("overall", "overall"),
        payload=EventPayload(**values),
    )


def test_key_is_stable_sha256_hex():
    key = compute_idempotency_key(make_rule_event())

    assert len(key) == 64
    assert key == compute_idempotency_key(make_rule_event())


def test_key_ignores_threshold_metadata():
    assert compute_idempotency_key(make_rule_event(critical="100")) == compute_idempotency_key(
        make_rule_event(critical="140")
    )


def test_key_depends_on_rule_and_pair():
    base = make_rule_event()
    other_rule = RuleEvent(
        rule_key="reserve-status-transition.v1",
        source=base.source,
        region=base.region,
        category=base.category,
        payload=base.payload,
    )
    other_region = RuleEvent(
        rule_key=base.rule_key,
        source=base.source,
        region=RegionRef("pt-sul", "Sul"),
        category=base.category,
        payload=base.payload,
    )

    keys = {compute_idempotency_key(e) for e in (base, other_rule, other_region)}
    assert len(keys) == 3


def test_same_change_twice_inserts_once(world, db_session):
    reserve = world.reserve()
    region = world.region()
    persister = EventPersister(world.repository)

    def candidate() -> EventCandidate:
        return EventCandidate(make_rule_event(), world.source.id, region.id, reserve.id)

    first = persister.persist([candidate()])
    db_session.commit()
    second = persister.persist([candidate()])

    assert len(first) == 1
    assert second == []
    assert db_session.query(Event).count() == 1


def test_duplicates_within_a_batch_collapse_to_first(world, db_session):
    reserve = world.reserve()
    region = world.region()
    first = EventCandidate(make_rule_event(), world.source.id, region.id, reserve.id)
    duplicate = EventCandidate(
        make_rule_event(critical="140"), world.source.id, region.id, reserve.id
    )
    distinct = EventCandidate(
        make_rule_event(units="80"), world.source.id, region.id, reserve.id
    )

    persisted = EventPersister(world.repository).persist([first, duplicate, distinct])

    assert len(persisted) == 2
    assert persisted[0].payload_json == first.rule_event.payload.to_json()
    assert persisted[0].idempotency_key == first.idempotency_key
    assert db_session.query(Event).count() == 2


def test_event_row_links_reserve_and_payload(world):
    reserve = world.reserve()
    region = world.region()
    candidate = EventCandidate(make_rule_event(), world.source.id, region.id, reserve.id)

    [event] = EventPersister(world.repository).persist([candidate])

    assert event.current_reserve_id == reserve.id
    assert event.rule_key == "low-stock-threshold.v1"
    assert event.category_key == "overall"
    assert EventPayload.parse(event.payload_json).transition_kind == "entered-critical"
    assert world.repository.events_for_current_reserve(reserve.id) == [event]


def test_empty_batch_is_noop(world):
    assert EventPersister(world.repository).persist([]) == []
