import asyncio

import pytest

from bloodwatch.models import Delivery, DeliveryStatus, SubscriptionNotificationState
from bloodwatch.services.dispatch import DispatchEngine, SuppressionPolicy
from bloodwatch.services.notifiers import NotifierRegistry
from bloodwatch.utils.resilience import ScheduledBackoffStrategy

pytestmark = pytest.mark.asyncio


def make_engine(world, *notifiers, **kwargs):
    sleeps = []

    async def fake_sleep(delay):
        sleeps.append(delay)

    engine = DispatchEngine(
        world.repository, NotifierRegistry(notifiers), sleep=fake_sleep, **kwargs
    )
    return engine, sleeps


def delivery_for(world, event, subscription) -> Delivery:
    world.session.flush()
    delivery = world.repository.get_delivery(event.id, subscription.id)
    assert delivery is not None
    return delivery


# --- Retries ---


async def test_retries_exhausted_marks_failed(world, notifier_factory):
    subscription = world.subscription()
    event = world.event()
    notifier = notifier_factory(script=["transient", "transient", "transient"])
    engine, sleeps = make_engine(world, notifier)

    sent = await engine.dispatch([event])

    delivery = delivery_for(world, event, subscription)
    assert sent == 0
    assert delivery.attempt_count == 3
    assert delivery.status == DeliveryStatus.FAILED.value
    assert delivery.last_error == "HTTP 503"
    assert delivery.sent_at is None
    assert sleeps == [0.5, 1.0]


async def test_transient_failures_then_success(world, notifier_factory):
    subscription = world.subscription()
    event = world.event()
    notifier = notifier_factory(script=["transient", "transient", "sent"])
    engine, sleeps = make_engine(world, notifier)

    sent = await engine.dispatch([event])

    delivery = delivery_for(world, event, subscription)
    assert sent == 1
    assert delivery.attempt_count == 3
    assert delivery.status == DeliveryStatus.SENT.value
    assert delivery.last_error is None
    assert delivery.sent_at is not None
    assert sleeps == [0.5, 1.0]


async def test_permanent_failure_stops_immediately(world, notifier_factory):
    subscription = world.subscription()
    event = world.event()
    notifier = notifier_factory(script=["permanent"])
    engine, sleeps = make_engine(world, notifier)

    await engine.dispatch([event])

    delivery = delivery_for(world, event, subscription)
    assert delivery.attempt_count == 1
    assert delivery.status == DeliveryStatus.FAILED.value
    assert delivery.last_error == "HTTP 404"
    assert len(notifier.calls) == 1
    assert sleeps == []


async def test_unexpected_exception_is_retried(world, notifier_factory):
    subscription = world.subscription()
    event = world.event()
    notifier = notifier_factory(script=[RuntimeError("socket closed"), "sent"])
    engine, _ = make_engine(world, notifier)

    sent = await engine.dispatch([event])

    delivery = delivery_for(world, event, subscription)
    assert sent == 1
    assert delivery.attempt_count == 2
    assert delivery.status == DeliveryStatus.SENT.value


async def test_custom_attempts_and_schedule(world, notifier_factory):
    world.subscription()
    event = world.event()
    notifier = notifier_factory(script=["transient"] * 5)
    engine, sleeps = make_engine(
        world,
        notifier,
        max_attempts=5,
        backoff=ScheduledBackoffStrategy.from_sequence([1, 3]),
    )

    await engine.dispatch([event])

    assert len(notifier.calls) == 5
    assert sleeps == [1.0, 3.0, 3.0, 3.0]


async def test_missing_notifier_fails_without_attempts(world, notifier_factory):
    subscription = world.subscription(type_key="telegram:chat", target="12345")
    event = world.event()
    engine, _ = make_engine(world, notifier_factory("discord:webhook"))

    sent = await engine.dispatch([event])

    delivery = delivery_for(world, event, subscription)
    assert sent == 0
    assert delivery.attempt_count == 0
    assert delivery.status == DeliveryStatus.FAILED.value
    assert delivery.last_error == "No notifier registered for type 'telegram:chat'."


async def test_legacy_type_key_resolves_to_canonical_notifier(world, notifier_factory):
    subscription = world.subscription(type_key="discord-webhook")
    event = world.event()
    notifier = notifier_factory("discord:webhook")
    engine, _ = make_engine(world, notifier)

    await engine.dispatch([event])

    assert delivery_for(world, event, subscription).status == DeliveryStatus.SENT.value
    assert notifier.targets == [subscription.target]


# --- Delivery idempotency ---


async def test_terminal_delivery_is_not_resent(world, db_session, notifier_factory):
    world.subscription()
    event = world.event()
    notifier = notifier_factory()
    engine, _ = make_engine(world, notifier)

    assert await engine.dispatch([event]) == 1
    db_session.commit()
    assert await engine.dispatch([event]) == 0

    assert len(notifier.calls) == 1
    assert len(world.deliveries()) == 1


async def test_pending_delivery_is_retried_in_place(world, db_session, notifier_factory):
    subscription = world.subscription()
    event = world.event()
    pending = Delivery(
        event_id=event.id,
        subscription_id=subscription.id,
        attempt_count=0,
        status=DeliveryStatus.PENDING.value,
    )
    db_session.add(pending)
    db_session.commit()
    engine, _ = make_engine(world, notifier_factory())

    assert await engine.dispatch([event]) == 1

    [delivery] = world.deliveries()
    assert delivery.id == pending.id
    assert delivery.status == DeliveryStatus.SENT.value


# --- Matching ---


async def test_wildcard_subscription_gets_every_category(world, notifier_factory):
    wildcard = world.subscription(category_filter="*")
    only_o_minus = world.subscription(category_filter="blood-group-o-minus")
    events = [
        world.event(category_key="overall"),
        world.event(category_key="blood-group-o-minus"),
    ]
    engine, _ = make_engine(world, notifier_factory())

    sent = await engine.dispatch(events)

    deliveries = world.deliveries()
    assert sent == 3
    assert sum(1 for d in deliveries if d.subscription_id == wildcard.id) == 2
    assert [d.event_id for d in deliveries if d.subscription_id == only_o_minus.id] == [
        events[1].id
    ]
    assert all(d.status == DeliveryStatus.SENT.value for d in deliveries)


async def test_region_scope_filters_events(world, notifier_factory):
    world.subscription(region_key="pt-sul")
    event = world.event(region_key="pt-norte")
    engine, _ = make_engine(world, notifier_factory())

    assert await engine.dispatch([event]) == 0
    assert world.deliveries() == []


async def test_institution_scope_resolves_to_region(world, notifier_factory):
    institution = world.institution(region_key="pt-norte")
    subscription = world.subscription(institution=institution)
    north = world.event(region_key="pt-norte")
    south = world.event(region_key="pt-sul")
    engine, _ = make_engine(world, notifier_factory())

    sent = await engine.dispatch([north, south])

    assert sent == 1
    assert [d.event_id for d in world.deliveries()] == [north.id]
    assert world.deliveries()[0].subscription_id == subscription.id


async def test_disabled_subscription_is_ignored(world, notifier_factory):
    subscription = world.subscription()
    subscription.disable()
    world.session.flush()
    event = world.event()
    notifier = notifier_factory()
    engine, _ = make_engine(world, notifier)

    assert await engine.dispatch([event]) == 0
    assert notifier.calls == []
    assert subscription.disabled_at is not None


async def test_no_events_is_noop(world, notifier_factory):
    engine, _ = make_engine(world, notifier_factory())

    assert await engine.dispatch([]) == 0


# --- Steady-state suppression ---


async def test_steady_state_is_suppressed_until_worsening_then_recovery(
    world, db_session, notifier_factory
):
    subscription = world.subscription()
    notifier = notifier_factory()
    engine, _ = make_engine(world, notifier)

    async def cycle(**event_kwargs) -> int:
        event = world.event(**event_kwargs)
        sent = await engine.dispatch([event])
        db_session.commit()
        return sent

    assert await cycle(transition="initial-critical", bucket=1) == 1
    for _ in range(3):
        assert await cycle(transition="still-critical", bucket=1) == 0
    assert await cycle(transition="still-critical", bucket=2) == 1
    assert await cycle(transition="still-critical", bucket=2) == 0
    assert await cycle(
        transition="recovered-from-critical", signal="recovery", bucket=None
    ) == 1
    assert await cycle(transition="still-critical", bucket=1) == 1

    kinds = [call.notification_kind for call in notifier.calls]
    assert kinds == [
        "critical-alert",
        "critical-worsening",
        "recovery",
        "critical-alert",
    ]
    assert len(world.deliveries()) == 4

    state = db_session.query(SubscriptionNotificationState).one()
    assert state.subscription_id == subscription.id
    assert state.is_open is True
    assert state.last_notified_bucket == 1
    assert state.last_recovery_notified_at is not None


async def test_pairs_in_one_batch_are_processed_in_order(world, notifier_factory):
    world.subscription()
    events = [
        world.event(transition="entered-critical", bucket=1),
        world.event(transition="still-critical", bucket=1),
        world.event(transition="still-critical", bucket=1),
    ]
    notifier = notifier_factory()
    engine, _ = make_engine(world, notifier)

    assert await engine.dispatch(events) == 1
    assert len(notifier.calls) == 1


async def test_failed_alert_does_not_open_episode(world, db_session, notifier_factory):
    world.subscription()
    notifier = notifier_factory(script=["permanent"])
    engine, _ = make_engine(world, notifier)

    await engine.dispatch([world.event(transition="entered-critical")])
    db_session.commit()
    sent = await engine.dispatch([world.event(transition="still-critical")])

    assert sent == 1
    assert notifier.calls[-1].notification_kind == "critical-alert"


async def test_disabled_recovery_closes_episode_silently(
    world, db_session, notifier_factory
):
    subscription = world.subscription()
    notifier = notifier_factory()
    engine, _ = make_engine(
        world, notifier, policy=SuppressionPolicy(send_recovery=False)
    )

    assert await engine.dispatch([world.event(transition="entered-critical")]) == 1
    db_session.commit()
    recovery = world.event(
        transition="recovered-from-critical", signal="recovery", bucket=None
    )
    assert await engine.dispatch([recovery]) == 0
    db_session.commit()
    assert await engine.dispatch([world.event(transition="still-critical")]) == 1

    assert len(notifier.calls) == 2
    db_session.flush()
    assert world.repository.get_delivery(recovery.id, subscription.id) is None


async def test_unknown_signal_is_not_sent(world, notifier_factory):
    world.subscription()
    event = world.event(transition="unknown", signal="unknown", bucket=None)
    notifier = notifier_factory()
    engine, _ = make_engine(world, notifier)

    assert await engine.dispatch([event]) == 0
    assert notifier.calls == []
    assert world.deliveries() == []


# --- Cancellation ---


async def test_cancellation_propagates(world, notifier_factory):
    world.subscription()
    event = world.event()
    notifier = notifier_factory(script=[asyncio.CancelledError()])
    engine, _ = make_engine(world, notifier)

    with pytest.raises(asyncio.CancelledError):
        await engine.dispatch([event])

