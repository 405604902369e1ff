from bloodwatch.utils.resilience import ScheduledBackoffStrategy


def test_default_schedule():
    backoff = ScheduledBackoffStrategy()

    assert list(backoff.delays(3)) == [0.5, 1.0, 2.0]


def test_last_delay_repeats():
    backoff = ScheduledBackoffStrategy.from_sequence([1, 5])

    assert [backoff.delay_for(attempt) for attempt in (1, 2, 3, 4)] == [1.0, 5.0, 5.0, 5.0]


def test_empty_and_negative_schedules_do_not_wait():
    assert ScheduledBackoffStrategy.from_sequence([]).delay_for(1) == 0.0
    assert ScheduledBackoffStrategy.from_sequence([-3]).delay_for(2) == 0.0
