from datetime import datetime, timedelta, timezone

import pytest

from abuse_throttle import AttemptEvent, CooldownPolicy, SlidingWindowPolicy, ThrottleEngine, format_retry_after

T0 = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)


def at(minutes: float) -> datetime:
    return T0 + timedelta(minutes=minutes)


def failure(minutes: float, success: bool = False) -> AttemptEvent:
    return AttemptEvent(ip="1.2.3.4", identity=None, action_type="signin", success=success, timestamp=at(minutes))


def signin_policy() -> SlidingWindowPolicy:
    return SlidingWindowPolicy(max_count=5, window=timedelta(minutes=15), block_duration=timedelta(minutes=30))


def test_five_failures_block_until_oldest_plus_duration():
    events = [failure(m) for m in (0, 2, 4, 6, 8)]
    decision = signin_policy().evaluate(events, at(8))
    assert not decision.allowed
    assert decision.retry_after_seconds == 1320
    assert decision.block_until == at(30)
    assert decision.count == 5


def test_block_expires_without_state_change():
    events = [failure(m) for m in (0, 2, 4, 6, 8)]
    assert signin_policy().evaluate(events, at(31)).allowed


def test_fewer_than_max_is_allowed():
    events = [failure(m) for m in (0, 1, 2, 3)]
    decision = signin_policy().evaluate(events, at(4))
    assert decision.allowed
    assert decision.count == 4


def test_window_start_is_inclusive():
    events = [failure(m) for m in (0, 1, 2, 3, 4)]
    decision = ThrottleEngine.decide(events, at(0), 5, timedelta(minutes=30), at(4))
    assert not decision.allowed

    later = ThrottleEngine.decide(events, at(0) + timedelta(seconds=1), 5, timedelta(minutes=30), at(4))
    assert later.allowed


def test_retry_after_decreases_and_allows_at_block_until():
    policy = SlidingWindowPolicy(max_count=3, window=timedelta(minutes=60), block_duration=timedelta(minutes=30))
    events = [failure(m) for m in (0, 1, 2)]

    previous = None
    for minute in (2, 10, 20, 29, 29.99):
        decision = policy.evaluate(events, at(minute))
        assert not decision.allowed
        assert decision.retry_after_seconds > 0
        if previous is not None:
            assert decision.retry_after_seconds < previous
        previous = decision.retry_after_seconds

    assert policy.evaluate(events, at(30)).allowed


def test_refailing_while_blocked_does_not_extend_block():
    policy = SlidingWindowPolicy(max_count=3, window=timedelta(minutes=60), block_duration=timedelta(minutes=30))
    events = [failure(m) for m in (0, 1, 2)]
    first = policy.evaluate(events, at(5))

    events += [failure(m) for m in (5, 10, 20)]
    second = policy.evaluate(events, at(20))

    assert first.block_until == second.block_until == at(30)


def test_input_order_does_not_matter():
    events = [failure(m) for m in (8, 0, 6, 2, 4)]
    decision = signin_policy().evaluate(events, at(8))
    assert decision.block_until == at(30)


def test_qualifies_filters_counted_events():
    events = [failure(m) for m in (0, 1, 2, 3)] + [failure(4, success=True), failure(5, success=True)]
    decision = signin_policy().evaluate(events, at(6), qualifies=lambda event: not event.success)
    assert decision.allowed
    assert decision.count == 4


def test_clock_skewed_future_event_still_counts():
    events = [failure(m) for m in (0, 1, 2, 3)] + [failure(9)]
    decision = signin_policy().evaluate(events, at(8))
    assert not decision.allowed
    assert decision.block_until == at(30)


def test_cooldown_policy():
    policy = CooldownPolicy(timedelta(minutes=60))
    assert policy.evaluate(None, at(0)).allowed

    blocked = policy.evaluate(at(0), at(59))
    assert not blocked.allowed
    assert blocked.retry_after_seconds == 60

    assert policy.evaluate(at(0), at(60)).allowed


def test_format_retry_after_rounds_up_to_minutes():
    assert format_retry_after(1320) == "22 minutes"
    assert format_retry_after(61) == "2 minutes"
    assert format_retry_after(60) == "1 minute"
    assert format_retry_after(1) == "1 minute"


def test_non_positive_max_count_is_rejected():
    with pytest.raises(ValueError):
        ThrottleEngine.decide([], at(-15), 0, timedelta(minutes=30), at(0))
