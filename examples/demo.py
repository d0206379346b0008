from datetime import datetime, timedelta, timezone

from abuse_throttle import ActionType, AlertType, Severity, build_context
from abuse_throttle.notifications import LoggingNotificationSink


class SteppingClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now


def main() -> None:
    clock = SteppingClock(datetime.now(timezone.utc))
    context = build_context(backend="memory", notifier=LoggingNotificationSink(), clock=clock)

    for attempt in range(6):
        decision = context.attempts.check_and_record(
            ActionType.SIGNIN,
            ip="10.0.0.10",
            identity="alice@example.com",
            outcome_provider=lambda: False,
            user_agent="demo",
        )
        print(f"attempt {attempt + 1}: allowed={decision.allowed} captcha={decision.captcha_required}")
        if not decision.allowed:
            print("  ", decision.reason)
        clock.now += timedelta(minutes=2)

    clock.now += timedelta(minutes=30)
    print("after cooldown:", context.attempts.check(ActionType.SIGNIN, "10.0.0.10", "alice@example.com").allowed)

    for rate in (12, 14, 19):
        fired = context.alerts.try_trigger(
            AlertType.HIGH_FALSE_POSITIVE_RATE,
            f"False positive rate at {rate}%",
            Severity.ERROR if rate > 15 else Severity.WARNING,
            {"rate": rate},
        )
        print(f"fp rate {rate}%: alert fired={fired}")
        clock.now += timedelta(minutes=20)

    print("unacknowledged alerts:", context.alerts.unacknowledged_count())


if __name__ == "__main__":
    main()
