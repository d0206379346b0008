from datetime import datetime, timedelta, timezone

import pytest

T0 = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = T0):
        self.start = start
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def at_minute(self, minutes: float) -> datetime:
        self.now = self.start + timedelta(minutes=minutes)
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now += timedelta(**delta)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
