"""Stateless throttle decisions shared by the attempt and alert gates.

Two policies are built on the same time arithmetic:

* a sliding count, where reaching ``max_count`` qualifying events inside the
  window blocks the key until the oldest counted event plus the block
  duration;
* a single cooldown timestamp, where nothing may fire again until the
  cooldown has elapsed since the last trigger.

Nothing here stores a "blocked" flag. Every decision is recomputed from the
events handed in, so expiry is purely a function of ``now``.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Optional, Protocol

from .models import Decision

Clock = Callable[[], datetime]


class Timestamped(Protocol):
    timestamp: datetime


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _retry_after(until: datetime, now: datetime) -> int:
    return math.ceil((until - now).total_seconds())


def _block(until: datetime, now: datetime, count: int) -> Decision:
    if now < until:
        return Decision(allowed=False, retry_after_seconds=_retry_after(until, now), count=count, block_until=until)
    return Decision(allowed=True, count=count)


def format_retry_after(seconds: int) -> str:
    minutes = max(math.ceil(seconds / 60), 1)
    return f"{minutes} minute" if minutes == 1 else f"{minutes} minutes"


class ThrottleEngine:
    @staticmethod
    def decide(
        events: Iterable[Timestamped],
        window_start: datetime,
        max_count: int,
        block_duration: timedelta,
        now: datetime,
        qualifies: Optional[Callable[[Timestamped], bool]] = None,
    ) -> Decision:
        if max_count < 1:
            raise ValueError(f"max_count must be at least 1, got {max_count}")
        counted = [
            event.timestamp
            for event in events
            if event.timestamp >= window_start and (qualifies is None or qualifies(event))
        ]
        if len(counted) < max_count:
            return Decision(allowed=True, count=len(counted))
        # anchored on the oldest counted event
        return _block(min(counted) + block_duration, now, len(counted))

    @staticmethod
    def cooldown(last_triggered: Optional[datetime], cooldown: timedelta, now: datetime) -> Decision:
        if last_triggered is None:
            return Decision(allowed=True)
        return _block(last_triggered + cooldown, now, 1)


@dataclass(slots=True, frozen=True)
class SlidingWindowPolicy:
    max_count: int
    window: timedelta
    block_duration: timedelta

    def window_start(self, now: datetime) -> datetime:
        return now - self.window

    def evaluate(
        self,
        events: Iterable[Timestamped],
        now: datetime,
        qualifies: Optional[Callable[[Timestamped], bool]] = None,
    ) -> Decision:
        return ThrottleEngine.decide(
            events, self.window_start(now), self.max_count, self.block_duration, now, qualifies
        )


@dataclass(slots=True, frozen=True)
class CooldownPolicy:
    cooldown: timedelta

    def evaluate(self, last_triggered: Optional[datetime], now: datetime) -> Decision:
        return ThrottleEngine.cooldown(last_triggered, self.cooldown, now)
