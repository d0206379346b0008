from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional


class ActionType(str, Enum):
    SIGNIN = "signin"
    SIGNUP = "signup"
    RESET_PASSWORD = "reset_password"


class KeyScope(str, Enum):
    IP = "ip"
    IDENTITY = "identity"


class AlertType(str, Enum):
    HIGH_FALSE_POSITIVE_RATE = "HIGH_FALSE_POSITIVE_RATE"
    HIGH_BOT_ACTIVITY = "HIGH_BOT_ACTIVITY"
    THRESHOLD_DRIFT = "THRESHOLD_DRIFT"
    ANOMALY_DETECTED = "ANOMALY_DETECTED"


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


def normalize_identity(identity: Optional[str]) -> Optional[str]:
    if identity is None:
        return None
    cleaned = identity.strip().lower()
    return cleaned or None


@dataclass(slots=True, frozen=True)
class AttemptEvent:
    ip: str
    identity: Optional[str]
    action_type: str
    success: bool
    timestamp: datetime
    user_agent: Optional[str] = None

    def key_for(self, scope: KeyScope) -> Optional[str]:
        return self.ip if scope is KeyScope.IP else self.identity


@dataclass(slots=True, frozen=True)
class AttemptRuleConfig:
    max_attempts: int
    window_minutes: int
    block_duration_minutes: int

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")

    @property
    def window(self) -> timedelta:
        return timedelta(minutes=self.window_minutes)

    @property
    def block_duration(self) -> timedelta:
        return timedelta(minutes=self.block_duration_minutes)


@dataclass(slots=True)
class AlertRule:
    type: AlertType
    enabled: bool = True
    threshold: float = 0.0
    cooldown_minutes: int = 60
    last_triggered: Optional[datetime] = None

    @property
    def cooldown(self) -> timedelta:
        return timedelta(minutes=self.cooldown_minutes)

    def copy(self, **changes: Any) -> "AlertRule":
        return replace(self, **changes)


@dataclass(slots=True)
class AlertEvent:
    id: str
    type: AlertType
    timestamp: datetime
    message: str
    severity: Severity
    acknowledged: bool = False
    data: Optional[Dict[str, Any]] = None


@dataclass(slots=True, frozen=True)
class Decision:
    allowed: bool
    retry_after_seconds: int = 0
    count: int = 0
    block_until: Optional[datetime] = None


@dataclass(slots=True)
class GateDecision:
    allowed: bool
    retry_after_seconds: Optional[int] = None
    reason: Optional[str] = None
    scope: Optional[KeyScope] = None
    captcha_required: bool = False

    @classmethod
    def allow(cls, captcha_required: bool = False) -> "GateDecision":
        return cls(allowed=True, captcha_required=captcha_required)


@dataclass(slots=True)
class AttemptSummary:
    """Masked view of a stored attempt, safe to show to operators."""

    ip_masked: str
    identity_masked: Optional[str]
    action_type: str
    success: bool
    timestamp: datetime
    user_agent_short: Optional[str] = None
