"""Abuse Throttling Engine."""

from .alert_gate import AlertGate
from .attempt_gate import AttemptGate
from .config import ThrottleConfig
from .context import ThrottleContext, build_context
from .engine import CooldownPolicy, SlidingWindowPolicy, ThrottleEngine, format_retry_after
from .errors import InvalidAlertType, StoreUnavailable, ThrottleError
from .models import (
    ActionType,
    AlertEvent,
    AlertRule,
    AlertType,
    AttemptEvent,
    AttemptRuleConfig,
    Decision,
    GateDecision,
    KeyScope,
    Severity,
)

__all__ = [
    "ActionType",
    "AlertEvent",
    "AlertGate",
    "AlertRule",
    "AlertType",
    "AttemptEvent",
    "AttemptGate",
    "AttemptRuleConfig",
    "CooldownPolicy",
    "Decision",
    "GateDecision",
    "InvalidAlertType",
    "KeyScope",
    "Severity",
    "SlidingWindowPolicy",
    "StoreUnavailable",
    "ThrottleConfig",
    "ThrottleContext",
    "ThrottleEngine",
    "ThrottleError",
    "build_context",
    "format_retry_after",
]
