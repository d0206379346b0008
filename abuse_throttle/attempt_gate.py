from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, List, Optional, Tuple, Union

from .audit import AuditSink, mask_identity
from .config import ThrottleConfig
from .engine import Clock, SlidingWindowPolicy, format_retry_after, utcnow
from .models import ActionType, AttemptEvent, Decision, GateDecision, KeyScope, normalize_identity
from .persistence import AttemptStore

logger = logging.getLogger(__name__)

_SCOPE_PHRASES = {
    KeyScope.IP: "from this IP",
    KeyScope.IDENTITY: "for this account",
}


def _action_name(action_type: Union[ActionType, str]) -> str:
    return action_type.value if isinstance(action_type, ActionType) else str(action_type)


def _failed(event: AttemptEvent) -> bool:
    return not event.success


def denial_reason(action: str, scope: KeyScope, retry_after_seconds: int) -> str:
    return (
        f"Too many failed {action} attempts {_SCOPE_PHRASES[scope]}. "
        f"Please try again in {format_retry_after(retry_after_seconds)}."
    )


class AttemptGate:
    """Decides whether an authentication attempt may proceed.

    The IP key and the identity key are throttled independently; either one
    being blocked denies the attempt. Only failed attempts count toward the
    limit, but every outcome is recorded.
    """

    def __init__(
        self,
        store: AttemptStore,
        audit_sink: AuditSink,
        config: ThrottleConfig | None = None,
        clock: Clock | None = None,
    ):
        self.store = store
        self.audit_sink = audit_sink
        self.config = config or ThrottleConfig()
        self.clock = clock or utcnow

    def check(
        self,
        action_type: Union[ActionType, str],
        ip: str,
        identity: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> GateDecision:
        action = _action_name(action_type)
        rule = self.config.rule_for(action)
        if rule is None:
            return GateDecision.allow()

        now = self.clock()
        identity = normalize_identity(identity)
        policy = SlidingWindowPolicy(
            max_count=rule.max_attempts, window=rule.window, block_duration=rule.block_duration
        )
        keys: List[Tuple[KeyScope, str]] = [(KeyScope.IP, ip)]
        if identity:
            keys.append((KeyScope.IDENTITY, identity))

        denials: List[Tuple[KeyScope, Decision]] = []
        captcha_required = False
        for scope, key in keys:
            decision = self._evaluate(policy, scope, key, action, now)
            if decision.count >= self.config.captcha_after_failures:
                captcha_required = True
            if not decision.allowed:
                denials.append((scope, decision))

        if not denials:
            return GateDecision.allow(captcha_required=captcha_required)

        scope, decision = max(denials, key=lambda item: item[1].retry_after_seconds)
        logger.info(
            "Blocked %s attempt scope=%s retry_after=%ss identity=%s",
            action,
            scope.value,
            decision.retry_after_seconds,
            mask_identity(identity),
        )
        self._audit(ip, identity, action, False, user_agent)
        return GateDecision(
            allowed=False,
            retry_after_seconds=decision.retry_after_seconds,
            reason=denial_reason(action, scope, decision.retry_after_seconds),
            scope=scope,
            captcha_required=True,
        )

    def record_outcome(
        self,
        action_type: Union[ActionType, str],
        ip: str,
        identity: Optional[str],
        success: bool,
        user_agent: Optional[str] = None,
    ) -> None:
        event = AttemptEvent(
            ip=ip,
            identity=normalize_identity(identity),
            action_type=_action_name(action_type),
            success=success,
            timestamp=self.clock(),
            user_agent=user_agent,
        )
        try:
            self.store.append(event)
        except Exception:
            logger.error("Error recording %s attempt outcome", event.action_type, exc_info=True)

    def check_and_record(
        self,
        action_type: Union[ActionType, str],
        ip: str,
        identity: Optional[str],
        outcome_provider: Callable[[], bool],
        user_agent: Optional[str] = None,
    ) -> GateDecision:
        """Check the gate, run the caller's action if allowed, then record its outcome."""
        decision = self.check(action_type, ip, identity, user_agent)
        if not decision.allowed:
            return decision
        success = bool(outcome_provider())
        self.record_outcome(action_type, ip, identity, success, user_agent)
        return decision

    def _evaluate(
        self, policy: SlidingWindowPolicy, scope: KeyScope, key: str, action: str, now: datetime
    ) -> Decision:
        try:
            events = self.store.query(scope, key, action, policy.window_start(now))
        except Exception:
            # fail open for this key
            logger.error("Error checking %s attempts for %s scope", action, scope.value, exc_info=True)
            return Decision(allowed=True)
        return policy.evaluate(events, now, qualifies=_failed)

    def _audit(
        self, ip: str, identity: Optional[str], action: str, success: bool, user_agent: Optional[str]
    ) -> None:
        try:
            self.audit_sink.record(ip, identity, action, success, user_agent)
        except Exception:
            logger.warning("Failed to write audit record for %s attempt", action, exc_info=True)
