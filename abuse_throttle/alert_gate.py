from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Union
from uuid import uuid4

from .config import ThrottleConfig
from .engine import Clock, CooldownPolicy, utcnow
from .errors import InvalidAlertType
from .models import AlertEvent, AlertRule, AlertType, Severity
from .notifications import NotificationSink, NullNotificationSink, present
from .persistence import AlertHistoryStore, AlertRuleStore

logger = logging.getLogger(__name__)


def _alert_type(value: Union[AlertType, str]) -> AlertType:
    try:
        return AlertType(value)
    except ValueError:
        logger.error("Rejected unknown alert type %r", value)
        raise InvalidAlertType(value) from None


class AlertGate:
    """Emits at most one notification per alert type per cooldown period."""

    def __init__(
        self,
        rule_store: AlertRuleStore,
        history_store: AlertHistoryStore,
        notifier: NotificationSink | None = None,
        config: ThrottleConfig | None = None,
        clock: Clock | None = None,
    ):
        self.rule_store = rule_store
        self.history_store = history_store
        self.notifier = notifier or NullNotificationSink()
        self.config = config or ThrottleConfig()
        self.clock = clock or utcnow

    def rules(self) -> Dict[AlertType, AlertRule]:
        try:
            return self.rule_store.load()
        except Exception:
            logger.error("Failed to load alert rules, using defaults", exc_info=True)
            return {alert_type: self.config.alert_default(alert_type) for alert_type in AlertType}

    def rule(self, alert_type: Union[AlertType, str]) -> AlertRule:
        return self.rules()[_alert_type(alert_type)]

    def update_rule(
        self,
        alert_type: Union[AlertType, str],
        *,
        enabled: Optional[bool] = None,
        threshold: Optional[float] = None,
        cooldown_minutes: Optional[int] = None,
    ) -> AlertRule:
        rule = self.rule(alert_type)
        changes: Dict[str, Any] = {}
        if enabled is not None:
            changes["enabled"] = enabled
        if threshold is not None:
            changes["threshold"] = threshold
        if cooldown_minutes is not None:
            changes["cooldown_minutes"] = cooldown_minutes
        updated = rule.copy(**changes)
        self._save_rule(updated)
        return updated

    def try_trigger(
        self,
        alert_type: Union[AlertType, str],
        message: str,
        severity: Union[Severity, str] = Severity.WARNING,
        data: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        rule = self.rule(alert_type)
        if not rule.enabled:
            return False

        now = self.clock()
        if not CooldownPolicy(rule.cooldown).evaluate(rule.last_triggered, now).allowed:
            logger.debug("Suppressed %s alert during cooldown", rule.type.value)
            return False

        severity = Severity(severity)
        event = AlertEvent(
            id=str(uuid4()),
            type=rule.type,
            timestamp=now,
            message=message,
            severity=severity,
            data=dict(data) if data is not None else None,
        )
        try:
            self.history_store.append(event, self.config.history_limit)
        except Exception:
            logger.error("Failed to append %s alert to history", rule.type.value, exc_info=True)
        self._save_rule(rule.copy(last_triggered=now))
        self._notify(message, severity)
        logger.info("Triggered %s alert severity=%s", rule.type.value, severity.value)
        return True

    def mute_alert(self, alert_type: Union[AlertType, str], duration_minutes: int) -> AlertRule:
        # rewrites the configured cooldown, not just the current silence window
        rule = self.rule(alert_type).copy(last_triggered=self.clock(), cooldown_minutes=duration_minutes)
        self._save_rule(rule)
        return rule

    def history(self) -> List[AlertEvent]:
        try:
            return self.history_store.load()
        except Exception:
            logger.error("Failed to load alert history", exc_info=True)
            return []

    def acknowledge_alert(self, alert_id: str) -> bool:
        try:
            return self.history_store.acknowledge(alert_id)
        except Exception:
            logger.error("Failed to acknowledge alert %s", alert_id, exc_info=True)
            return False

    def clear_history(self) -> None:
        try:
            self.history_store.clear()
        except Exception:
            logger.error("Failed to clear alert history", exc_info=True)

    def unacknowledged_count(self) -> int:
        return sum(1 for event in self.history() if not event.acknowledged)

    def _save_rule(self, rule: AlertRule) -> None:
        try:
            self.rule_store.save(rule)
        except Exception:
            logger.error("Failed to persist %s alert rule", rule.type.value, exc_info=True)

    def _notify(self, message: str, severity: Severity) -> None:
        if not self.notifier.available:
            return
        body, require_interaction = present(message, severity)
        try:
            self.notifier.notify(self.config.notification_title, body, require_interaction=require_interaction)
        except Exception as exc:  # delivery never changes the trigger result
            logger.warning("Failed to deliver %s notification: %s", severity.value, exc)
