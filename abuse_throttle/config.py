from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, Optional

from .models import AlertRule, AlertType, AttemptRuleConfig


def default_attempt_rules() -> Dict[str, AttemptRuleConfig]:
    return {
        "signin": AttemptRuleConfig(max_attempts=5, window_minutes=15, block_duration_minutes=30),
        "signup": AttemptRuleConfig(max_attempts=3, window_minutes=60, block_duration_minutes=60),
        "reset_password": AttemptRuleConfig(max_attempts=3, window_minutes=60, block_duration_minutes=60),
    }


def default_alert_rules() -> Dict[AlertType, AlertRule]:
    return {
        AlertType.HIGH_FALSE_POSITIVE_RATE: AlertRule(
            type=AlertType.HIGH_FALSE_POSITIVE_RATE, threshold=10, cooldown_minutes=60
        ),
        AlertType.HIGH_BOT_ACTIVITY: AlertRule(type=AlertType.HIGH_BOT_ACTIVITY, threshold=200, cooldown_minutes=60),
        AlertType.THRESHOLD_DRIFT: AlertRule(type=AlertType.THRESHOLD_DRIFT, threshold=80, cooldown_minutes=240),
        AlertType.ANOMALY_DETECTED: AlertRule(type=AlertType.ANOMALY_DETECTED, threshold=50, cooldown_minutes=120),
    }


@dataclass(slots=True)
class ThrottleConfig:
    """Configuration for the attempt and alert gates."""

    attempt_rules: Dict[str, AttemptRuleConfig] = field(default_factory=default_attempt_rules)
    alert_defaults: Dict[AlertType, AlertRule] = field(default_factory=default_alert_rules)
    history_limit: int = 100
    attempt_retention: timedelta = timedelta(days=7)
    captcha_after_failures: int = 2
    notification_title: str = "Bot Analytics Alert"

    def rule_for(self, action_type: str) -> Optional[AttemptRuleConfig]:
        return self.attempt_rules.get(action_type)

    def alert_default(self, alert_type: AlertType) -> AlertRule:
        return self.alert_defaults[alert_type].copy()
