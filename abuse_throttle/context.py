from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from .alert_gate import AlertGate
from .attempt_gate import AttemptGate
from .audit import AuditSink, LoggingAuditSink, MongoAuditSink
from .config import ThrottleConfig
from .engine import Clock
from .notifications import NotificationSink, NullNotificationSink, WebhookNotificationSink, resolve_webhook_url
from .persistence import (
    AttemptStore,
    InMemoryAlertHistoryStore,
    InMemoryAlertRuleStore,
    InMemoryAttemptStore,
    MongoStores,
)


def _backend() -> str:
    return os.getenv("THROTTLE_BACKEND", "memory")


def _mongodb_uri() -> str:
    return os.getenv("MONGODB_URI", "mongodb://mongo:27017/")


def _mongodb_database() -> str:
    return os.getenv("MONGODB_DATABASE", "abuse_throttle")


@dataclass(slots=True)
class ThrottleContext:
    """Handle passed to callers in place of a process-wide service object."""

    config: ThrottleConfig
    attempt_store: AttemptStore
    attempts: AttemptGate
    alerts: AlertGate


def build_context(
    config: ThrottleConfig | None = None,
    backend: Optional[str] = None,
    notifier: NotificationSink | None = None,
    audit_sink: AuditSink | None = None,
    clock: Clock | None = None,
    mongodb_uri: Optional[str] = None,
    mongodb_database: Optional[str] = None,
) -> ThrottleContext:
    config = config or ThrottleConfig()
    backend = backend or _backend()
    if notifier is None:
        webhook_url = resolve_webhook_url()
        notifier = WebhookNotificationSink(webhook_url) if webhook_url else NullNotificationSink()

    if backend == "mongo":
        stores = MongoStores(uri=mongodb_uri or _mongodb_uri(), database=mongodb_database or _mongodb_database())
        attempt_store: AttemptStore = stores.attempt_store()
        rule_store = stores.rule_store(config.alert_defaults)
        history_store = stores.history_store()
        audit_sink = audit_sink or MongoAuditSink(stores.db["audit_log"])
    elif backend == "memory":
        attempt_store = InMemoryAttemptStore()
        rule_store = InMemoryAlertRuleStore(config.alert_defaults)
        history_store = InMemoryAlertHistoryStore()
        audit_sink = audit_sink or LoggingAuditSink()
    else:
        raise ValueError(f"Unknown THROTTLE_BACKEND {backend!r}")

    return ThrottleContext(
        config=config,
        attempt_store=attempt_store,
        attempts=AttemptGate(attempt_store, audit_sink, config=config, clock=clock),
        alerts=AlertGate(rule_store, history_store, notifier=notifier, config=config, clock=clock),
    )
