from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Any, Mapping, MutableMapping, Optional
from uuid import uuid4

from celery import Celery
from celery.schedules import crontab

from .context import ThrottleContext, build_context
from .engine import utcnow
from .notifications import build_notification_payload, deliver_webhook, resolve_webhook_url

logger = logging.getLogger(__name__)


def _broker_url() -> str:
    return os.getenv("CELERY_BROKER_URL", "redis://redis:6379/0")


def _result_backend() -> str:
    return os.getenv("CELERY_RESULT_BACKEND", _broker_url())


celery_app = Celery("abuse_throttle", broker=_broker_url(), backend=_result_backend())
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    beat_schedule={
        "purge-expired-attempts": {
            "task": "abuse_throttle.purge_attempts",
            "schedule": crontab(hour=3, minute=0),
        },
    },
)

_CONTEXT: Optional[ThrottleContext] = None


def _get_context() -> ThrottleContext:
    global _CONTEXT
    if _CONTEXT is None:
        _CONTEXT = build_context()
    return _CONTEXT


@celery_app.task(name="abuse_throttle.purge_attempts")
def purge_expired_attempts(now: Optional[str] = None) -> MutableMapping[str, Any]:
    """Delete attempts older than the configured retention period."""
    context = _get_context()
    reference = datetime.fromisoformat(now) if now else utcnow()
    if reference.tzinfo is None:
        reference = reference.replace(tzinfo=timezone.utc)
    cutoff = reference - context.config.attempt_retention
    removed = context.attempt_store.purge(cutoff)
    logger.info("Purged %s auth attempts older than %s", removed, cutoff.isoformat())
    return {"removed": removed, "cutoff": cutoff.isoformat()}


@celery_app.task(name="abuse_throttle.deliver_notification")
def deliver_notification(payload: Mapping[str, Any], webhook_url: Optional[str] = None) -> bool:
    return deliver_webhook(webhook_url or resolve_webhook_url(), payload)


class QueuedNotificationSink:
    """Hands notifications to a Celery worker instead of posting inline."""

    def __init__(self, webhook_url: Optional[str] = None) -> None:
        self.webhook_url = webhook_url or resolve_webhook_url()

    @property
    def available(self) -> bool:
        return bool(self.webhook_url)

    def notify(self, title: str, body: str, require_interaction: bool = False) -> None:
        payload = build_notification_payload(title=title, body=body, require_interaction=require_interaction)
        deliver_notification.apply_async(args=[payload, self.webhook_url], task_id=str(uuid4()))
