from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Any, Mapping, MutableMapping, Optional, Protocol

import httpx
from fastapi.encoders import jsonable_encoder

from .models import Severity

logger = logging.getLogger(__name__)

_SEVERITY_LABELS = {
    Severity.ERROR: "[ERROR]",
    Severity.WARNING: "[WARNING]",
    Severity.INFO: "[INFO]",
}


class NotificationSink(Protocol):
    available: bool

    def notify(self, title: str, body: str, require_interaction: bool = False) -> None:
        ...


def present(message: str, severity: Severity) -> tuple[str, bool]:
    """Return the notification body and whether it must stay until dismissed."""
    return f"{_SEVERITY_LABELS[severity]} {message}", severity is Severity.ERROR


def resolve_webhook_url(default: Optional[str] = None) -> Optional[str]:
    """Return the alert webhook URL from environment or provided default."""
    return os.getenv("ALERT_WEBHOOK_URL", default)


def build_notification_payload(
    *,
    title: str,
    body: str,
    require_interaction: bool,
    sent_at: Optional[datetime] = None,
) -> MutableMapping[str, Any]:
    """Create a JSON-serializable payload describing a notification."""
    payload: MutableMapping[str, Any] = {
        "title": title,
        "body": body,
        "require_interaction": require_interaction,
        "sent_at": sent_at or datetime.now(timezone.utc),
    }
    return jsonable_encoder(payload)


def deliver_webhook(webhook_url: Optional[str], payload: Mapping[str, Any]) -> bool:
    """Send the payload to the configured webhook endpoint if present."""
    if not webhook_url:
        return False

    try:
        with httpx.Client(timeout=5.0) as client:
            response = client.post(str(webhook_url), json=payload)
            response.raise_for_status()
    except httpx.HTTPError as exc:
        logger.warning("Failed to deliver notification webhook to %s: %s", webhook_url, exc)
        return False
    return True


class NullNotificationSink:
    """Sink for platforms without a notification channel."""

    available = False

    def notify(self, title: str, body: str, require_interaction: bool = False) -> None:
        return None


class LoggingNotificationSink:
    available = True

    def notify(self, title: str, body: str, require_interaction: bool = False) -> None:
        level = logging.ERROR if require_interaction else logging.WARNING
        logger.log(level, "%s: %s", title, body)


class WebhookNotificationSink:
    def __init__(self, webhook_url: Optional[str]) -> None:
        self.webhook_url = webhook_url

    @property
    def available(self) -> bool:
        return bool(self.webhook_url)

    def notify(self, title: str, body: str, require_interaction: bool = False) -> None:
        payload = build_notification_payload(title=title, body=body, require_interaction=require_interaction)
        deliver_webhook(self.webhook_url, payload)
