from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional, Protocol

from pymongo.errors import PyMongoError

from .errors import StoreUnavailable
from .models import AttemptEvent, AttemptSummary

logger = logging.getLogger(__name__)


class AuditSink(Protocol):
    def record(
        self,
        ip: str,
        identity: Optional[str],
        action_type: str,
        success: bool,
        user_agent: Optional[str] = None,
    ) -> None:
        ...


class LoggingAuditSink:
    """Writes security events to the ``abuse_throttle.audit`` logger."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self.log = log or logger

    def record(
        self,
        ip: str,
        identity: Optional[str],
        action_type: str,
        success: bool,
        user_agent: Optional[str] = None,
    ) -> None:
        self.log.info(
            "auth attempt action=%s success=%s ip=%s identity=%s user_agent=%s",
            action_type,
            success,
            mask_ip(ip),
            mask_identity(identity),
            shorten_user_agent(user_agent),
        )


class MongoAuditSink:
    def __init__(self, collection: Any) -> None:
        self.collection = collection

    def record(
        self,
        ip: str,
        identity: Optional[str],
        action_type: str,
        success: bool,
        user_agent: Optional[str] = None,
    ) -> None:
        document = {
            "event_type": f"security:auth:{action_type}",
            "ip_address": ip,
            "identity": identity,
            "success": success,
            "user_agent": user_agent,
            "severity": "low" if success else "medium",
            "created_at": datetime.now(timezone.utc),
        }
        try:
            self.collection.insert_one(document)
        except PyMongoError as exc:
            raise StoreUnavailable(f"MongoDB audit insert failed: {exc}") from exc


def mask_ip(ip: Optional[str]) -> str:
    if not ip:
        return "unknown"
    return f"{ip[:12]}..."


def mask_identity(identity: Optional[str]) -> Optional[str]:
    if not identity:
        return None
    local, at, domain = identity.partition("@")
    if not at:
        return f"{identity[:3]}***"
    return f"{local[:3]}***@{domain}"


def shorten_user_agent(user_agent: Optional[str]) -> Optional[str]:
    if user_agent is None:
        return None
    return user_agent[:50]


def summarize_attempts(events: Iterable[AttemptEvent]) -> List[AttemptSummary]:
    return [
        AttemptSummary(
            ip_masked=mask_ip(event.ip),
            identity_masked=mask_identity(event.identity),
            action_type=event.action_type,
            success=event.success,
            timestamp=event.timestamp,
            user_agent_short=shorten_user_agent(event.user_agent),
        )
        for event in events
    ]
