from __future__ import annotations

import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Mapping, MutableMapping, Optional, Protocol

from pymongo import DESCENDING, MongoClient
from pymongo.errors import PyMongoError

from .errors import StoreUnavailable
from .models import AlertEvent, AlertRule, AlertType, AttemptEvent, KeyScope, Severity

_RULE_FIELDS = ("enabled", "threshold", "cooldown_minutes", "last_triggered")


class AttemptStore(Protocol):
    def query(self, scope: KeyScope, key: str, action_type: str, since: datetime) -> List[AttemptEvent]:
        ...

    def append(self, event: AttemptEvent) -> None:
        ...

    def recent(self, limit: int = 100) -> List[AttemptEvent]:
        ...

    def purge(self, before: datetime) -> int:
        ...


class AlertRuleStore(Protocol):
    def load(self) -> Dict[AlertType, AlertRule]:
        ...

    def save(self, rule: AlertRule) -> None:
        ...


class AlertHistoryStore(Protocol):
    def load(self) -> List[AlertEvent]:
        ...

    def append(self, event: AlertEvent, limit: int) -> None:
        ...

    def acknowledge(self, alert_id: str) -> bool:
        ...

    def clear(self) -> None:
        ...


def rule_to_document(rule: AlertRule) -> Dict[str, Any]:
    return {
        "type": rule.type.value,
        "enabled": rule.enabled,
        "threshold": rule.threshold,
        "cooldown_minutes": rule.cooldown_minutes,
        "last_triggered": rule.last_triggered,
    }


def merge_rules(
    defaults: Mapping[AlertType, AlertRule], documents: Mapping[str, Mapping[str, Any]]
) -> Dict[AlertType, AlertRule]:
    """Overlay stored rule fields on the built-in defaults.

    Missing rules and missing fields fall back to the defaults; unknown rule
    types and unknown fields are ignored.
    """
    rules = {alert_type: rule.copy() for alert_type, rule in defaults.items()}
    for alert_type, rule in rules.items():
        document = documents.get(alert_type.value)
        if not document:
            continue
        overrides = {name: document[name] for name in _RULE_FIELDS if name in document}
        rules[alert_type] = rule.copy(**overrides)
    return rules


def event_to_document(event: AlertEvent) -> Dict[str, Any]:
    return {
        "alert_id": event.id,
        "type": event.type.value,
        "timestamp": event.timestamp,
        "message": event.message,
        "severity": event.severity.value,
        "acknowledged": event.acknowledged,
        "data": dict(event.data) if event.data is not None else None,
    }


def event_from_document(document: Mapping[str, Any]) -> AlertEvent:
    return AlertEvent(
        id=str(document["alert_id"]),
        type=AlertType(document["type"]),
        timestamp=document["timestamp"],
        message=str(document["message"]),
        severity=Severity(document["severity"]),
        acknowledged=bool(document.get("acknowledged", False)),
        data=dict(document["data"]) if document.get("data") is not None else None,
    )


def attempt_to_document(event: AttemptEvent) -> Dict[str, Any]:
    return {
        "ip_address": event.ip,
        "identity": event.identity,
        "attempt_type": event.action_type,
        "success": event.success,
        "created_at": event.timestamp,
        "user_agent": event.user_agent,
    }


def attempt_from_document(document: Mapping[str, Any]) -> AttemptEvent:
    return AttemptEvent(
        ip=str(document["ip_address"]),
        identity=document.get("identity"),
        action_type=str(document["attempt_type"]),
        success=bool(document["success"]),
        timestamp=document["created_at"],
        user_agent=document.get("user_agent"),
    )


class InMemoryAttemptStore:
    def __init__(self) -> None:
        self._events: List[AttemptEvent] = []
        self._lock = threading.Lock()

    def query(self, scope: KeyScope, key: str, action_type: str, since: datetime) -> List[AttemptEvent]:
        with self._lock:
            matches = [
                event
                for event in self._events
                if event.key_for(scope) == key and event.action_type == action_type and event.timestamp >= since
            ]
        return sorted(matches, key=lambda event: event.timestamp, reverse=True)

    def append(self, event: AttemptEvent) -> None:
        with self._lock:
            self._events.append(event)

    def recent(self, limit: int = 100) -> List[AttemptEvent]:
        with self._lock:
            events = list(self._events)
        return sorted(events, key=lambda event: event.timestamp, reverse=True)[:limit]

    def purge(self, before: datetime) -> int:
        with self._lock:
            kept = [event for event in self._events if event.timestamp >= before]
            removed = len(self._events) - len(kept)
            self._events = kept
        return removed


class InMemoryAlertRuleStore:
    def __init__(self, defaults: Mapping[AlertType, AlertRule]) -> None:
        self.defaults = defaults
        self._documents: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def load(self) -> Dict[AlertType, AlertRule]:
        with self._lock:
            documents = {name: dict(document) for name, document in self._documents.items()}
        return merge_rules(self.defaults, documents)

    def save(self, rule: AlertRule) -> None:
        with self._lock:
            self._documents[rule.type.value] = rule_to_document(rule)


class InMemoryAlertHistoryStore:
    def __init__(self) -> None:
        self._documents: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def load(self) -> List[AlertEvent]:
        with self._lock:
            return [event_from_document(document) for document in self._documents]

    def append(self, event: AlertEvent, limit: int) -> None:
        with self._lock:
            self._documents.append(event_to_document(event))
            if len(self._documents) > limit:
                del self._documents[: len(self._documents) - limit]

    def acknowledge(self, alert_id: str) -> bool:
        with self._lock:
            for document in self._documents:
                if document["alert_id"] == alert_id:
                    document["acknowledged"] = True
                    return True
        return False

    def clear(self) -> None:
        with self._lock:
            self._documents.clear()


@contextmanager
def _mongo_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except PyMongoError as exc:
        raise StoreUnavailable(f"MongoDB {operation} failed: {exc}") from exc


class MongoStores:
    """MongoDB-backed attempt log, alert rules and alert history."""

    def __init__(
        self,
        uri: str,
        database: str = "abuse_throttle",
        client: Optional[MongoClient] = None,
    ) -> None:
        self.client = client or MongoClient(uri, tz_aware=True)
        self.db = self.client[database]

    def attempt_store(self) -> "MongoAttemptStore":
        return MongoAttemptStore(self.db["auth_attempts"])

    def rule_store(self, defaults: Mapping[AlertType, AlertRule]) -> "MongoAlertRuleStore":
        return MongoAlertRuleStore(self.db["alert_rules"], defaults)

    def history_store(self) -> "MongoAlertHistoryStore":
        return MongoAlertHistoryStore(self.db["alert_history"])


class MongoAttemptStore:
    def __init__(self, collection: Any) -> None:
        self.collection = collection
        with _mongo_errors("index creation"):
            self.collection.create_index([("ip_address", 1), ("created_at", DESCENDING)])
            self.collection.create_index([("identity", 1), ("created_at", DESCENDING)])

    def query(self, scope: KeyScope, key: str, action_type: str, since: datetime) -> List[AttemptEvent]:
        field_name = "ip_address" if scope is KeyScope.IP else "identity"
        criteria = {field_name: key, "attempt_type": action_type, "created_at": {"$gte": since}}
        with _mongo_errors("attempt query"):
            cursor = self.collection.find(criteria).sort("created_at", DESCENDING)
            return [attempt_from_document(document) for document in cursor]

    def append(self, event: AttemptEvent) -> None:
        with _mongo_errors("attempt insert"):
            self.collection.insert_one(attempt_to_document(event))

    def recent(self, limit: int = 100) -> List[AttemptEvent]:
        with _mongo_errors("recent attempts query"):
            cursor = self.collection.find({}).sort("created_at", DESCENDING).limit(limit)
            return [attempt_from_document(document) for document in cursor]

    def purge(self, before: datetime) -> int:
        with _mongo_errors("attempt purge"):
            result = self.collection.delete_many({"created_at": {"$lt": before}})
        return result.deleted_count


class MongoAlertRuleStore:
    def __init__(self, collection: Any, defaults: Mapping[AlertType, AlertRule]) -> None:
        self.collection = collection
        self.defaults = defaults

    def load(self) -> Dict[AlertType, AlertRule]:
        with _mongo_errors("rule load"):
            documents: MutableMapping[str, Mapping[str, Any]] = {
                str(document.get("type")): document for document in self.collection.find({})
            }
        return merge_rules(self.defaults, documents)

    def save(self, rule: AlertRule) -> None:
        document = rule_to_document(rule)
        with _mongo_errors("rule save"):
            self.collection.replace_one({"type": document["type"]}, document, upsert=True)


class MongoAlertHistoryStore:
    def __init__(self, collection: Any) -> None:
        self.collection = collection
        with _mongo_errors("index creation"):
            self.collection.create_index("alert_id", unique=True)

    def load(self) -> List[AlertEvent]:
        with _mongo_errors("history load"):
            return [event_from_document(document) for document in self.collection.find({}).sort("timestamp", 1)]

    def append(self, event: AlertEvent, limit: int) -> None:
        with _mongo_errors("history append"):
            self.collection.insert_one(event_to_document(event))
            overflow = self.collection.count_documents({}) - limit
            if overflow > 0:
                stale = self.collection.find({}, {"_id": 1}).sort("timestamp", 1).limit(overflow)
                self.collection.delete_many({"_id": {"$in": [document["_id"] for document in stale]}})

    def acknowledge(self, alert_id: str) -> bool:
        with _mongo_errors("history acknowledge"):
            result = self.collection.update_one({"alert_id": alert_id}, {"$set": {"acknowledged": True}})
        return result.matched_count > 0

    def clear(self) -> None:
        with _mongo_errors("history clear"):
            self.collection.delete_many({})
