from fastapi.testclient import TestClient

from abuse_throttle import build_context
from abuse_throttle.api import create_app


def make_client(clock) -> TestClient:
    return TestClient(create_app(build_context(backend="memory", clock=clock)))


def record_failure(client: TestClient, ip: str = "1.2.3.4", identity: str = "alice@example.com"):
    response = client.post(
        "/attempts/outcome",
        json={"action": "signin", "ip": ip, "identity": identity, "success": False},
    )
    assert response.status_code == 204


def test_healthcheck(clock):
    client = make_client(clock)
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_check_returns_429_once_blocked(clock):
    client = make_client(clock)
    assert client.post("/attempts/check", json={"action": "signin", "ip": "1.2.3.4"}).json()["allowed"] is True

    for minute in (0, 2, 4, 6, 8):
        clock.at_minute(minute)
        record_failure(client)

    response = client.post("/attempts/check", json={"action": "signin", "ip": "1.2.3.4"})
    assert response.status_code == 429
    assert response.headers["retry-after"] == "1320"
    body = response.json()
    assert body["allowed"] is False
    assert body["retry_after"] == 1320
    assert body["scope"] == "ip"
    assert "22 minutes" in body["reason"]

    clock.at_minute(31)
    assert client.post("/attempts/check", json={"action": "signin", "ip": "1.2.3.4"}).status_code == 200


def test_client_ip_resolved_from_forwarded_header(clock):
    client = make_client(clock)
    response = client.post(
        "/attempts/outcome",
        json={"action": "signup", "identity": "Alice@Example.com", "success": True},
        headers={"X-Forwarded-For": "203.0.113.250, 10.0.0.1", "User-Agent": "pytest-agent"},
    )
    assert response.status_code == 204

    (row,) = client.get("/attempts/recent").json()
    assert row["ip_masked"] == "203.0.113.25..."
    assert row["identity_masked"] == "ali***@example.com"
    assert row["action"] == "signup"
    assert row["user_agent_short"] == "pytest-agent"


def test_alert_lifecycle(clock):
    client = make_client(clock)
    trigger = {"type": "HIGH_BOT_ACTIVITY", "message": "bots at 240/min", "severity": "error", "data": {"rpm": 240}}

    assert client.post("/alerts/trigger", json=trigger).json() == {"triggered": True}
    assert client.post("/alerts/trigger", json=trigger).json() == {"triggered": False}

    history = client.get("/alerts/history").json()
    assert len(history) == 1
    assert history[0]["data"] == {"rpm": 240}
    assert client.get("/alerts/unacknowledged").json() == {"count": 1}

    ack = client.post(f"/alerts/history/{history[0]['id']}/acknowledge")
    assert ack.status_code == 200
    assert ack.json() == {"count": 0}
    assert client.post("/alerts/history/nope/acknowledge").status_code == 404

    assert client.delete("/alerts/history").status_code == 204
    assert client.get("/alerts/history").json() == []


def test_rule_update_and_mute(clock):
    client = make_client(clock)

    updated = client.patch("/alerts/rules/THRESHOLD_DRIFT", json={"threshold": 90, "enabled": False})
    assert updated.status_code == 200
    assert updated.json()["threshold"] == 90
    assert updated.json()["cooldown_minutes"] == 240
    assert client.post("/alerts/trigger", json={"type": "THRESHOLD_DRIFT", "message": "drift"}).json() == {
        "triggered": False
    }

    muted = client.post("/alerts/rules/ANOMALY_DETECTED/mute", json={"duration_minutes": 15})
    assert muted.json()["cooldown_minutes"] == 15
    assert muted.json()["last_triggered"] is not None

    rules = {rule["type"]: rule for rule in client.get("/alerts/rules").json()}
    assert rules["THRESHOLD_DRIFT"]["enabled"] is False
    assert rules["ANOMALY_DETECTED"]["cooldown_minutes"] == 15


def test_unknown_alert_type_is_404(clock):
    client = make_client(clock)
    assert client.post("/alerts/trigger", json={"type": "LOW_COFFEE", "message": "refill"}).status_code == 404
    assert client.patch("/alerts/rules/LOW_COFFEE", json={"enabled": False}).status_code == 404
