import logging
from datetime import datetime, timezone

import httpx

from abuse_throttle import Severity
from abuse_throttle import notifications
from abuse_throttle.notifications import (
    LoggingNotificationSink,
    NullNotificationSink,
    WebhookNotificationSink,
    build_notification_payload,
    deliver_webhook,
    present,
)


def install_transport(monkeypatch, handler):
    real_client = httpx.Client

    def client_factory(**kwargs):
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(notifications.httpx, "Client", client_factory)


def test_present_requires_interaction_only_for_errors():
    assert present("disk full", Severity.ERROR) == ("[ERROR] disk full", True)
    assert present("slow", Severity.WARNING) == ("[WARNING] slow", False)
    assert present("fyi", Severity.INFO) == ("[INFO] fyi", False)


def test_payload_is_json_serializable():
    sent_at = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)
    payload = build_notification_payload(title="t", body="b", require_interaction=True, sent_at=sent_at)
    assert payload == {"title": "t", "body": "b", "require_interaction": True, "sent_at": "2026-01-05T09:00:00+00:00"}


def test_deliver_webhook_without_url_is_noop():
    assert deliver_webhook(None, {"title": "t"}) is False


def test_webhook_sink_posts_payload(monkeypatch):
    received = []

    def handler(request: httpx.Request) -> httpx.Response:
        received.append(request)
        return httpx.Response(202)

    install_transport(monkeypatch, handler)
    sink = WebhookNotificationSink("https://hooks.example.test/alerts")

    assert sink.available
    sink.notify("Bot Analytics Alert", "[ERROR] bots", require_interaction=True)

    (request,) = received
    assert request.url == "https://hooks.example.test/alerts"
    assert b'"require_interaction":true' in request.content.replace(b" ", b"")


def test_webhook_failure_is_logged(monkeypatch, caplog):
    install_transport(monkeypatch, lambda request: httpx.Response(500))

    with caplog.at_level(logging.WARNING, logger="abuse_throttle.notifications"):
        assert deliver_webhook("https://hooks.example.test/alerts", {"title": "t"}) is False
    assert "Failed to deliver notification webhook" in caplog.text


def test_sink_capabilities(caplog):
    assert not NullNotificationSink().available
    assert not WebhookNotificationSink(None).available

    with caplog.at_level(logging.WARNING, logger="abuse_throttle.notifications"):
        LoggingNotificationSink().notify("Bot Analytics Alert", "[WARNING] drift")
    assert "Bot Analytics Alert: [WARNING] drift" in caplog.text
