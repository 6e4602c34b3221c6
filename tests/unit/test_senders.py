"""
Unit tests for request headers, the console sender and sender selection.
"""

import hashlib
import hmac
import logging
import uuid

import pytest

from webhookq.core.signing import NOTIFICATION_ID_HEADER, SIGNATURE_HEADER
from webhookq.models import Notification
from webhookq.senders import (
    HttpWebhookSender,
    LoggingWebhookSender,
    build_request_headers,
    create_sender,
)
from webhookq.senders.console import LOGGED_RESPONSE_BODY
from webhookq.settings import build_settings


def _notification(**kwargs):
    return Notification.create(
        kwargs.pop("id", uuid.uuid4()),
        "https://example.com/hook",
        kwargs.pop("payload", '{"a":1}'),
        **kwargs,
    )


def test_headers_without_secret():
    notification = _notification(content_type="text/plain")
    headers = build_request_headers(notification, "webhookq-test")

    assert headers["Content-Type"] == "text/plain"
    assert headers["User-Agent"] == "webhookq-test"
    assert headers[NOTIFICATION_ID_HEADER] == str(notification.id)
    assert SIGNATURE_HEADER not in headers


def test_headers_keep_custom_values_alongside_signature():
    notification = _notification(headers={"X-Foo": "bar"}, secret="abc")
    headers = build_request_headers(notification)

    expected = hmac.new(b"abc", b'{"a":1}', hashlib.sha256).hexdigest()
    assert headers["X-Foo"] == "bar"
    assert headers[SIGNATURE_HEADER] == f"sha256={expected}"
    assert headers[NOTIFICATION_ID_HEADER] == str(notification.id)


def test_custom_headers_cannot_override_signature_or_id():
    notification = _notification(
        headers={SIGNATURE_HEADER: "forged", NOTIFICATION_ID_HEADER: "forged"},
        secret="abc",
    )
    headers = build_request_headers(notification)

    assert headers[SIGNATURE_HEADER].startswith("sha256=")
    assert headers[NOTIFICATION_ID_HEADER] == str(notification.id)


def test_header_names_compare_case_insensitively():
    notification = _notification(
        headers={
            "x-webhook-signature": "forged",
            "x-notification-id": "forged",
            "content-type": "text/csv",
        },
        secret="abc",
    )
    headers = build_request_headers(notification)

    expected = hmac.new(b"abc", b'{"a":1}', hashlib.sha256).hexdigest()
    assert headers.getall(SIGNATURE_HEADER) == [f"sha256={expected}"]
    assert headers.getall(NOTIFICATION_ID_HEADER) == [str(notification.id)]
    assert headers.getall("Content-Type") == ["text/csv"]
    assert len(headers) == 4


def test_custom_headers_override_defaults():
    notification = _notification(headers={"User-Agent": "custom/1.0"})
    headers = build_request_headers(notification, None)

    assert headers["User-Agent"] == "custom/1.0"


@pytest.mark.asyncio
async def test_console_sender_logs_and_succeeds(caplog):
    sender = LoggingWebhookSender()
    notification = _notification(secret="top-secret", headers={"X-Foo": "bar"})

    with caplog.at_level(logging.INFO, logger="webhookq.senders.console"):
        result = await sender.send(notification)

    assert result.success
    assert result.status_code == 200
    assert result.response_body == LOGGED_RESPONSE_BODY
    assert result.attempts == 1
    assert "WEBHOOK NOTIFICATION" in caplog.text
    assert str(notification.id) in caplog.text
    assert "X-Foo: bar" in caplog.text
    assert "top-secret" not in caplog.text
    assert "***" in caplog.text


@pytest.mark.asyncio
async def test_create_sender_follows_settings():
    console = create_sender(build_settings(sender="console"))
    assert isinstance(console, LoggingWebhookSender)

    http = create_sender(
        build_settings(
            sender="http",
            retry_delay_ms=500,
            retry_max_delay_ms=4000,
            http_pool_limit=7,
            user_agent="agent/2",
        )
    )
    assert isinstance(http, HttpWebhookSender)
    assert http.retry_delay == 0.5
    assert http.max_retry_delay == 4.0
    assert http.pool_limit == 7
    assert http.user_agent == "agent/2"
    await http.close()
