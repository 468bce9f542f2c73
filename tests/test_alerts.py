from unittest.mock import MagicMock, patch

import requests

from pg_replication.alerts import DISCORD_LIMIT, _truncate_for_discord, send_discord_alert

WEBHOOK = "https://discord.example/api/webhooks/1/abc"


def test_truncate_keeps_short_messages():
    assert _truncate_for_discord("hello") == "hello"


def test_truncate_long_messages():
    out = _truncate_for_discord("x" * 5000)
    assert len(out) <= DISCORD_LIMIT
    assert out.endswith("(truncated)")


@patch("pg_replication.alerts.requests.post")
def test_sends_payload(post):
    post.return_value = MagicMock(status_code=204)

    assert send_discord_alert("boom", webhook_url=WEBHOOK) is True

    post.assert_called_once_with(
        WEBHOOK, json={"content": "boom", "username": "Replication Alert"}, timeout=10,
    )


@patch("pg_replication.alerts.requests.post")
def test_error_status_is_logged_not_raised(post):
    post.return_value = MagicMock(status_code=400, text="bad request")
    assert send_discord_alert("boom", webhook_url=WEBHOOK) is False


@patch("pg_replication.alerts.requests.post", side_effect=requests.ConnectionError("offline"))
def test_transport_error_is_logged_not_raised(post):
    assert send_discord_alert("boom", webhook_url=WEBHOOK) is False


@patch("pg_replication.alerts.requests.post")
def test_empty_webhook_skips(post):
    assert send_discord_alert("boom", webhook_url="") is False
    post.assert_not_called()
