"""Tests for deployment notifications."""

from datetime import datetime, timezone

import pytest
import requests

import notifications
from models.deployment import DeploymentOutcome
from notifications import MAX_MESSAGE_LENGTH, Notifications, format_deploy_message

WHEN = datetime(2026, 10, 19, 8, 30, tzinfo=timezone.utc)


class FakeResponse:
    def __init__(self, status_code=204, text=""):
        self.status_code = status_code
        self.text = text


@pytest.fixture
def sent(monkeypatch):
    calls = []

    def fake_post(url, json=None, timeout=None):
        calls.append({"url": url, "json": json, "timeout": timeout})
        return FakeResponse()

    monkeypatch.setattr(notifications.requests, "post", fake_post)
    return calls


def success_outcome():
    return DeploymentOutcome(repo_name="acme/site", path="/srv/site", success=True, exit_code=0, timestamp=WHEN)


def failure_outcome(**kwargs):
    values = dict(repo_name="acme/site", path="/srv/site", success=False, exit_code=1,
                  stdout="pulled", stderr="boom", timestamp=WHEN)
    values.update(kwargs)
    return DeploymentOutcome(**values)


class TestFormat:
    def test_success_message(self):
        assert format_deploy_message(success_outcome()) == (
            "✅ Deployment successful for acme/site\n"
            "Path: /srv/site\n"
            "Timestamp: 2026-10-19T08:30:00+00:00"
        )

    def test_failure_message(self):
        message = format_deploy_message(failure_outcome())
        assert message.startswith("❌ Deployment failed for acme/site\n")
        assert "Exit code: 1" in message
        assert "StdOut:```pulled```" in message
        assert "StdErr:```boom```" in message
        assert "Timestamp: 2026-10-19T08:30:00+00:00" in message

    def test_timeout_is_labelled(self):
        assert "Status: Timed out" in format_deploy_message(failure_outcome(timed_out=True, exit_code=-15))

    def test_spawn_error(self):
        message = format_deploy_message(failure_outcome(error="Failed to execute command: no shell", exit_code=None))
        assert "Error: Failed to execute command: no shell" in message

    def test_long_output_is_truncated(self):
        message = format_deploy_message(failure_outcome(stdout="x" * 10000, stderr="y" * 10000))
        assert len(message) <= MAX_MESSAGE_LENGTH


class TestNotifications:
    def test_disabled_without_url(self, sent):
        notifier = Notifications("")
        assert notifier.enabled is False
        assert notifier.notify_deployment(success_outcome()) is False
        assert sent == []

    def test_posts_json_content(self, sent):
        notifier = Notifications("https://discord.example/api/webhooks/1/abc")
        assert notifier.notify_deployment(success_outcome()) is True
        assert len(sent) == 1
        assert sent[0]["url"] == "https://discord.example/api/webhooks/1/abc"
        assert sent[0]["json"]["content"].startswith("✅")
        assert sent[0]["timeout"] == notifications.REQUEST_TIMEOUT

    def test_http_error_is_swallowed(self, monkeypatch):
        monkeypatch.setattr(notifications.requests, "post",
                            lambda url, json=None, timeout=None: FakeResponse(500, "nope"))
        assert Notifications("https://hooks.example/x").notify_deployment(failure_outcome()) is False

    def test_network_error_is_swallowed(self, monkeypatch):
        def raise_error(url, json=None, timeout=None):
            raise requests.ConnectionError("unreachable")

        monkeypatch.setattr(notifications.requests, "post", raise_error)
        assert Notifications("https://hooks.example/x").notify_deployment(failure_outcome()) is False
