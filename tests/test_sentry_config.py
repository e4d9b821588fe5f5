"""Tests for the Sentry helpers used by the worker and the reconciler."""
import sentry_sdk

from hookrelay import sentry_config
from hookrelay.config import settings


class ActiveClient:
    def is_active(self):
        return True


def test_helpers_are_noops_without_dsn():
    try:
        raise RuntimeError("boom")
    except RuntimeError as e:
        sentry_config.capture_exception(e)
    sentry_config.capture_message("Backfill finished with errors", level="warning")


def test_forwards_to_sentry_when_client_is_active(monkeypatch):
    captured = []
    monkeypatch.setattr(sentry_sdk, "get_client", lambda: ActiveClient())
    monkeypatch.setattr(sentry_sdk, "capture_exception", lambda error: captured.append(error))
    monkeypatch.setattr(sentry_sdk, "capture_message", lambda message, level: captured.append((message, level)))
    error = RuntimeError("boom")

    sentry_config.capture_exception(error)
    sentry_config.capture_message("done", level="warning")

    assert captured == [error, ("done", "warning")]


def test_scrub_event_filters_credential_headers():
    event = {
        "request": {
            "headers": {
                "Authorization": "Bearer secret",
                settings.WEBHOOK_SIGNATURE_HEADER: "abc123",
                "Content-Type": "application/json",
            }
        }
    }

    headers = sentry_config.scrub_event(event, None)["request"]["headers"]

    assert headers["Authorization"] == "[Filtered]"
    assert headers[settings.WEBHOOK_SIGNATURE_HEADER] == "[Filtered]"
    assert headers["Content-Type"] == "application/json"
