"""
Unit tests for the structlog processors.
"""

from shared.logging import (
    REDACTED,
    add_component_context,
    add_correlation_context,
    clear_context,
    redact_secrets,
    set_request_id,
    set_upstream_context,
)


class TestLoggingProcessors:
    """Test cases for the gateway's log processors."""

    def test_component_from_logger_name(self):
        event = add_component_context(None, "info", {"logger": "armory.ratelimit.battlenet_per_hour"})

        assert event["service"] == "armory"
        assert event["component"] == "ratelimit"

    def test_bare_logger_name_is_left_alone(self):
        event = add_component_context(None, "info", {"logger": "uvicorn"})

        assert "service" not in event
        assert "component" not in event

    def test_correlation_context(self):
        set_request_id("req-1")
        set_upstream_context("battlenet")
        try:
            event = add_correlation_context(None, "info", {"event": "Cache MISS"})
        finally:
            clear_context()

        assert event["request_id"] == "req-1"
        assert event["upstream"] == "battlenet"
        assert add_correlation_context(None, "info", {}) == {}

    def test_sensitive_keys_are_masked(self):
        event = redact_secrets(
            None,
            "info",
            {"event": "OAuth callback completed", "access_token": "abc", "client_secret": "s3cret", "user_name": "thrall"},
        )

        assert event["access_token"] == REDACTED
        assert event["client_secret"] == REDACTED
        assert event["user_name"] == "thrall"

    def test_query_string_secrets_are_masked(self):
        event = redact_secrets(
            None, "info", {"error": "request to /oauth/check_token?region=us&token=abc123 failed"}
        )

        assert event["error"] == f"request to /oauth/check_token?region=us&token={REDACTED} failed"
