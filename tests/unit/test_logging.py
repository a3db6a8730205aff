"""Unit tests for logging service."""

import json
import logging

import pytest
import structlog

from chat_backend.services.logging_service import (
    bind_request_context,
    configure_logging,
    get_logger,
    is_sensitive_key,
    redact_sensitive,
    scrub_text,
)


@pytest.fixture(autouse=True)
def restore_root_logger():
    """configure_logging rebinds the root handler to the captured stdout."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


class TestRedactSensitive:
    """Tests for redact_sensitive processor."""

    def test_redacts_password(self):
        event_dict = {"password": "mypassword", "event": "test"}
        result = redact_sensitive(None, None, event_dict)
        assert result["password"] == "REDACTED"

    def test_redacts_tokens(self):
        """Any field whose name contains 'token' is redacted."""
        event_dict = {
            "refresh_token": "eyJ...",
            "verification_token": "abc123",
            "event": "test",
        }
        result = redact_sensitive(None, None, event_dict)
        assert result["refresh_token"] == "REDACTED"
        assert result["verification_token"] == "REDACTED"

    def test_keeps_token_type(self):
        event_dict = {"token_type": "refresh", "event": "token_rejected"}
        result = redact_sensitive(None, None, event_dict)
        assert result["token_type"] == "refresh"

    def test_redacts_authorization_and_cookie(self):
        event_dict = {"authorization": "Bearer token123", "cookie": "access_token=x"}
        result = redact_sensitive(None, None, event_dict)
        assert result["authorization"] == "REDACTED"
        assert result["cookie"] == "REDACTED"

    def test_redacts_secret_in_key_name(self):
        event_dict = {"jwt_access_secret": "abc123", "event": "test"}
        result = redact_sensitive(None, None, event_dict)
        assert result["jwt_access_secret"] == "REDACTED"

    def test_preserves_non_sensitive_fields(self):
        event_dict = {
            "correlation_id": "abc-123",
            "user_id": "42",
            "chat_id": "7",
        }
        result = redact_sensitive(None, None, event_dict)
        assert result == {"correlation_id": "abc-123", "user_id": "42", "chat_id": "7"}

    def test_case_insensitive_redaction(self):
        event_dict = {
            "API_KEY": "secret1",
            "Password": "secret2",
            "SECRET_TOKEN": "secret3",
        }
        result = redact_sensitive(None, None, event_dict)
        assert result["API_KEY"] == "REDACTED"
        assert result["Password"] == "REDACTED"
        assert result["SECRET_TOKEN"] == "REDACTED"


class TestConfigureLogging:
    """Tests for configure_logging function."""

    def test_get_logger_returns_bound_logger(self):
        configure_logging("INFO")
        logger = get_logger("test_module")
        assert logger is not None
        logger.info("test_event", data="value")

    def test_output_is_json_without_secrets(self, capsys):
        configure_logging("INFO")
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(correlation_id="corr-1")

        get_logger().info("user_logged_in", user_id="u-1", refresh_token="eyJ.secret.value")
        structlog.contextvars.clear_contextvars()

        line = capsys.readouterr().out.strip().splitlines()[-1]
        record = json.loads(line)
        assert record["event"] == "user_logged_in"
        assert record["correlation_id"] == "corr-1"
        assert record["level"] == "info"
        assert record["refresh_token"] == "REDACTED"
        assert "eyJ.secret.value" not in line

    def test_level_filters_lower_events(self, capsys):
        configure_logging("WARNING")

        get_logger().info("chatty_event")

        assert "chatty_event" not in capsys.readouterr().out
        configure_logging("INFO")


class TestValueScrubbing:
    """Credentials hiding inside ordinary fields."""

    def test_jwt_inside_error_string(self):
        event_dict = {"error": "decode failed for eyJhbGciOiJIUzI1NiJ9.eyJzdWIiOiIxIn0.c2ln"}
        result = redact_sensitive(None, None, event_dict)
        assert result["error"] == "decode failed for REDACTED"

    def test_bearer_credential_in_free_text(self):
        assert scrub_text("header was Bearer abc.def") == "header was Bearer REDACTED"

    def test_nested_header_mapping(self):
        event_dict = {"headers": {"Authorization": "Bearer x", "Accept": "application/json"}}
        result = redact_sensitive(None, None, event_dict)
        assert result["headers"] == {"Authorization": "REDACTED", "Accept": "application/json"}

    def test_lists_are_scanned(self):
        event_dict = {"hops": ["10.0.0.1", "Bearer abc"]}
        result = redact_sensitive(None, None, event_dict)
        assert result["hops"] == ["10.0.0.1", "Bearer REDACTED"]

    def test_token_kind_is_descriptive(self):
        assert is_sensitive_key("token_kind") is False
        assert is_sensitive_key("password_reset_token_hash") is True

    def test_emailed_link_token_in_path(self):
        event_dict = {"path": "/api/v1/auth/verify-email/9f2c1ab0e4"}
        result = redact_sensitive(None, None, event_dict)
        assert result["path"] == "/api/v1/auth/verify-email/REDACTED"

    def test_plain_values_untouched(self):
        event_dict = {"status_code": 401, "path": "/api/v1/auth/refresh-token"}
        result = redact_sensitive(None, None, event_dict)
        assert result == {"status_code": 401, "path": "/api/v1/auth/refresh-token"}


class TestStdlibRouting:
    """Records from stdlib loggers share the structlog pipeline."""

    def test_stdlib_record_is_json_and_redacted(self, capsys):
        configure_logging("INFO")

        logging.getLogger("uvicorn.error").warning("rejected Bearer abc123")

        record = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert record["event"] == "rejected Bearer REDACTED"
        assert record["logger"] == "uvicorn.error"
        assert record["level"] == "warning"

    def test_access_log_is_quieted(self, capsys):
        configure_logging("INFO")

        logging.getLogger("uvicorn.access").info('127.0.0.1 - "GET /health" 200')

        assert "/health" not in capsys.readouterr().out

    def test_request_context_reaches_stdlib_records(self, capsys):
        configure_logging("INFO")
        bind_request_context("corr-9", path="/ws")

        logging.getLogger("asyncpg").error("pool exhausted")
        structlog.contextvars.clear_contextvars()

        record = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert record["correlation_id"] == "corr-9"
        assert record["path"] == "/ws"


class TestGetLogger:

    def test_name_and_context_are_bound(self, capsys):
        configure_logging("INFO")

        get_logger("gateway", session_id="s-1").info("realtime_connected")

        record = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert record["logger"] == "gateway"
        assert record["session_id"] == "s-1"
