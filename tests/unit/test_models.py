"""Unit tests for Pydantic models."""

from datetime import datetime, timezone
from uuid import uuid4

import pytest
from pydantic import ValidationError

from chat_backend.models.auth import (
    ChangePasswordRequest,
    LoginRequest,
    RegisterRequest,
    ResetPasswordRequest,
)
from chat_backend.models.chat import CreateGroupChatRequest, SendMessageRequest
from chat_backend.models.response import ApiResponse, error_body
from chat_backend.models.user import DEFAULT_AVATAR_URL, PublicUser, Role, UserRecord


class TestRegisterRequest:
    """Tests for RegisterRequest validation."""

    def test_normalizes_username_and_email(self):
        request = RegisterRequest(
            username="  Alice_01 ", email=" Alice@Example.COM ", password="secret123"
        )

        assert request.username == "alice_01"
        assert request.email == "alice@example.com"

    @pytest.mark.parametrize("username", ["al", "bad name", "semi;colon"])
    def test_rejects_bad_usernames(self, username):
        with pytest.raises(ValidationError):
            RegisterRequest(username=username, email="a@example.com", password="secret123")

    def test_rejects_short_password(self):
        with pytest.raises(ValidationError) as exc_info:
            RegisterRequest(username="alice", email="a@example.com", password="12345")

        assert exc_info.value.errors()[0]["loc"] == ("password",)

    def test_rejects_blank_password(self):
        with pytest.raises(ValidationError):
            RegisterRequest(username="alice", email="a@example.com", password="        ")

    @pytest.mark.parametrize("password", ["a" * 100, "\u00e9" * 40])
    def test_rejects_password_over_bcrypt_limit(self, password):
        with pytest.raises(ValidationError) as exc_info:
            RegisterRequest(username="alice", email="a@example.com", password=password)

        assert exc_info.value.errors()[0]["loc"] == ("password",)

    def test_rejects_invalid_email(self):
        with pytest.raises(ValidationError):
            RegisterRequest(username="alice", email="not-an-email", password="secret123")


class TestPasswordChangeRequests:

    def test_reset_caps_new_password(self):
        with pytest.raises(ValidationError):
            ResetPasswordRequest(new_password="a" * 100)

    def test_change_caps_new_password(self):
        with pytest.raises(ValidationError):
            ChangePasswordRequest(old_password="secret123", new_password="a" * 100)

    def test_limit_is_inclusive(self):
        assert ResetPasswordRequest(new_password="a" * 72).new_password == "a" * 72


class TestLoginRequest:

    def test_email_or_username_is_enough(self):
        assert LoginRequest(email="A@example.com", password="x").email == "a@example.com"
        assert LoginRequest(username="Alice", password="x").username == "alice"

    def test_requires_an_identifier(self):
        with pytest.raises(ValidationError) as exc_info:
            LoginRequest(password="x")

        assert "email or username" in str(exc_info.value)


class TestUserRecord:

    def test_sanitize_drops_secrets(self):
        now = datetime.now(timezone.utc)
        record = UserRecord(
            id=uuid4(),
            username="alice",
            email="alice@example.com",
            password_hash="$2b$10$hash",
            refresh_token="refresh",
            email_verification_token_hash="abc",
            created_at=now,
            updated_at=now,
        )

        public = record.sanitize()

        assert type(public) is PublicUser
        dumped = public.model_dump()
        assert "password_hash" not in dumped
        assert "refresh_token" not in dumped
        assert "email_verification_token_hash" not in dumped
        assert public.role == Role.USER
        assert public.avatar_url == DEFAULT_AVATAR_URL


class TestChatRequests:

    def test_group_needs_two_other_members(self):
        with pytest.raises(ValidationError):
            CreateGroupChatRequest(name="Trip", participants=[uuid4()])

    def test_group_name_min_length(self):
        with pytest.raises(ValidationError):
            CreateGroupChatRequest(name="x", participants=[uuid4(), uuid4()])

    def test_message_defaults(self):
        request = SendMessageRequest()

        assert request.content == ""
        assert request.attachments == []


class TestEnvelope:

    def test_success_defaults(self):
        body = ApiResponse(data={"x": 1}).model_dump()

        assert body["success"] is True
        assert body["data"] == {"x": 1}

    def test_error_body(self):
        body = error_body("Nope", [{"field": "body.email"}], detail="trace")

        assert body == {
            "success": False,
            "data": None,
            "message": "Nope",
            "errors": [{"field": "body.email"}],
            "detail": "trace",
        }

    def test_error_body_omits_empty_errors(self):
        assert "errors" not in error_body("Nope")
