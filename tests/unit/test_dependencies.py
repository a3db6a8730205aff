"""Unit tests for request-level dependencies."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from starlette.requests import Request

from chat_backend.api.dependencies import client_key
from chat_backend.services.redis_service import RateLimitResult


def _request(peer="10.0.0.1", forwarded=None):
    headers = []
    if forwarded is not None:
        headers.append((b"x-forwarded-for", forwarded.encode()))
    return Request({"type": "http", "headers": headers, "client": (peer, 52000)})


@pytest.fixture
def trusted():
    def _trust(*proxies):
        return patch(
            "chat_backend.api.dependencies.get_settings",
            return_value=MagicMock(trusted_proxies_list=list(proxies)),
        )

    return _trust


class TestClientKey:

    def test_untrusted_peer_ignores_forwarded_header(self, trusted):
        with trusted():
            keys = {client_key(_request(forwarded=f"1.2.3.{i}")) for i in range(5)}

        assert keys == {"10.0.0.1"}

    def test_trusted_proxy_uses_forwarded_client(self, trusted):
        with trusted("10.0.0.1"):
            assert client_key(_request(forwarded="203.0.113.7")) == "203.0.113.7"

    def test_prepended_hops_are_ignored(self, trusted):
        # The proxy appends the address it saw; anything left of it came from the client
        with trusted("10.0.0.1"):
            key = client_key(_request(forwarded="1.2.3.4, 203.0.113.7"))

        assert key == "203.0.113.7"

    def test_skips_chained_trusted_proxies(self, trusted):
        with trusted("10.0.0.1", "10.0.0.2"):
            key = client_key(_request(forwarded="203.0.113.7, 10.0.0.2"))

        assert key == "203.0.113.7"

    def test_trusted_proxy_without_header(self, trusted):
        with trusted("10.0.0.1"):
            assert client_key(_request()) == "10.0.0.1"


class TestRateLimitKey:

    def test_spoofed_header_does_not_change_counter(self, api):
        limiter = MagicMock()
        limiter.hit = AsyncMock(return_value=RateLimitResult(allowed=True, remaining=4, retry_after=0))

        with patch("chat_backend.api.dependencies.RateLimitService", return_value=limiter):
            for i in range(3):
                api.post(
                    "/api/v1/auth/login",
                    json={"username": "alice", "password": "secret123"},
                    headers={"X-Forwarded-For": f"1.2.3.{i}"},
                )

        keys = {call.args[1] for call in limiter.hit.call_args_list}
        assert keys == {"testclient"}
