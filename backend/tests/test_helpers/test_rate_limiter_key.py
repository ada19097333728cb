"""
Tests for the slowapi key function.
"""

from starlette.requests import Request

from authentication.auth import create_access_token
from helpers.rate_limiter import get_actor_or_remote_address


def _request(authorization=None, client=("203.0.113.9", 5000)):
    headers = []
    if authorization is not None:
        headers.append((b"authorization", authorization.encode()))
    return Request(
        {
            "type": "http",
            "method": "GET",
            "path": "/",
            "headers": headers,
            "client": client,
        }
    )


def test_valid_token_keys_by_user():
    token = create_access_token({"sub": "mod@example.com"})

    assert get_actor_or_remote_address(_request(f"Bearer {token}")) == "user:mod@example.com"


def test_invalid_token_falls_back_to_address():
    assert get_actor_or_remote_address(_request("Bearer not-a-jwt")) == "203.0.113.9"


def test_anonymous_request_uses_address():
    assert get_actor_or_remote_address(_request()) == "203.0.113.9"
