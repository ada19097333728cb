"""Rate limiter configuration module.

This module is separate from main.py to avoid circular imports when routers
need to access the limiter.

slowapi throttles at the HTTP layer by client. Per-actor, per-action
limits with block escalation live in services.rate_limit.
"""

import jwt
from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from models.config import settings


def get_actor_or_remote_address(request: Request) -> str:
    """
    Key requests by authenticated user when a valid token is present.

    Falls back to the client address for anonymous or invalid tokens so
    moderators behind a shared proxy do not throttle each other.
    """
    header = request.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        try:
            payload = jwt.decode(
                header[7:], settings.SECRET_KEY, algorithms=[settings.ALGORITHM]
            )
            subject = payload.get("sub")
            if subject:
                return f"user:{subject}"
        except jwt.exceptions.InvalidTokenError:
            pass
    return get_remote_address(request)


# Create rate limiter - imported by routers and main.py
limiter = Limiter(key_func=get_actor_or_remote_address)
