"""
Correlation IDs tie an API error body, its log lines, its Sentry event and
any audit entry written during the same request together.
"""

import re
import uuid
from contextvars import ContextVar

CORRELATION_HEADER = "X-Correlation-ID"

# Client-supplied IDs end up in logs and audit metadata
_ACCEPTED_ID = re.compile(r"[A-Za-z0-9_-]{1,64}")

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")


def generate_correlation_id() -> str:
    """Return a new 8-character hex ID, short enough to read out to support."""
    return uuid.uuid4().hex[:8]


def accept_correlation_id(header_value: str | None) -> str:
    """
    Use the caller's correlation ID when it is well formed, otherwise mint one.

    Args:
        header_value: Raw X-Correlation-ID header, if any

    Returns:
        The correlation ID for this request
    """
    if header_value and _ACCEPTED_ID.fullmatch(header_value):
        return header_value
    return generate_correlation_id()


def get_correlation_id() -> str:
    """Correlation ID of the current request, or "" outside a request."""
    return correlation_id_var.get()


def set_correlation_id(correlation_id: str) -> None:
    correlation_id_var.set(correlation_id)
