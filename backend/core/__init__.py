"""Request correlation, logging, Sentry and the maintenance scheduler."""

from core.correlation import (
    CORRELATION_HEADER,
    accept_correlation_id,
    get_correlation_id,
    set_correlation_id,
)
from core.logging_config import configure_logging
from core.sentry_config import init_sentry

__all__ = [
    "CORRELATION_HEADER",
    "accept_correlation_id",
    "configure_logging",
    "get_correlation_id",
    "init_sentry",
    "set_correlation_id",
]
