"""
Loguru logging configuration.

Console output in development, JSON in other environments, a rotating
application log, and a separate sink for audit delivery failures so they
can be alerted on independently.
"""

import sys
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger

from core.correlation import get_correlation_id

if TYPE_CHECKING:
    from loguru import Record


def correlation_filter(record: "Record") -> bool:
    """
    Add correlation ID to log record.

    Args:
        record: Loguru log record.

    Returns:
        Always True (filter never drops messages).
    """
    record["extra"]["correlation_id"] = get_correlation_id() or "-"
    return True


def audit_failure_filter(record: "Record") -> bool:
    """Keep only records flagged with ``audit_failure=True``."""
    correlation_filter(record)
    return bool(record["extra"].get("audit_failure"))


def configure_logging(environment: str = "development", logs_dir: str = "logs") -> None:
    """
    Configure Loguru for the application.

    Args:
        environment: "development" for console, anything else for JSON.
        logs_dir: Directory for the rotating file sinks.
    """
    logger.remove()

    log_format = (
        "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{extra[correlation_id]}</cyan> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
        "<level>{message}</level>"
    )
    is_dev = environment == "development"

    if is_dev:
        logger.add(
            sys.stderr,
            format=log_format,
            level="DEBUG",
            filter=correlation_filter,
            colorize=True,
        )
    else:
        logger.add(
            sys.stderr,
            format="{message}",
            level="INFO",
            filter=correlation_filter,
            serialize=True,
        )

    if environment == "test":
        return

    logs_path = Path(logs_dir)
    logs_path.mkdir(exist_ok=True)

    logger.add(
        str(logs_path / "app.log"),
        format=log_format if is_dev else "{message}",
        level="INFO",
        filter=correlation_filter,
        rotation="10 MB",
        retention="7 days",
        serialize=not is_dev,
    )

    # Always JSON so monitoring can parse action and actor
    logger.add(
        str(logs_path / "audit_failures.log"),
        format="{message}",
        level="ERROR",
        filter=audit_failure_filter,
        rotation="10 MB",
        retention="30 days",
        serialize=True,
    )
