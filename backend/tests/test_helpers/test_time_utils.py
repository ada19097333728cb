"""
Tests for time helpers.
"""

from datetime import datetime, timedelta, timezone

import pytest

from helpers.time_utils import ensure_utc, format_retry_after


@pytest.mark.parametrize(
    "ms, expected",
    [
        (0, "1 second"),
        (1, "1 second"),
        (1000, "1 second"),
        (1001, "2 seconds"),
        (59_000, "59 seconds"),
        (60_000, "1 minute"),
        (90_000, "2 minutes"),
        (120_000, "2 minutes"),
        (3_600_000, "1 hour"),
        (7_200_000, "2 hours"),
        (3_600_001, "2 hours"),
    ],
)
def test_format_retry_after_rounds_up(ms, expected):
    assert format_retry_after(ms) == expected


def test_ensure_utc_assumes_naive_is_utc():
    naive = datetime(2024, 1, 15, 10, 30)

    assert ensure_utc(naive) == datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)


def test_ensure_utc_keeps_aware_values():
    aware = datetime(2024, 1, 15, 10, 30, tzinfo=timezone(timedelta(hours=2)))

    assert ensure_utc(aware) is aware


def test_ensure_utc_none():
    assert ensure_utc(None) is None
