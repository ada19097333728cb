"""Tests for correlation ID handling."""

import re

import pytest

from core.correlation import (
    accept_correlation_id,
    correlation_id_var,
    generate_correlation_id,
    get_correlation_id,
    set_correlation_id,
)


class TestGenerateCorrelationId:
    def test_short_hex(self) -> None:
        assert re.match(r"^[0-9a-f]{8}$", generate_correlation_id())

    def test_unique(self) -> None:
        assert len({generate_correlation_id() for _ in range(500)}) == 500


class TestAcceptCorrelationId:
    @pytest.mark.parametrize("value", ["abc12345", "req_2024-01-15", "A" * 64])
    def test_keeps_well_formed_ids(self, value: str) -> None:
        assert accept_correlation_id(value) == value

    @pytest.mark.parametrize(
        "value", [None, "", "has space", "{braces}", "a" * 65, "line\nbreak"]
    )
    def test_replaces_malformed_ids(self, value) -> None:
        accepted = accept_correlation_id(value)

        assert accepted != value
        assert re.match(r"^[0-9a-f]{8}$", accepted)


class TestCorrelationIdContext:
    def test_set_and_get(self) -> None:
        set_correlation_id("abc12345")

        assert get_correlation_id() == "abc12345"

    def test_empty_when_unset(self) -> None:
        correlation_id_var.set("")

        assert get_correlation_id() == ""
