"""Tests for exception correlation ID behavior."""

import pytest

from core.correlation import set_correlation_id
from models.exceptions import (
    AuthenticationException,
    BusinessRuleException,
    DomainException,
    DuplicateActiveItemException,
    ForbiddenActionException,
    InternalErrorException,
    InvalidActionException,
    InvalidExpertException,
    MissingMuteDaysException,
    NoStableRevisionException,
    NotFoundException,
    PermissionDeniedException,
    QueueItemNotFoundException,
    RateLimitExceededException,
    StaleQueueItemException,
    StaleRevisionStateException,
    ValidationException,
)


class TestCorrelationIdOnExceptions:
    """Exceptions pick up the request's correlation ID so error bodies match logs."""

    def setup_method(self) -> None:
        set_correlation_id("")

    @pytest.mark.parametrize(
        "exception_class",
        [DomainException, NotFoundException, ValidationException, BusinessRuleException],
    )
    def test_uses_request_correlation_id(
        self, exception_class: type[DomainException]
    ) -> None:
        set_correlation_id("req42")

        assert exception_class("boom").correlation_id == "req42"

    def test_generates_id_outside_a_request(self) -> None:
        first = DomainException("one")
        second = DomainException("two")

        assert len(first.correlation_id) == 8
        assert first.correlation_id != second.correlation_id

    def test_explicit_id_wins(self) -> None:
        set_correlation_id("req42")

        assert DomainException("boom", correlation_id="replay").correlation_id == "replay"

    def test_subclass_messages(self) -> None:
        assert QueueItemNotFoundException(9).message == "Queue item with ID 9 not found"
        assert str(PermissionDeniedException("nope")) == "nope"
        assert AuthenticationException("Not authenticated").error_code == "Unauthorized"


class TestErrorTaxonomy:
    """Tests for error codes and retryability carried by exceptions."""

    @pytest.mark.parametrize(
        ("exc", "error_code", "retryable"),
        [
            (QueueItemNotFoundException(1), "NotFound", False),
            (ForbiddenActionException(), "Forbidden", False),
            (InvalidActionException("delete"), "InvalidAction", False),
            (MissingMuteDaysException(), "ValidationError", False),
            (DuplicateActiveItemException("post", "1"), "DuplicateActiveItem", False),
            (StaleQueueItemException(), "Conflict", True),
            (StaleRevisionStateException(), "Conflict", True),
            (InvalidExpertException(7), "InvalidExpert", False),
            (NoStableRevisionException(3), "NoStableRevision", False),
            (RateLimitExceededException(retry_after=5), "RateLimited", True),
            (InternalErrorException(), "InternalError", True),
        ],
    )
    def test_error_code_and_retryable(
        self, exc: DomainException, error_code: str, retryable: bool
    ) -> None:
        """Each exception exposes a stable code and retry hint."""
        assert exc.error_code == error_code
        assert exc.retryable is retryable

    def test_invalid_expert_maps_to_not_found(self) -> None:
        """An unverified assignee is reported as not found."""
        assert isinstance(InvalidExpertException(7), NotFoundException)

    def test_rate_limit_carries_retry_after(self) -> None:
        exc = RateLimitExceededException("slow down", retry_after=30)
        assert exc.retry_after == 30
        assert exc.message == "slow down"
