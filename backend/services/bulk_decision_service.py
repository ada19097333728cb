"""
Service for applying many moderation decisions in one request.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models.config import settings
from models.exceptions import (
    BulkRequestValidationException,
    DomainException,
    ForbiddenActionException,
    InternalErrorException,
)
from repositories.db_models import Role
from services.audit_service import AuditAction, AuditService
from services.decision_service import DecisionRequest, DecisionService
from services.role_service import RoleService

REQUIRED_ITEM_FIELDS = ("queue_item_id", "action", "performed_by", "justification")


@dataclass
class BulkItemFailure:
    queue_item_id: Any
    error: str
    message: str


@dataclass
class BulkDecisionResult:
    processed: int = 0
    succeeded: int = 0
    failed: list[BulkItemFailure] = field(default_factory=list)


def _validate_items(items: Any) -> list[dict[str, Any]]:
    if not isinstance(items, list) or not items:
        raise BulkRequestValidationException("items must be a non-empty list")
    if len(items) > settings.BULK_MAX_ITEMS:
        raise BulkRequestValidationException(
            f"At most {settings.BULK_MAX_ITEMS} items per request"
        )
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise BulkRequestValidationException(f"Item {index} must be an object")
        missing = [
            name
            for name in REQUIRED_ITEM_FIELDS
            if item.get(name) is None or item.get(name) == ""
        ]
        if missing:
            raise BulkRequestValidationException(
                f"Item {index} is missing required field(s): {', '.join(missing)}"
            )
        metadata = item.get("metadata")
        if metadata is not None and not isinstance(metadata, dict):
            raise BulkRequestValidationException(
                f"Item {index} metadata must be an object"
            )
    return items


class BulkDecisionService:
    """Service for bulk moderation decisions."""

    @staticmethod
    def process(
        db: Session,
        items: list[dict[str, Any]],
        requested_by: Optional[int] = None,
    ) -> BulkDecisionResult:
        """
        Apply a list of decisions, each independently.

        The request is rejected as a whole only when it is structurally
        invalid. After that every item is attempted in its own transaction
        and per-item errors are collected, so one bad item never blocks
        the rest.

        Args:
            db: Database session
            items: Dicts with queue_item_id, action, performed_by,
                justification and optional metadata
            requested_by: User who submitted the batch. Items performed by
                anyone else fail with Forbidden unless this user is an Admin,
                in which case the submitter is kept in the item metadata.

        Returns:
            BulkDecisionResult with failures in input order

        Raises:
            BulkRequestValidationException: If the batch is malformed
        """
        items = _validate_items(items)
        actor_ids = [item["performed_by"] for item in items]
        if requested_by is not None:
            actor_ids.append(requested_by)
        roles_by_user = RoleService.resolve_roles(db, actor_ids)
        # Only admins may submit decisions on behalf of someone else
        may_delegate = requested_by is None or Role.ADMIN in roles_by_user.get(
            requested_by, set()
        )

        result = BulkDecisionResult()
        for item in items:
            result.processed += 1
            queue_item_id = item["queue_item_id"]
            try:
                actor_id = item["performed_by"]
                if actor_id not in roles_by_user:
                    raise ForbiddenActionException(f"Unknown actor {actor_id}")
                metadata = dict(item.get("metadata") or {})
                if requested_by is not None and actor_id != requested_by:
                    if not may_delegate:
                        raise ForbiddenActionException(
                            f"User {requested_by} cannot decide on behalf of user {actor_id}"
                        )
                    metadata["requested_by"] = requested_by
                DecisionService.decide(
                    db,
                    DecisionRequest(
                        queue_item_id=queue_item_id,
                        action=item["action"],
                        actor_id=actor_id,
                        actor_roles=roles_by_user[actor_id],
                        reason=item["justification"],
                        metadata=metadata,
                        expected_version=item.get("expected_version"),
                    ),
                    enforce_rate_limit=False,
                )
                result.succeeded += 1
            except DomainException as e:
                result.failed.append(
                    BulkItemFailure(
                        queue_item_id=queue_item_id,
                        error=e.error_code,
                        message=e.message,
                    )
                )
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Bulk decision on queue item {queue_item_id} failed: {e}")
                failure = InternalErrorException()
                result.failed.append(
                    BulkItemFailure(
                        queue_item_id=queue_item_id,
                        error=failure.error_code,
                        message=failure.message,
                    )
                )

        AuditService.record(
            db,
            actor_id=requested_by,
            action=AuditAction.MODERATION_BULK,
            target_type="bulk_decision",
            target_id="batch",
            metadata={
                "processed": result.processed,
                "succeeded": result.succeeded,
                "failed": len(result.failed),
                "queue_item_ids": [item["queue_item_id"] for item in items],
            },
        )
        logger.info(
            f"Bulk decision processed {result.processed} items "
            f"({result.succeeded} succeeded, {len(result.failed)} failed)"
        )
        return result
