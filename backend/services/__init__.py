"""
Services layer for business logic.

This package contains service modules that encapsulate business logic
separate from the API routes.
"""

from .audit_service import AuditAction, AuditService
from .bulk_decision_service import BulkDecisionService
from .decision_service import DecisionService
from .queue_service import QueueService
from .rate_limit import RateLimitService
from .revision_workflow_service import RevisionWorkflowService
from .role_service import RoleService

__all__ = [
    "AuditAction",
    "AuditService",
    "BulkDecisionService",
    "DecisionService",
    "QueueService",
    "RateLimitService",
    "RevisionWorkflowService",
    "RoleService",
]
