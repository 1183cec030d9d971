"""Approval workflow module for the procurement portal.

Implements rule matching, approver resolution with delegation, quorum
evaluation and the workflow state machine.
"""

from .states import (
    WorkflowStatus,
    WorkflowTransition,
    InstanceDecision,
    ApprovalMode,
    LevelType,
    DocumentType,
    DelegationStatus,
    VALID_TRANSITIONS,
)
from .machine import WorkflowStateMachine
from .events import WorkflowEvent, WorkflowEventType
from .service import ApprovalWorkflowService, DocumentRef

__all__ = [
    "WorkflowStatus",
    "WorkflowTransition",
    "InstanceDecision",
    "ApprovalMode",
    "LevelType",
    "DocumentType",
    "DelegationStatus",
    "VALID_TRANSITIONS",
    "WorkflowStateMachine",
    "WorkflowEvent",
    "WorkflowEventType",
    "ApprovalWorkflowService",
    "DocumentRef",
]
