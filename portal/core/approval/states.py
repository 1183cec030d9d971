"""Approval workflow states and transitions.

State Machine Diagram (workflow level):

    ┌──────────┐
    │ PENDING  │ ← Workflow row created, no level materialized yet
    └────┬─────┘
         │ activate
    ┌────▼────────┐
    │ IN_PROGRESS │◄──┐ advance (next level activated)
    └────┬────────┘───┘
         │
         ├──────────────┬───────────────┐
         │ approve      │ reject        │ cancel
    ┌────▼─────┐   ┌────▼─────┐   ┌─────▼─────┐
    │ APPROVED │   │ REJECTED │   │ CANCELLED │
    └──────────┘   └──────────┘   └───────────┘

PENDING may also be cancelled directly.

Instance decisions:
- PENDING: awaiting the approver
- APPROVED / REJECTED: decided by the approver
- SKIPPED: closed without a vote (quorum reached, rejection, cancel)
- DELEGATED: reserved for instances handed over after activation
"""

from enum import Enum
from typing import Set, Dict, Optional, NamedTuple


class WorkflowStatus(str, Enum):
    """States of an approval workflow."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"

    # Terminal states
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class WorkflowTransition(str, Enum):
    """Actions that trigger workflow state transitions."""

    ACTIVATE = "activate"    # PENDING → IN_PROGRESS
    ADVANCE = "advance"      # IN_PROGRESS → IN_PROGRESS
    APPROVE = "approve"      # IN_PROGRESS → APPROVED
    REJECT = "reject"        # IN_PROGRESS → REJECTED
    CANCEL = "cancel"        # PENDING/IN_PROGRESS → CANCELLED


class InstanceDecision(str, Enum):
    """Decision recorded on a single approver's instance."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    DELEGATED = "delegated"
    SKIPPED = "skipped"


class ApprovalMode(str, Enum):
    """Quorum mode of an approval level."""

    ANY = "any"   # first approval satisfies the level
    ALL = "all"   # every assigned approver must approve


class LevelType(str, Enum):
    """UI grouping of approval levels. Never evaluated."""

    GENERAL = "general"
    SPECIFICATIONS = "specifications"


class DocumentType(str, Enum):
    """Documents that can go through an approval workflow."""

    PURCHASE_REQUEST = "purchase_request"
    PURCHASE_ORDER = "purchase_order"
    INVOICE = "invoice"


class DelegationStatus(str, Enum):
    """Derived status of a delegation at a point in time."""

    SCHEDULED = "scheduled"
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class TransitionRule(NamedTuple):
    """Defines a valid workflow state transition."""
    from_state: WorkflowStatus
    to_state: WorkflowStatus
    transition: WorkflowTransition


TRANSITION_RULES: list[TransitionRule] = [
    TransitionRule(WorkflowStatus.PENDING, WorkflowStatus.IN_PROGRESS, WorkflowTransition.ACTIVATE),
    TransitionRule(WorkflowStatus.IN_PROGRESS, WorkflowStatus.IN_PROGRESS, WorkflowTransition.ADVANCE),
    TransitionRule(WorkflowStatus.IN_PROGRESS, WorkflowStatus.APPROVED, WorkflowTransition.APPROVE),
    TransitionRule(WorkflowStatus.IN_PROGRESS, WorkflowStatus.REJECTED, WorkflowTransition.REJECT),
    TransitionRule(WorkflowStatus.PENDING, WorkflowStatus.CANCELLED, WorkflowTransition.CANCEL),
    TransitionRule(WorkflowStatus.IN_PROGRESS, WorkflowStatus.CANCELLED, WorkflowTransition.CANCEL),
]

# Build lookup tables for efficient access
VALID_TRANSITIONS: Dict[WorkflowStatus, Set[WorkflowTransition]] = {}
TRANSITION_TARGETS: Dict[tuple[WorkflowStatus, WorkflowTransition], TransitionRule] = {}

for rule in TRANSITION_RULES:
    if rule.from_state not in VALID_TRANSITIONS:
        VALID_TRANSITIONS[rule.from_state] = set()
    VALID_TRANSITIONS[rule.from_state].add(rule.transition)

    TRANSITION_TARGETS[(rule.from_state, rule.transition)] = rule


# Workflows that still block a new workflow for the same document
OPEN_STATES: Set[WorkflowStatus] = {
    WorkflowStatus.PENDING,
    WorkflowStatus.IN_PROGRESS,
}

# Decisions an instance may move to, keyed by its current decision
DECISION_TRANSITIONS: Dict[InstanceDecision, Set[InstanceDecision]] = {
    InstanceDecision.PENDING: {
        InstanceDecision.APPROVED,
        InstanceDecision.REJECTED,
        InstanceDecision.DELEGATED,
        InstanceDecision.SKIPPED,
    },
    InstanceDecision.DELEGATED: {InstanceDecision.SKIPPED},
}

# Decisions an approver may submit
SUBMITTABLE_DECISIONS: Set[InstanceDecision] = {
    InstanceDecision.APPROVED,
    InstanceDecision.REJECTED,
}


def get_transition_rule(from_state: WorkflowStatus, transition: WorkflowTransition) -> Optional[TransitionRule]:
    """Get the transition rule for a state/action combination."""
    return TRANSITION_TARGETS.get((from_state, transition))


def can_change_decision(current: InstanceDecision, new: InstanceDecision) -> bool:
    """Check if an instance may move from one decision to another."""
    return new in DECISION_TRANSITIONS.get(current, set())
