"""Workflow events.

The workflow service records one event per observable transition. The
caller drains them after committing and hands them to whatever delivers
notifications; the service never delivers anything itself.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID


class WorkflowEventType(str, Enum):
    WORKFLOW_STARTED = "workflow_started"
    LEVEL_ACTIVATED = "level_activated"
    LEVEL_SKIPPED = "level_skipped"
    DECISION_RECORDED = "decision_recorded"
    WORKFLOW_APPROVED = "workflow_approved"
    WORKFLOW_REJECTED = "workflow_rejected"
    WORKFLOW_CANCELLED = "workflow_cancelled"
    DELEGATION_CREATED = "delegation_created"
    DELEGATION_CANCELLED = "delegation_cancelled"


@dataclass
class WorkflowEvent:
    event_type: WorkflowEventType
    tenant_id: UUID
    timestamp: datetime
    workflow_id: Optional[UUID] = None
    delegation_id: Optional[UUID] = None
    level_order: Optional[int] = None
    actor_id: Optional[UUID] = None
    recipients: List[UUID] = field(default_factory=list)
    comment: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type.value,
            "tenant_id": str(self.tenant_id),
            "timestamp": self.timestamp.isoformat(),
            "workflow_id": str(self.workflow_id) if self.workflow_id else None,
            "delegation_id": str(self.delegation_id) if self.delegation_id else None,
            "level_order": self.level_order,
            "actor_id": str(self.actor_id) if self.actor_id else None,
            "recipients": [str(r) for r in self.recipients],
            "comment": self.comment,
            "payload": self.payload,
        }
