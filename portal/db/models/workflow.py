"""Approval workflow runtime models.

Stores the per-document workflow, the materialized approver instances of
each activated level, and the workflow's transition history.
"""

import uuid
from datetime import datetime
from sqlalchemy import (
    Column, String, DateTime, JSON, ForeignKey, Text, Integer, Numeric,
    Index, UniqueConstraint, Uuid, text,
)
from sqlalchemy.orm import relationship

from portal.db.base import Base


_OPEN_WORKFLOW = text("status IN ('pending', 'in_progress')")


class ApprovalWorkflow(Base):
    """
    Live execution of an approval rule for one document.

    A document has at most one open (pending or in-progress) workflow;
    terminal workflows are kept for history.
    """
    __tablename__ = "approval_workflows"
    __table_args__ = (
        Index(
            "uq_approval_workflows_open_document",
            "tenant_id", "document_type", "document_id",
            unique=True,
            postgresql_where=_OPEN_WORKFLOW,
            sqlite_where=_OPEN_WORKFLOW,
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    rule_id = Column(Uuid, ForeignKey("approval_rules.id", ondelete="SET NULL"), nullable=True, index=True)

    # Document identification
    document_type = Column(String(50), nullable=False)
    document_id = Column(String(100), nullable=False)
    amount = Column(Numeric(14, 2), nullable=True)
    category = Column(String(50), nullable=True)

    # Workflow state
    status = Column(String(50), nullable=False, default="pending", index=True)
    current_level_order = Column(Integer, nullable=True)

    initiated_by = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    final_comment = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)

    # Relationships
    rule = relationship("ApprovalRule", back_populates="workflows")
    initiator = relationship("User", foreign_keys=[initiated_by])
    instances = relationship(
        "ApprovalInstance",
        back_populates="workflow",
        order_by="(ApprovalInstance.level_order, ApprovalInstance.created_at)",
        cascade="all, delete-orphan",
    )
    history = relationship(
        "WorkflowHistory",
        back_populates="workflow",
        order_by="WorkflowHistory.created_at",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<ApprovalWorkflow {self.document_type}/{self.document_id} [{self.status}]>"


class ApprovalInstance(Base):
    """
    One approver's vote within a workflow level.

    Level name and mode are copied from the rule when the level is
    activated so later rule edits never change a running level.
    """
    __tablename__ = "approval_instances"
    __table_args__ = (
        UniqueConstraint("workflow_id", "level_order", "approver_id", name="uq_approval_instances_workflow_level_approver"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    workflow_id = Column(Uuid, ForeignKey("approval_workflows.id", ondelete="CASCADE"), nullable=False, index=True)
    level_id = Column(Uuid, ForeignKey("approval_levels.id", ondelete="SET NULL"), nullable=True)

    # Level snapshot
    level_order = Column(Integer, nullable=False)
    level_name = Column(String(255), nullable=False)
    mode = Column(String(20), nullable=False)

    # Approver
    approver_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    delegated_from_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    # Decision
    decision = Column(String(20), nullable=False, default="pending", index=True)
    comment = Column(Text, nullable=True)
    decided_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    workflow = relationship("ApprovalWorkflow", back_populates="instances")
    level = relationship("ApprovalLevel")
    approver = relationship("User", foreign_keys=[approver_id])
    delegated_from = relationship("User", foreign_keys=[delegated_from_id])

    def __repr__(self) -> str:
        return f"<ApprovalInstance L{self.level_order} {self.approver_id} [{self.decision}]>"


class WorkflowHistory(Base):
    """
    Records all status transitions of a workflow.

    Provides a complete audit trail of the approval workflow.
    """
    __tablename__ = "workflow_history"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    workflow_id = Column(Uuid, ForeignKey("approval_workflows.id", ondelete="CASCADE"), nullable=False, index=True)

    # Transition details
    from_status = Column(String(50), nullable=False)
    to_status = Column(String(50), nullable=False)
    transition = Column(String(50), nullable=False)
    level_order = Column(Integer, nullable=True)

    # Actor
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    comment = Column(Text, nullable=True)
    extra_data = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    # Relationships
    workflow = relationship("ApprovalWorkflow", back_populates="history")
    user = relationship("User")

    def __repr__(self) -> str:
        return f"<WorkflowHistory {self.from_status} -> {self.to_status}>"
