"""Approval rule configuration models.

A rule selects the documents it applies to and lists the ordered levels
a workflow walks through. Levels are never edited in place once a
workflow has been created from the rule.
"""

import uuid
from datetime import datetime
from sqlalchemy import (
    Column, String, DateTime, Boolean, ForeignKey, Integer, Numeric,
    UniqueConstraint, CheckConstraint, Uuid,
)
from sqlalchemy.orm import relationship

from portal.db.base import Base


class ApprovalRule(Base):
    __tablename__ = "approval_rules"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)

    # Matching criteria (null = matches anything)
    document_type = Column(String(50), nullable=True, index=True)
    category = Column(String(50), nullable=True)
    min_amount = Column(Numeric(14, 2), nullable=True)
    max_amount = Column(Numeric(14, 2), nullable=True)

    priority = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    tenant = relationship("Tenant", back_populates="approval_rules")
    levels = relationship(
        "ApprovalLevel",
        back_populates="rule",
        order_by="ApprovalLevel.level_order",
        cascade="all, delete-orphan",
    )
    workflows = relationship("ApprovalWorkflow", back_populates="rule")

    def __repr__(self) -> str:
        return f"<ApprovalRule {self.name} [{self.document_type or '*'}]>"


class ApprovalLevel(Base):
    __tablename__ = "approval_levels"
    __table_args__ = (
        UniqueConstraint("rule_id", "level_order", name="uq_approval_levels_rule_order"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    rule_id = Column(Uuid, ForeignKey("approval_rules.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    level_order = Column(Integer, nullable=False)
    mode = Column(String(20), nullable=False, default="any")
    level_type = Column(String(50), nullable=False, default="general")

    # Relationships
    rule = relationship("ApprovalRule", back_populates="levels")
    approvers = relationship(
        "LevelApprover",
        back_populates="level",
        order_by="LevelApprover.position",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<ApprovalLevel {self.level_order}:{self.name} [{self.mode}]>"


class LevelApprover(Base):
    """
    Approver spec of a level: exactly one of a fixed user or a role.

    Role specs are resolved to the tenant's active members at the moment
    the level is activated.
    """
    __tablename__ = "level_approvers"
    __table_args__ = (
        CheckConstraint(
            "(user_id IS NULL) != (role_id IS NULL)",
            name="ck_level_approvers_user_xor_role",
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    level_id = Column(Uuid, ForeignKey("approval_levels.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=True)
    role_id = Column(Uuid, ForeignKey("roles.id", ondelete="CASCADE"), nullable=True)

    # Relationships
    level = relationship("ApprovalLevel", back_populates="approvers")
    user = relationship("User")
    role = relationship("Role")
