"""Approval delegation model.

A delegation lets the delegate act for the delegator between two dates.
Whether it is scheduled, active or expired is derived from the current
time; only cancellation is stored.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, DateTime, Boolean, ForeignKey, Text, CheckConstraint, Uuid
from sqlalchemy.orm import relationship

from portal.db.base import Base


class Delegation(Base):
    __tablename__ = "delegations"
    __table_args__ = (
        CheckConstraint("start_date <= end_date", name="ck_delegations_window"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    delegator_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    delegate_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    reason = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    # Relationships
    delegator = relationship("User", foreign_keys=[delegator_id])
    delegate = relationship("User", foreign_keys=[delegate_id])

    def __repr__(self) -> str:
        return f"<Delegation {self.delegator_id} -> {self.delegate_id}>"
