"""Notification outbox model."""

import uuid
from datetime import datetime
from enum import Enum
from sqlalchemy import Column, String, DateTime, JSON, ForeignKey, Text, Integer, Uuid
from sqlalchemy.orm import relationship

from portal.db.base import Base


class NotificationEventType(str, Enum):
    """Events that produce notifications."""
    APPROVAL_NEEDED = "approval_needed"
    WORKFLOW_APPROVED = "workflow_approved"
    WORKFLOW_REJECTED = "workflow_rejected"
    WORKFLOW_CANCELLED = "workflow_cancelled"
    DELEGATION_RECEIVED = "delegation_received"
    DELEGATION_CANCELLED = "delegation_cancelled"


class NotificationLog(Base):
    """
    Notification waiting for (or handled by) the external dispatcher.
    """
    __tablename__ = "notification_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)

    # Notification details
    channel = Column(String(50), nullable=False, default="email")
    event_type = Column(String(50), nullable=False)
    recipient = Column(String(255), nullable=False)

    # Related entities
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    workflow_id = Column(Uuid, ForeignKey("approval_workflows.id", ondelete="SET NULL"), nullable=True)
    delegation_id = Column(Uuid, ForeignKey("delegations.id", ondelete="SET NULL"), nullable=True)

    # Payload
    subject = Column(String(512), nullable=True)
    body = Column(Text, nullable=True)
    payload = Column(JSON, nullable=True)

    # Status
    status = Column(String(50), nullable=False, default="pending")  # pending, sent, failed
    error_message = Column(Text, nullable=True)
    attempts = Column(Integer, default=0)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    sent_at = Column(DateTime, nullable=True)

    # Relationships
    user = relationship("User")
    workflow = relationship("ApprovalWorkflow")

    def __repr__(self) -> str:
        return f"<NotificationLog {self.event_type} to {self.recipient}>"
