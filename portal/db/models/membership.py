"""Tenant membership model.

A user holds a role in a tenant through an active membership row. A user
with several roles in the same tenant has one row per role.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, DateTime, Boolean, ForeignKey, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from portal.db.base import Base


class TenantMembership(Base):
    __tablename__ = "tenant_memberships"
    __table_args__ = (
        UniqueConstraint("tenant_id", "user_id", "role_id", name="uq_tenant_memberships_tenant_user_role"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role_id = Column(Uuid, ForeignKey("roles.id", ondelete="CASCADE"), nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    tenant = relationship("Tenant", back_populates="memberships")
    user = relationship("User", back_populates="memberships")
    role = relationship("Role", back_populates="memberships")

    def __repr__(self) -> str:
        return f"<TenantMembership user={self.user_id} role={self.role_id}>"
