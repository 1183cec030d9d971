"""Database models for the procurement portal."""

from portal.db.models.tenant import Tenant
from portal.db.models.user import User
from portal.db.models.role import Role
from portal.db.models.membership import TenantMembership
from portal.db.models.rule import ApprovalRule, ApprovalLevel, LevelApprover
from portal.db.models.workflow import ApprovalWorkflow, ApprovalInstance, WorkflowHistory
from portal.db.models.delegation import Delegation
from portal.db.models.notification import NotificationLog, NotificationEventType

__all__ = [
    "Tenant",
    "User",
    "Role",
    "TenantMembership",
    "ApprovalRule",
    "ApprovalLevel",
    "LevelApprover",
    "ApprovalWorkflow",
    "ApprovalInstance",
    "WorkflowHistory",
    "Delegation",
    "NotificationLog",
    "NotificationEventType",
]
