"""Default role definitions for the procurement portal.

Every tenant is seeded with these roles:
1. Admin - Full tenant access
2. Purchase Admin - Manages approval rules and all workflows
3. Purchase Approver - Decides on workflows and delegates authority
4. Requester - Submits documents for approval
5. Viewer - Read-only access
"""

from typing import Dict, List
from .permissions import Resource, Action, Permission


def _build_permissions(*perms: tuple) -> List[str]:
    """Build permission strings from (Resource, Action) tuples."""
    return [str(Permission(r, a)) for r, a in perms]


ADMIN_PERMISSIONS = [
    "*:*"  # Global wildcard - all permissions
]

PURCHASE_ADMIN_PERMISSIONS = _build_permissions(
    (Resource.APPROVAL_RULES, Action.CREATE),
    (Resource.APPROVAL_RULES, Action.READ),
    (Resource.APPROVAL_RULES, Action.UPDATE),
    (Resource.APPROVAL_RULES, Action.DELETE),
    (Resource.APPROVAL_RULES, Action.LIST),

    (Resource.WORKFLOWS, Action.CREATE),
    (Resource.WORKFLOWS, Action.READ),
    (Resource.WORKFLOWS, Action.LIST),
    (Resource.WORKFLOWS, Action.APPROVE),
    (Resource.WORKFLOWS, Action.REJECT),
    (Resource.WORKFLOWS, Action.CANCEL),
    (Resource.WORKFLOWS, Action.MANAGE),

    (Resource.DELEGATIONS, Action.CREATE),
    (Resource.DELEGATIONS, Action.READ),
    (Resource.DELEGATIONS, Action.LIST),
    (Resource.DELEGATIONS, Action.DELETE),
    (Resource.DELEGATIONS, Action.MANAGE),

    (Resource.USERS, Action.READ),
    (Resource.USERS, Action.LIST),
    (Resource.ROLES, Action.READ),
    (Resource.ROLES, Action.LIST),
)

PURCHASE_APPROVER_PERMISSIONS = _build_permissions(
    (Resource.APPROVAL_RULES, Action.READ),
    (Resource.APPROVAL_RULES, Action.LIST),

    (Resource.WORKFLOWS, Action.READ),
    (Resource.WORKFLOWS, Action.LIST),
    (Resource.WORKFLOWS, Action.APPROVE),
    (Resource.WORKFLOWS, Action.REJECT),

    # Own delegations only
    (Resource.DELEGATIONS, Action.CREATE),
    (Resource.DELEGATIONS, Action.READ),
    (Resource.DELEGATIONS, Action.LIST),
    (Resource.DELEGATIONS, Action.DELETE),

    (Resource.USERS, Action.READ),
    (Resource.USERS, Action.LIST),
)

REQUESTER_PERMISSIONS = _build_permissions(
    (Resource.WORKFLOWS, Action.CREATE),
    (Resource.WORKFLOWS, Action.READ),
    (Resource.WORKFLOWS, Action.LIST),
    (Resource.WORKFLOWS, Action.CANCEL),
)

VIEWER_PERMISSIONS = _build_permissions(
    (Resource.APPROVAL_RULES, Action.READ),
    (Resource.APPROVAL_RULES, Action.LIST),
    (Resource.WORKFLOWS, Action.READ),
    (Resource.WORKFLOWS, Action.LIST),
)


DEFAULT_ROLES: Dict[str, dict] = {
    "admin": {
        "name": "Admin",
        "description": "Full tenant access with all permissions",
        "permissions": ADMIN_PERMISSIONS,
        "is_system": True,
    },
    "purchase_admin": {
        "name": "Purchase Admin",
        "description": "Manages approval rules and every workflow in the tenant",
        "permissions": PURCHASE_ADMIN_PERMISSIONS,
        "is_system": True,
    },
    "purchase_approver": {
        "name": "Purchase Approver",
        "description": "Approves or rejects documents and delegates approval authority",
        "permissions": PURCHASE_APPROVER_PERMISSIONS,
        "is_system": True,
    },
    "requester": {
        "name": "Requester",
        "description": "Submits purchase documents for approval",
        "permissions": REQUESTER_PERMISSIONS,
        "is_system": True,
    },
    "viewer": {
        "name": "Viewer",
        "description": "Read-only access to rules and workflows",
        "permissions": VIEWER_PERMISSIONS,
        "is_system": True,
    },
}


def get_default_role_permissions(role_key: str) -> List[str]:
    """Get permissions list for a default role."""
    role = DEFAULT_ROLES.get(role_key)
    if not role:
        raise ValueError(f"Unknown default role: {role_key}")
    return role["permissions"]


def get_all_default_roles() -> Dict[str, dict]:
    """Get all default role definitions."""
    return DEFAULT_ROLES.copy()
