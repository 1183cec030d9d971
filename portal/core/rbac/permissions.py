"""Permission model for the procurement portal RBAC.

Defines all resources, actions, and permission combinations.
Uses a matrix approach: permissions = actions × resources.

Permission string format: "resource:action"
Examples:
  - approval_rules:create
  - workflows:approve
  - delegations:manage
"""

from enum import Enum
from typing import NamedTuple, FrozenSet


class Resource(str, Enum):
    """Resources that can be protected by permissions."""

    # Approval configuration
    APPROVAL_RULES = "approval_rules"   # Rules and their levels

    # Approval runtime
    WORKFLOWS = "workflows"             # Document approval workflows
    DELEGATIONS = "delegations"         # Approval authority delegations

    # User management
    USERS = "users"
    ROLES = "roles"

    # Tenant administration
    TENANT = "tenant"


class Action(str, Enum):
    """Actions that can be performed on resources."""

    # Standard CRUD actions
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    LIST = "list"

    # Specialized actions
    APPROVE = "approve"           # Decide on approval instances
    REJECT = "reject"
    CANCEL = "cancel"             # Cancel an open workflow
    MANAGE = "manage"             # Full management (create/update/delete)
    ASSIGN = "assign"             # Assign roles to users


class Permission(NamedTuple):
    """A permission is a combination of resource and action."""
    resource: Resource
    action: Action

    def __str__(self) -> str:
        return f"{self.resource.value}:{self.action.value}"

    @classmethod
    def from_string(cls, perm_str: str) -> "Permission":
        """Parse a permission string like 'workflows:read'."""
        parts = perm_str.split(":")
        if len(parts) != 2:
            raise ValueError(f"Invalid permission format: {perm_str}")
        return cls(Resource(parts[0]), Action(parts[1]))


# Maps each resource to its valid actions
PERMISSION_MATRIX: dict[Resource, FrozenSet[Action]] = {
    Resource.APPROVAL_RULES: frozenset([
        Action.CREATE, Action.READ, Action.UPDATE, Action.DELETE, Action.LIST,
    ]),
    Resource.WORKFLOWS: frozenset([
        Action.CREATE, Action.READ, Action.LIST,
        Action.APPROVE, Action.REJECT, Action.CANCEL, Action.MANAGE,
    ]),
    Resource.DELEGATIONS: frozenset([
        Action.CREATE, Action.READ, Action.LIST, Action.DELETE, Action.MANAGE,
    ]),
    Resource.USERS: frozenset([
        Action.READ, Action.LIST, Action.MANAGE,
    ]),
    Resource.ROLES: frozenset([
        Action.READ, Action.LIST, Action.MANAGE, Action.ASSIGN,
    ]),
    Resource.TENANT: frozenset([
        Action.READ, Action.UPDATE,
    ]),
}


def _generate_permission_definitions() -> dict[str, Permission]:
    """Generate all valid permission combinations from the matrix."""
    permissions = {}
    for resource, actions in PERMISSION_MATRIX.items():
        for action in actions:
            perm = Permission(resource, action)
            permissions[str(perm)] = perm
    return permissions


# All valid permissions as a dictionary: "resource:action" -> Permission
PERMISSION_DEFINITIONS = _generate_permission_definitions()


def is_valid_permission(perm_str: str) -> bool:
    """Check if a permission string is valid."""
    return perm_str in PERMISSION_DEFINITIONS


def get_permissions_for_resource(resource: Resource) -> list[str]:
    """Get all valid permission strings for a resource."""
    return [
        str(Permission(resource, action))
        for action in PERMISSION_MATRIX.get(resource, set())
    ]
