"""Permission checking utilities for the procurement portal.

Provides decorators and utilities for enforcing RBAC permissions.
"""

from functools import wraps
from typing import Callable, Union, List

from fastapi import HTTPException, status

from .permissions import Permission, Resource, Action


class PermissionChecker:
    """Checks if a member has specific permissions based on their role."""

    def __init__(self, user_permissions: list[str]):
        """
        Initialize with the member's permissions list.

        Args:
            user_permissions: List of permission strings from the member's role
        """
        self.permissions = set(user_permissions)

    def has_permission(self, permission: Union[str, Permission]) -> bool:
        """Check if the member has a specific permission."""
        perm_str = str(permission) if isinstance(permission, Permission) else permission

        if perm_str in self.permissions:
            return True

        # resource:* grants all actions on the resource
        if ":" in perm_str:
            resource = perm_str.split(":")[0]
            if f"{resource}:*" in self.permissions:
                return True
            if "*:*" in self.permissions:
                return True

        return False

    def has_any_permission(self, permissions: List[Union[str, Permission]]) -> bool:
        """Check if the member has any of the given permissions."""
        return any(self.has_permission(p) for p in permissions)

    def has_all_permissions(self, permissions: List[Union[str, Permission]]) -> bool:
        """Check if the member has all of the given permissions."""
        return all(self.has_permission(p) for p in permissions)

    def can_access_resource(self, resource: Resource, action: Action) -> bool:
        """Check if the member can perform action on resource."""
        return self.has_permission(Permission(resource, action))


def has_permission(membership, permission: Union[str, Permission]) -> bool:
    """
    Check if a tenant membership grants a specific permission.

    Args:
        membership: TenantMembership instance with role relationship
        permission: Permission string or Permission object

    Returns:
        True if the membership is active and its role has the permission
    """
    if not membership or not membership.is_active or not membership.role:
        return False

    checker = PermissionChecker(membership.role.permissions or [])
    return checker.has_permission(permission)


def require_permission(*permissions: Union[str, Permission], require_all: bool = False):
    """
    Decorator factory for FastAPI endpoints requiring specific permissions.

    The endpoint must receive the tenant context as its ``ctx`` keyword
    argument.

    Args:
        permissions: One or more permission strings or Permission objects
        require_all: If True, the member must have ALL permissions. Default: any one.

    Usage:
        @router.post("/approval-rules")
        @require_permission("approval_rules:create")
        async def create_rule(ctx: TenantContext = Depends(get_tenant_context)):
            ...
    """
    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            ctx = kwargs.get("ctx")
            if ctx is None:
                raise HTTPException(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    detail="Authentication required"
                )

            checker = PermissionChecker(ctx.permissions)
            perm_strs = [str(p) if isinstance(p, Permission) else p for p in permissions]

            if require_all:
                has_access = checker.has_all_permissions(perm_strs)
            else:
                has_access = checker.has_any_permission(perm_strs)

            if not has_access:
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail=f"Insufficient permissions. Required: {', '.join(perm_strs)}"
                )

            return await func(*args, **kwargs)

        return wrapper
    return decorator
