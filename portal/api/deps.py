from dataclasses import dataclass, field
from typing import Generator, List
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import and_
from sqlalchemy.orm import Session

from portal.core.errors import (
    ApprovalError,
    DuplicateWorkflowError,
    NotFoundError,
    PermissionDeniedError,
)
from portal.core.security import decode_token
from portal.db.models import TenantMembership, User
from portal.db.session import SessionLocal

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


@dataclass
class TenantContext:
    """The acting user within the tenant named by the request."""
    tenant_id: UUID
    user: User
    memberships: List[TenantMembership]
    permissions: List[str] = field(default_factory=list)

    @property
    def user_id(self) -> UUID:
        return self.user.id


def get_db() -> Generator:
    """Database session dependency."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_current_user(
    db: Session = Depends(get_db),
    token: str = Depends(oauth2_scheme),
) -> User:
    """Get current authenticated user from JWT token."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if token:
        user_id = decode_token(token)
        if user_id:
            user = db.query(User).filter(User.id == user_id).first()
            if user and user.is_active:
                return user

    raise credentials_exception


def get_tenant_context(
    x_tenant_id: UUID = Header(..., alias="X-Tenant-ID"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> TenantContext:
    """Resolve the caller's active memberships in the requested tenant.

    A user holding several roles gets the union of their permissions.
    """
    memberships = db.query(TenantMembership).filter(
        and_(
            TenantMembership.tenant_id == x_tenant_id,
            TenantMembership.user_id == current_user.id,
            TenantMembership.is_active.is_(True),
        )
    ).all()

    if not memberships:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not a member of this tenant"
        )

    permissions: List[str] = []
    for membership in memberships:
        for perm in membership.role.permissions or []:
            if perm not in permissions:
                permissions.append(perm)

    return TenantContext(
        tenant_id=x_tenant_id,
        user=current_user,
        memberships=memberships,
        permissions=permissions,
    )


def http_error(exc: ApprovalError) -> HTTPException:
    """Translate a service error into an HTTP error."""
    if isinstance(exc, NotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, DuplicateWorkflowError):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, PermissionDeniedError):
        code = status.HTTP_403_FORBIDDEN
    else:
        code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=code, detail=str(exc))
