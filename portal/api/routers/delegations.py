"""Approval delegation API endpoints."""

from typing import List, Optional
from uuid import UUID
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from portal.api.deps import get_db, get_tenant_context, http_error, TenantContext
from portal.api.schemas.common import SuccessResponse, UserSummary
from portal.core.approval import ApprovalWorkflowService
from portal.core.approval.resolver import delegation_status
from portal.core.errors import ApprovalError
from portal.core.rbac import PermissionChecker, require_permission
from portal.services import NotificationService

router = APIRouter(prefix="/delegations", tags=["delegations"])


# Schemas
class DelegationCreate(BaseModel):
    delegate_id: UUID
    start_date: datetime
    end_date: datetime
    reason: Optional[str] = Field(default=None, max_length=1000)
    # Defaults to the caller; delegating for someone else needs delegations:manage
    delegator_id: Optional[UUID] = None


class DelegationResponse(BaseModel):
    id: UUID
    delegator_id: UUID
    delegate_id: UUID
    start_date: datetime
    end_date: datetime
    reason: Optional[str]
    is_active: bool
    status: str
    created_at: datetime


def _to_response(delegation, now: datetime) -> DelegationResponse:
    return DelegationResponse(
        id=delegation.id,
        delegator_id=delegation.delegator_id,
        delegate_id=delegation.delegate_id,
        start_date=delegation.start_date,
        end_date=delegation.end_date,
        reason=delegation.reason,
        is_active=delegation.is_active,
        status=delegation_status(delegation, now).value,
        created_at=delegation.created_at,
    )


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


# Endpoints
@router.get("", response_model=List[DelegationResponse])
@require_permission("delegations:list")
async def list_delegations(
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant_context),
):
    """List delegations given or received by the caller."""
    service = ApprovalWorkflowService(db, ctx.tenant_id)
    now = datetime.utcnow()
    return [_to_response(d, now) for d in service.list_user_delegations(ctx.user_id)]


@router.get("/available-delegates", response_model=List[UserSummary])
@require_permission("delegations:create")
async def list_available_delegates(
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant_context),
):
    """List tenant members who can receive the caller's approval authority."""
    service = ApprovalWorkflowService(db, ctx.tenant_id)
    users = service.list_available_approvers(exclude_user_id=ctx.user_id)
    return [UserSummary.model_validate(u) for u in users]


@router.post("", response_model=DelegationResponse, status_code=status.HTTP_201_CREATED)
@require_permission("delegations:create")
async def create_delegation(
    payload: DelegationCreate,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant_context),
):
    """Delegate approval authority for a date range."""
    delegator_id = payload.delegator_id or ctx.user_id
    if delegator_id != ctx.user_id and not PermissionChecker(ctx.permissions).has_permission("delegations:manage"):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Cannot create delegations for other users",
        )

    service = ApprovalWorkflowService(db, ctx.tenant_id)

    try:
        delegation = service.create_delegation(
            delegator_id,
            payload.delegate_id,
            _naive_utc(payload.start_date),
            _naive_utc(payload.end_date),
            payload.reason,
        )
        NotificationService(db, ctx.tenant_id).dispatch(service.pop_events())
        db.commit()
    except ApprovalError as e:
        db.rollback()
        raise http_error(e)

    db.refresh(delegation)
    return _to_response(delegation, datetime.utcnow())


@router.delete("/{delegation_id}", response_model=SuccessResponse)
@require_permission("delegations:delete")
async def cancel_delegation(
    delegation_id: UUID,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant_context),
):
    """Cancel a delegation. Only its delegator may cancel it."""
    service = ApprovalWorkflowService(db, ctx.tenant_id)

    try:
        delegation = service.get_delegation(delegation_id)
        if delegation.delegator_id != ctx.user_id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Only the delegator can cancel this delegation",
            )
        service.cancel_delegation(delegation)
        NotificationService(db, ctx.tenant_id).dispatch(service.pop_events())
        db.commit()
    except ApprovalError as e:
        db.rollback()
        raise http_error(e)

    return SuccessResponse(message="Delegation cancelled")
