"""Approval rule API endpoints."""

from typing import List, Optional
from uuid import UUID
from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field, model_validator
from sqlalchemy.orm import Session

from portal.api.deps import get_db, get_tenant_context, http_error, TenantContext
from portal.api.schemas.common import SuccessResponse, UserSummary
from portal.core.approval import ApprovalWorkflowService, ApprovalMode, LevelType, DocumentType
from portal.core.approval.rules import (
    ApproverDefinition,
    LevelDefinition,
    create_rule,
    delete_rule,
    get_rule,
    update_rule,
)
from portal.core.errors import ApprovalError
from portal.core.rbac import require_permission
from portal.db.models import ApprovalRule

router = APIRouter(prefix="/approval-rules", tags=["approval-rules"])


# Schemas
class ApproverSpecSchema(BaseModel):
    user_id: Optional[UUID] = None
    role_id: Optional[UUID] = None

    @model_validator(mode="after")
    def exactly_one_reference(self):
        if (self.user_id is None) == (self.role_id is None):
            raise ValueError("Provide exactly one of user_id or role_id")
        return self


class LevelCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    mode: ApprovalMode = ApprovalMode.ANY
    level_type: LevelType = LevelType.GENERAL
    approvers: List[ApproverSpecSchema] = Field(..., min_length=1)


class RuleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    document_type: Optional[DocumentType] = None
    category: Optional[str] = None
    min_amount: Optional[Decimal] = Field(default=None, ge=0)
    max_amount: Optional[Decimal] = Field(default=None, ge=0)
    priority: int = 0
    levels: List[LevelCreate] = Field(..., min_length=1)


class RuleUpdate(BaseModel):
    name: Optional[str] = None
    document_type: Optional[DocumentType] = None
    category: Optional[str] = None
    min_amount: Optional[Decimal] = Field(default=None, ge=0)
    max_amount: Optional[Decimal] = Field(default=None, ge=0)
    priority: Optional[int] = None
    is_active: Optional[bool] = None


class LevelApproverResponse(BaseModel):
    id: UUID
    position: int
    user_id: Optional[UUID]
    role_id: Optional[UUID]

    class Config:
        from_attributes = True


class LevelResponse(BaseModel):
    id: UUID
    name: str
    level_order: int
    mode: str
    level_type: str
    approvers: List[LevelApproverResponse]

    class Config:
        from_attributes = True


class RuleResponse(BaseModel):
    id: UUID
    tenant_id: UUID
    name: str
    document_type: Optional[str]
    category: Optional[str]
    min_amount: Optional[Decimal]
    max_amount: Optional[Decimal]
    priority: int
    is_active: bool
    levels: List[LevelResponse]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


# Endpoints
@router.get("", response_model=List[RuleResponse])
@require_permission("approval_rules:list")
async def list_rules(
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant_context),
    document_type: Optional[DocumentType] = None,
    active_only: bool = False,
):
    """List approval rules of the tenant, highest priority first."""
    query = db.query(ApprovalRule).filter(ApprovalRule.tenant_id == ctx.tenant_id)

    if document_type:
        query = query.filter(ApprovalRule.document_type == document_type.value)
    if active_only:
        query = query.filter(ApprovalRule.is_active.is_(True))

    rules = query.order_by(ApprovalRule.priority.desc(), ApprovalRule.created_at.asc()).all()
    return [RuleResponse.model_validate(r) for r in rules]


@router.get("/approvers/available", response_model=List[UserSummary])
@require_permission("approval_rules:read")
async def list_available_approvers(
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant_context),
):
    """List tenant members who may be configured as approvers."""
    service = ApprovalWorkflowService(db, ctx.tenant_id)
    return [UserSummary.model_validate(u) for u in service.list_available_approvers()]


@router.post("", response_model=RuleResponse, status_code=status.HTTP_201_CREATED)
@require_permission("approval_rules:create")
async def create_approval_rule(
    payload: RuleCreate,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant_context),
):
    """Create an approval rule; levels are numbered in the order given."""
    levels = [
        LevelDefinition(
            name=level.name,
            mode=level.mode,
            level_type=level.level_type,
            approvers=[ApproverDefinition(user_id=a.user_id, role_id=a.role_id) for a in level.approvers],
        )
        for level in payload.levels
    ]

    try:
        rule = create_rule(
            db,
            ctx.tenant_id,
            payload.name,
            levels,
            document_type=payload.document_type.value if payload.document_type else None,
            category=payload.category,
            min_amount=payload.min_amount,
            max_amount=payload.max_amount,
            priority=payload.priority,
        )
        db.commit()
    except ApprovalError as e:
        db.rollback()
        raise http_error(e)

    db.refresh(rule)
    return RuleResponse.model_validate(rule)


@router.get("/{rule_id}", response_model=RuleResponse)
@require_permission("approval_rules:read")
async def get_approval_rule(
    rule_id: UUID,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant_context),
):
    """Get an approval rule with its levels."""
    try:
        rule = get_rule(db, ctx.tenant_id, rule_id)
    except ApprovalError as e:
        raise http_error(e)
    return RuleResponse.model_validate(rule)


@router.put("/{rule_id}", response_model=RuleResponse)
@require_permission("approval_rules:update")
async def update_approval_rule(
    rule_id: UUID,
    payload: RuleUpdate,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant_context),
):
    """Update rule metadata. Levels are fixed once created."""
    changes = payload.model_dump(exclude_unset=True)
    if "document_type" in changes and changes["document_type"] is not None:
        changes["document_type"] = changes["document_type"].value

    try:
        rule = get_rule(db, ctx.tenant_id, rule_id)
        update_rule(db, rule, changes)
        db.commit()
    except ApprovalError as e:
        db.rollback()
        raise http_error(e)

    db.refresh(rule)
    return RuleResponse.model_validate(rule)


@router.delete("/{rule_id}", response_model=SuccessResponse)
@require_permission("approval_rules:delete")
async def delete_approval_rule(
    rule_id: UUID,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant_context),
):
    """Delete a rule that no open workflow uses."""
    try:
        rule = get_rule(db, ctx.tenant_id, rule_id)
        delete_rule(db, rule)
        db.commit()
    except ApprovalError as e:
        db.rollback()
        raise http_error(e)

    return SuccessResponse(message="Approval rule deleted")
