"""Approval workflow API endpoints."""

from typing import List, Optional
from uuid import UUID
from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from portal.api.deps import get_db, get_tenant_context, http_error, TenantContext
from portal.core.approval import (
    ApprovalWorkflowService,
    DocumentRef,
    DocumentType,
    InstanceDecision,
)
from portal.core.approval.rules import get_rule
from portal.core.errors import ApprovalError, NotFoundError
from portal.core.rbac import PermissionChecker, require_permission
from portal.db.models import ApprovalInstance, ApprovalWorkflow
from portal.services import NotificationService

router = APIRouter(prefix="/approval-workflows", tags=["approval-workflows"])


# Schemas
class WorkflowStart(BaseModel):
    document_type: DocumentType
    document_id: str = Field(..., min_length=1, max_length=100)
    amount: Optional[Decimal] = Field(default=None, ge=0)
    category: Optional[str] = None
    rule_id: Optional[UUID] = None


class DecisionAction(BaseModel):
    comment: Optional[str] = None


class CancelAction(BaseModel):
    comment: Optional[str] = None


class InstanceResponse(BaseModel):
    id: UUID
    workflow_id: UUID
    level_order: int
    level_name: str
    mode: str
    approver_id: UUID
    delegated_from_id: Optional[UUID]
    decision: str
    comment: Optional[str]
    decided_at: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True


class WorkflowResponse(BaseModel):
    id: UUID
    tenant_id: UUID
    rule_id: Optional[UUID]
    document_type: str
    document_id: str
    amount: Optional[Decimal]
    category: Optional[str]
    status: str
    current_level_order: Optional[int]
    initiated_by: Optional[UUID]
    final_comment: Optional[str]
    instances: List[InstanceResponse]
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime]

    class Config:
        from_attributes = True


class PendingApprovalResponse(BaseModel):
    instance: InstanceResponse
    document_type: str
    document_id: str
    amount: Optional[Decimal]


class HistoryResponse(BaseModel):
    id: UUID
    from_status: str
    to_status: str
    transition: str
    level_order: Optional[int]
    user_id: Optional[UUID]
    comment: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


def _commit(db: Session, service: ApprovalWorkflowService) -> None:
    """Queue notifications for the service's events and commit both."""
    NotificationService(db, service.tenant_id).dispatch(service.pop_events())
    db.commit()


def _get_instance(db: Session, tenant_id: UUID, instance_id: UUID) -> ApprovalInstance:
    instance = (
        db.query(ApprovalInstance)
        .join(ApprovalWorkflow, ApprovalInstance.workflow_id == ApprovalWorkflow.id)
        .filter(ApprovalInstance.id == instance_id, ApprovalWorkflow.tenant_id == tenant_id)
        .first()
    )
    if instance is None:
        raise NotFoundError("Approval instance", instance_id)
    return instance


async def _decide(
    db: Session,
    ctx: TenantContext,
    instance_id: UUID,
    decision: InstanceDecision,
    comment: Optional[str],
) -> WorkflowResponse:
    service = ApprovalWorkflowService(db, ctx.tenant_id)

    try:
        instance = _get_instance(db, ctx.tenant_id, instance_id)
        if instance.approver_id != ctx.user_id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Only the assigned approver can decide on this instance",
            )
        workflow = service.record_decision(instance.workflow, instance_id, decision, comment)
        _commit(db, service)
    except ApprovalError as e:
        db.rollback()
        raise http_error(e)

    return WorkflowResponse.model_validate(workflow)


# Endpoints
@router.post("", response_model=WorkflowResponse, status_code=status.HTTP_201_CREATED)
@require_permission("workflows:create")
async def start_workflow(
    payload: WorkflowStart,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant_context),
):
    """Start the approval workflow of a document.

    Uses the given rule, or the highest-priority matching rule.
    """
    service = ApprovalWorkflowService(db, ctx.tenant_id)
    document = DocumentRef(
        document_type=payload.document_type.value,
        document_id=payload.document_id,
        amount=payload.amount,
        category=payload.category,
        initiated_by=ctx.user_id,
    )

    try:
        if payload.rule_id:
            workflow = service.start_workflow(document, get_rule(db, ctx.tenant_id, payload.rule_id))
        else:
            workflow = service.start_workflow_for_document(document)
            if workflow is None:
                raise HTTPException(
                    status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                    detail="No approval rule matches this document",
                )
        workflow_id = workflow.id
        _commit(db, service)
    except ApprovalError as e:
        db.rollback()
        raise http_error(e)

    return WorkflowResponse.model_validate(service.get_workflow(workflow_id))


@router.get("/pending", response_model=List[PendingApprovalResponse])
@require_permission("workflows:list")
async def list_pending(
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant_context),
):
    """List instances awaiting the caller's decision."""
    service = ApprovalWorkflowService(db, ctx.tenant_id)
    return [
        PendingApprovalResponse(
            instance=InstanceResponse.model_validate(i),
            document_type=i.workflow.document_type,
            document_id=i.workflow.document_id,
            amount=i.workflow.amount,
        )
        for i in service.list_pending_for_user(ctx.user_id)
    ]


@router.get("/document/{document_type}/{document_id}", response_model=WorkflowResponse)
@require_permission("workflows:read")
async def get_document_workflow(
    document_type: DocumentType,
    document_id: str,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant_context),
):
    """Get the most recent workflow of a document."""
    service = ApprovalWorkflowService(db, ctx.tenant_id)
    workflow = service.get_latest_workflow(document_type.value, document_id)
    if workflow is None:
        raise HTTPException(status_code=404, detail="No workflow for this document")
    return WorkflowResponse.model_validate(workflow)


@router.get("/{workflow_id}", response_model=WorkflowResponse)
@require_permission("workflows:read")
async def get_workflow(
    workflow_id: UUID,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant_context),
):
    """Get a workflow with all of its instances."""
    service = ApprovalWorkflowService(db, ctx.tenant_id)
    try:
        workflow = service.get_workflow(workflow_id)
    except ApprovalError as e:
        raise http_error(e)
    return WorkflowResponse.model_validate(workflow)


@router.get("/{workflow_id}/history", response_model=List[HistoryResponse])
@require_permission("workflows:read")
async def get_workflow_history(
    workflow_id: UUID,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant_context),
):
    """Get the status transition history of a workflow."""
    service = ApprovalWorkflowService(db, ctx.tenant_id)
    try:
        workflow = service.get_workflow(workflow_id)
    except ApprovalError as e:
        raise http_error(e)
    return [HistoryResponse.model_validate(h) for h in service.get_history(workflow)]


@router.post("/instances/{instance_id}/approve", response_model=WorkflowResponse)
@require_permission("workflows:approve")
async def approve_instance(
    instance_id: UUID,
    action: DecisionAction,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant_context),
):
    """Approve an instance assigned to the caller."""
    return await _decide(db, ctx, instance_id, InstanceDecision.APPROVED, action.comment)


@router.post("/instances/{instance_id}/reject", response_model=WorkflowResponse)
@require_permission("workflows:reject")
async def reject_instance(
    instance_id: UUID,
    action: DecisionAction,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant_context),
):
    """Reject an instance assigned to the caller. A comment is required."""
    if not action.comment:
        raise HTTPException(status_code=400, detail="Comment is required for rejections")

    return await _decide(db, ctx, instance_id, InstanceDecision.REJECTED, action.comment)


@router.post("/{workflow_id}/cancel", response_model=WorkflowResponse)
@require_permission("workflows:cancel")
async def cancel_workflow(
    workflow_id: UUID,
    action: CancelAction,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant_context),
):
    """Cancel an open workflow.

    Without workflows:manage, callers may cancel only the workflows they started.
    """
    service = ApprovalWorkflowService(db, ctx.tenant_id)

    try:
        workflow = service.get_workflow(workflow_id)
        can_cancel_any = PermissionChecker(ctx.permissions).has_permission("workflows:manage")
        if workflow.initiated_by != ctx.user_id and not can_cancel_any:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Only the initiator can cancel this workflow",
            )
        service.cancel_workflow(workflow, user_id=ctx.user_id, comment=action.comment)
        _commit(db, service)
    except ApprovalError as e:
        db.rollback()
        raise http_error(e)

    return WorkflowResponse.model_validate(service.get_workflow(workflow_id))
