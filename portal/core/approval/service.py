"""Approval workflow service.

Drives document workflows through their approval levels: starting a
workflow from a rule, activating levels, recording approver decisions,
cancelling, and managing delegations. All changes are flushed to the
session; committing is the caller's job.

Observable transitions are collected as ``WorkflowEvent`` objects which
the caller drains with ``pop_events()`` after committing.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any, List, Callable, Union
from uuid import UUID
import uuid

from sqlalchemy.orm import Session, selectinload
from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError

from portal.core.errors import (
    DuplicateWorkflowError,
    InvalidDelegationError,
    InvalidDelegationWindowError,
    InvalidTransitionError,
    NotFoundError,
)
from portal.core.rbac import Permission, PermissionChecker, Resource, Action
from portal.db.models import (
    ApprovalInstance,
    ApprovalLevel,
    ApprovalRule,
    ApprovalWorkflow,
    Delegation,
    TenantMembership,
    User,
    WorkflowHistory,
)
from .events import WorkflowEvent, WorkflowEventType
from .machine import WorkflowStateMachine
from .quorum import is_quorum_met
from .resolver import resolve_level_approvers
from .rules import find_applicable_rule, next_level, ordered_levels
from .states import (
    ApprovalMode,
    InstanceDecision,
    OPEN_STATES,
    SUBMITTABLE_DECISIONS,
    WorkflowStatus,
    WorkflowTransition,
    can_change_decision,
)

logger = logging.getLogger(__name__)


@dataclass
class DocumentRef:
    """The document a workflow approves."""
    document_type: str
    document_id: str
    amount: Optional[Decimal] = None
    category: Optional[str] = None
    initiated_by: Optional[UUID] = None


_TERMINAL_EVENTS = {
    WorkflowTransition.APPROVE: WorkflowEventType.WORKFLOW_APPROVED,
    WorkflowTransition.REJECT: WorkflowEventType.WORKFLOW_REJECTED,
    WorkflowTransition.CANCEL: WorkflowEventType.WORKFLOW_CANCELLED,
}


class ApprovalWorkflowService:
    """
    Resolves approval workflows for the documents of one tenant.

    Handles:
    - Starting workflows from a matched approval rule
    - Level activation with approver resolution and delegation
    - Decisions and ANY/ALL quorum evaluation
    - Cancellation
    - Delegation management
    """

    def __init__(
        self,
        db: Session,
        tenant_id: UUID,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the workflow service.

        Args:
            db: Database session
            tenant_id: Tenant ID for scoping
            clock: Callable returning the current UTC time
        """
        self.db = db
        self.tenant_id = tenant_id
        self._clock = clock or datetime.utcnow
        self._events: List[WorkflowEvent] = []

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    @property
    def events(self) -> List[WorkflowEvent]:
        """Events recorded since the last ``pop_events()``."""
        return list(self._events)

    def pop_events(self) -> List[WorkflowEvent]:
        """Return and clear the recorded events."""
        events, self._events = self._events, []
        return events

    def _emit(self, event_type: WorkflowEventType, **kwargs) -> WorkflowEvent:
        event = WorkflowEvent(event_type=event_type, tenant_id=self.tenant_id, timestamp=self._clock(), **kwargs)
        self._events.append(event)
        return event

    # ------------------------------------------------------------------
    # Workflow lifecycle
    # ------------------------------------------------------------------

    def start_workflow(self, document: DocumentRef, rule: ApprovalRule) -> ApprovalWorkflow:
        """
        Create a workflow for a document and activate its first level.

        Args:
            document: Document to approve
            rule: Matched approval rule

        Returns:
            The new workflow, IN_PROGRESS or already APPROVED when every
            level resolved to nobody

        Raises:
            DuplicateWorkflowError: If the document has an open workflow
            InvalidTransitionError: If the rule has no levels
        """
        if rule.tenant_id != self.tenant_id:
            raise NotFoundError("Approval rule", rule.id)

        levels = ordered_levels(rule)
        if not levels:
            raise InvalidTransitionError(f"Approval rule {rule.id} has no levels")

        existing = self.get_active_workflow(document.document_type, document.document_id)
        if existing is not None:
            raise DuplicateWorkflowError(document.document_type, document.document_id, existing.id)

        now = self._clock()
        workflow = ApprovalWorkflow(
            id=uuid.uuid4(),
            tenant_id=self.tenant_id,
            rule_id=rule.id,
            document_type=document.document_type,
            document_id=document.document_id,
            amount=document.amount,
            category=document.category,
            status=WorkflowStatus.PENDING.value,
            initiated_by=document.initiated_by,
            created_at=now,
            updated_at=now,
        )
        workflow.rule = rule
        self.db.add(workflow)

        try:
            self.db.flush()
        except IntegrityError as exc:
            # Lost a race against a concurrent start for the same document
            raise DuplicateWorkflowError(document.document_type, document.document_id) from exc

        logger.info(
            "Started workflow %s for %s/%s using rule %s",
            workflow.id, document.document_type, document.document_id, rule.id,
        )
        self._emit(
            WorkflowEventType.WORKFLOW_STARTED,
            workflow_id=workflow.id,
            actor_id=document.initiated_by,
            payload={
                "document_type": document.document_type,
                "document_id": document.document_id,
                "rule_id": str(rule.id),
            },
        )

        self.activate_level(workflow, levels[0], actor_id=document.initiated_by)
        return workflow

    def start_workflow_for_document(self, document: DocumentRef) -> Optional[ApprovalWorkflow]:
        """
        Match a rule for the document and start a workflow with it.

        Returns:
            The new workflow, or None when no rule applies
        """
        rule = find_applicable_rule(
            self.db,
            self.tenant_id,
            document.document_type,
            document.amount,
            document.category,
        )
        if rule is None:
            return None
        return self.start_workflow(document, rule)

    def activate_level(
        self,
        workflow: ApprovalWorkflow,
        level: ApprovalLevel,
        *,
        actor_id: Optional[UUID] = None,
    ) -> List[ApprovalInstance]:
        """
        Activate a level: resolve its approvers and create their instances.

        Levels resolving to zero approvers are skipped and the next level
        is activated in their place. When the skipped level was the last
        one the workflow completes as APPROVED.

        Args:
            workflow: Open workflow
            level: Level of the workflow's rule to activate
            actor_id: User whose action caused the activation

        Returns:
            The PENDING instances created, empty if the workflow completed

        Raises:
            InvalidTransitionError: If the workflow is terminal, the level
                does not move forward, or the current level is undecided
        """
        status = WorkflowStatus(workflow.status)
        if status not in OPEN_STATES:
            raise InvalidTransitionError(
                f"Cannot activate a level of a {status.value} workflow", status.value,
            )
        if level.rule_id != workflow.rule_id:
            raise InvalidTransitionError(f"Level {level.id} does not belong to the workflow's rule")
        if workflow.current_level_order is not None:
            if level.level_order <= workflow.current_level_order:
                raise InvalidTransitionError(
                    f"Level {level.level_order} does not follow current level {workflow.current_level_order}",
                    status.value,
                )
            if self._pending_instances(workflow, workflow.current_level_order):
                raise InvalidTransitionError(
                    f"Level {workflow.current_level_order} still has pending approvers", status.value,
                )

        current: Optional[ApprovalLevel] = level
        while current is not None:
            instances = self._materialize_level(workflow, current, actor_id)
            if instances:
                self.db.flush()
                return instances
            current = next_level(workflow.rule, current.level_order)

        self._complete(workflow, WorkflowTransition.APPROVE, user_id=actor_id)
        self.db.flush()
        return []

    def record_decision(
        self,
        workflow: ApprovalWorkflow,
        instance_id: UUID,
        decision: Union[InstanceDecision, str],
        comment: Optional[str] = None,
    ) -> ApprovalWorkflow:
        """
        Record an approver's decision and advance the workflow.

        The workflow row is locked before the level's quorum is
        evaluated, so concurrent decisions on the same workflow are
        applied one at a time.

        Args:
            workflow: Workflow the instance belongs to
            instance_id: Instance being decided
            decision: APPROVED or REJECTED
            comment: Optional comment

        Returns:
            The locked workflow, reflecting any status or level change

        Raises:
            NotFoundError: If the instance is not part of the workflow
            InvalidTransitionError: If the workflow is not in progress, the
                instance is not at the current level, or already decided
        """
        decision = InstanceDecision(decision)
        if decision not in SUBMITTABLE_DECISIONS:
            raise InvalidTransitionError(f"Decision {decision.value} cannot be submitted")

        workflow = self._lock_workflow(workflow.id)
        status = WorkflowStatus(workflow.status)
        if status != WorkflowStatus.IN_PROGRESS:
            raise InvalidTransitionError(
                f"Workflow {workflow.id} is {status.value}, not in progress", status.value,
            )

        instance = next((i for i in workflow.instances if i.id == instance_id), None)
        if instance is None:
            raise NotFoundError("Approval instance", instance_id)
        if instance.level_order != workflow.current_level_order:
            raise InvalidTransitionError(
                f"Instance {instance_id} belongs to level {instance.level_order}, "
                f"current level is {workflow.current_level_order}",
                status.value,
            )
        if not can_change_decision(InstanceDecision(instance.decision), decision):
            raise InvalidTransitionError(
                f"Instance {instance_id} is already {instance.decision}", status.value,
            )

        now = self._clock()
        instance.decision = decision.value
        instance.comment = comment
        instance.decided_at = now

        logger.info(
            "Recorded %s by %s on workflow %s level %s",
            decision.value, instance.approver_id, workflow.id, instance.level_order,
        )
        self._emit(
            WorkflowEventType.DECISION_RECORDED,
            workflow_id=workflow.id,
            level_order=instance.level_order,
            actor_id=instance.approver_id,
            comment=comment,
            payload={"instance_id": str(instance.id), "decision": decision.value},
        )

        if decision == InstanceDecision.REJECTED:
            self._complete(
                workflow, WorkflowTransition.REJECT, user_id=instance.approver_id, comment=comment,
            )
            self.db.flush()
            return workflow

        level_instances = [i for i in workflow.instances if i.level_order == instance.level_order]
        decisions = [InstanceDecision(i.decision) for i in level_instances]
        if not is_quorum_met(ApprovalMode(instance.mode), decisions):
            self.db.flush()
            return workflow

        self._skip_pending(workflow, level_order=instance.level_order)
        following = next_level(workflow.rule, instance.level_order) if workflow.rule else None
        if following is None:
            self._complete(
                workflow, WorkflowTransition.APPROVE, user_id=instance.approver_id, comment=comment,
            )
            self.db.flush()
        else:
            self.activate_level(workflow, following, actor_id=instance.approver_id)
        return workflow

    def cancel_workflow(
        self,
        workflow: ApprovalWorkflow,
        *,
        user_id: Optional[UUID] = None,
        comment: Optional[str] = None,
    ) -> ApprovalWorkflow:
        """
        Cancel an open workflow; pending instances are skipped.

        Raises:
            InvalidTransitionError: If the workflow is already terminal
        """
        workflow = self._lock_workflow(workflow.id)
        self._complete(workflow, WorkflowTransition.CANCEL, user_id=user_id, comment=comment)
        self.db.flush()
        return workflow

    # ------------------------------------------------------------------
    # Delegations
    # ------------------------------------------------------------------

    def create_delegation(
        self,
        delegator_id: UUID,
        delegate_id: UUID,
        start_date: datetime,
        end_date: datetime,
        reason: Optional[str] = None,
    ) -> Delegation:
        """
        Delegate a user's approval authority for a date range.

        Only levels activated inside the window are affected; instances
        that already exist keep their approver.

        Raises:
            InvalidDelegationWindowError: If start_date is after end_date
            InvalidDelegationError: For self-delegation or an inactive delegate
        """
        if start_date > end_date:
            raise InvalidDelegationWindowError(start_date, end_date)
        if delegator_id == delegate_id:
            raise InvalidDelegationError("Cannot delegate approval authority to yourself")
        if self._get_membership(delegate_id) is None:
            raise InvalidDelegationError(f"Delegate {delegate_id} is not an active member of this tenant")

        delegation = Delegation(
            id=uuid.uuid4(),
            tenant_id=self.tenant_id,
            delegator_id=delegator_id,
            delegate_id=delegate_id,
            start_date=start_date,
            end_date=end_date,
            reason=reason,
            is_active=True,
            created_at=self._clock(),
        )
        self.db.add(delegation)
        self.db.flush()

        logger.info("Delegation %s: %s -> %s until %s", delegation.id, delegator_id, delegate_id, end_date)
        self._emit(
            WorkflowEventType.DELEGATION_CREATED,
            delegation_id=delegation.id,
            actor_id=delegator_id,
            recipients=[delegate_id],
            comment=reason,
            payload={
                "start_date": start_date.isoformat(),
                "end_date": end_date.isoformat(),
            },
        )
        return delegation

    def cancel_delegation(self, delegation: Delegation) -> Delegation:
        """Deactivate a delegation. Existing instances are left untouched."""
        if not delegation.is_active:
            return delegation

        delegation.is_active = False
        self.db.flush()

        logger.info("Cancelled delegation %s", delegation.id)
        self._emit(
            WorkflowEventType.DELEGATION_CANCELLED,
            delegation_id=delegation.id,
            actor_id=delegation.delegator_id,
            recipients=[delegation.delegate_id],
        )
        return delegation

    def get_delegation(self, delegation_id: UUID) -> Delegation:
        delegation = self.db.query(Delegation).filter(
            and_(
                Delegation.id == delegation_id,
                Delegation.tenant_id == self.tenant_id,
            )
        ).first()
        if delegation is None:
            raise NotFoundError("Delegation", delegation_id)
        return delegation

    def list_user_delegations(self, user_id: UUID) -> List[Delegation]:
        """Delegations given or received by a user, newest start first."""
        return self.db.query(Delegation).filter(
            and_(
                Delegation.tenant_id == self.tenant_id,
                or_(Delegation.delegator_id == user_id, Delegation.delegate_id == user_id),
            )
        ).order_by(Delegation.start_date.desc(), Delegation.created_at.desc()).all()

    def list_available_approvers(self, exclude_user_id: Optional[UUID] = None) -> List[User]:
        """Active tenant members whose role allows approving workflows."""
        permission = Permission(Resource.WORKFLOWS, Action.APPROVE)
        rows = (
            self.db.query(TenantMembership)
            .join(User, TenantMembership.user_id == User.id)
            .filter(
                and_(
                    TenantMembership.tenant_id == self.tenant_id,
                    TenantMembership.is_active.is_(True),
                    User.is_active.is_(True),
                )
            )
            .order_by(User.name.asc(), User.email.asc())
            .all()
        )

        users: List[User] = []
        seen = set()
        for membership in rows:
            if membership.user_id == exclude_user_id or membership.user_id in seen:
                continue
            if PermissionChecker(membership.role.permissions or []).has_permission(permission):
                seen.add(membership.user_id)
                users.append(membership.user)
        return users

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_workflow(self, workflow_id: UUID) -> ApprovalWorkflow:
        workflow = self.db.query(ApprovalWorkflow).filter(
            and_(
                ApprovalWorkflow.id == workflow_id,
                ApprovalWorkflow.tenant_id == self.tenant_id,
            )
        ).first()
        if workflow is None:
            raise NotFoundError("Workflow", workflow_id)
        return workflow

    def get_active_workflow(self, document_type: str, document_id: str) -> Optional[ApprovalWorkflow]:
        """Get the open workflow of a document, if any."""
        return self.db.query(ApprovalWorkflow).filter(
            and_(
                ApprovalWorkflow.tenant_id == self.tenant_id,
                ApprovalWorkflow.document_type == document_type,
                ApprovalWorkflow.document_id == document_id,
                ApprovalWorkflow.status.in_([s.value for s in OPEN_STATES]),
            )
        ).first()

    def get_latest_workflow(self, document_type: str, document_id: str) -> Optional[ApprovalWorkflow]:
        """Get the most recent workflow of a document, open or not."""
        return self.db.query(ApprovalWorkflow).filter(
            and_(
                ApprovalWorkflow.tenant_id == self.tenant_id,
                ApprovalWorkflow.document_type == document_type,
                ApprovalWorkflow.document_id == document_id,
            )
        ).order_by(ApprovalWorkflow.created_at.desc()).first()

    def list_pending_for_user(self, user_id: UUID) -> List[ApprovalInstance]:
        """Instances awaiting the user's decision at current levels."""
        return (
            self.db.query(ApprovalInstance)
            .join(ApprovalWorkflow, ApprovalInstance.workflow_id == ApprovalWorkflow.id)
            .filter(
                and_(
                    ApprovalWorkflow.tenant_id == self.tenant_id,
                    ApprovalWorkflow.status == WorkflowStatus.IN_PROGRESS.value,
                    ApprovalInstance.level_order == ApprovalWorkflow.current_level_order,
                    ApprovalInstance.approver_id == user_id,
                    ApprovalInstance.decision == InstanceDecision.PENDING.value,
                )
            )
            .order_by(ApprovalInstance.created_at.asc())
            .all()
        )

    def get_history(self, workflow: ApprovalWorkflow) -> List[WorkflowHistory]:
        return self.db.query(WorkflowHistory).filter(
            WorkflowHistory.workflow_id == workflow.id
        ).order_by(WorkflowHistory.created_at.asc()).all()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lock_workflow(self, workflow_id: UUID) -> ApprovalWorkflow:
        """Lock the workflow row and reload it and its instances from the database."""
        # Pending changes would be overwritten by populate_existing
        self.db.flush()
        workflow = self.db.query(ApprovalWorkflow).options(
            selectinload(ApprovalWorkflow.instances)
        ).filter(
            and_(
                ApprovalWorkflow.id == workflow_id,
                ApprovalWorkflow.tenant_id == self.tenant_id,
            )
        ).with_for_update().populate_existing().first()
        if workflow is None:
            raise NotFoundError("Workflow", workflow_id)
        return workflow

    def _get_membership(self, user_id: UUID) -> Optional[TenantMembership]:
        return (
            self.db.query(TenantMembership)
            .join(User, TenantMembership.user_id == User.id)
            .filter(
                and_(
                    TenantMembership.tenant_id == self.tenant_id,
                    TenantMembership.user_id == user_id,
                    TenantMembership.is_active.is_(True),
                    User.is_active.is_(True),
                )
            )
            .first()
        )

    def _apply_transition(
        self,
        workflow: ApprovalWorkflow,
        transition: WorkflowTransition,
        *,
        user_id: Optional[UUID] = None,
        comment: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> WorkflowStatus:
        """Run a transition through the state machine and record it."""
        machine = WorkflowStateMachine(
            workflow.id,
            WorkflowStatus(workflow.status),
            self.tenant_id,
            clock=self._clock,
        )
        record = machine.transition(transition, comment=comment, user_id=user_id, metadata=metadata)

        workflow.status = record["to_state"]
        workflow.updated_at = record["timestamp"]

        self.db.add(WorkflowHistory(
            id=record["id"],
            workflow_id=workflow.id,
            from_status=record["from_state"],
            to_status=record["to_state"],
            transition=record["transition"],
            level_order=workflow.current_level_order,
            user_id=user_id,
            comment=comment,
            extra_data=record["metadata"],
            created_at=record["timestamp"],
        ))
        return machine.state

    def _materialize_level(
        self,
        workflow: ApprovalWorkflow,
        level: ApprovalLevel,
        actor_id: Optional[UUID],
    ) -> List[ApprovalInstance]:
        now = self._clock()
        approvers = resolve_level_approvers(self.db, level, self.tenant_id, now)

        transition = (
            WorkflowTransition.ACTIVATE
            if workflow.status == WorkflowStatus.PENDING.value
            else WorkflowTransition.ADVANCE
        )
        workflow.current_level_order = level.level_order
        self._apply_transition(
            workflow,
            transition,
            user_id=actor_id,
            metadata={"level_name": level.name, "approvers": len(approvers)},
        )

        if not approvers:
            logger.info(
                "Level %s of workflow %s resolved to no approvers, skipping",
                level.level_order, workflow.id,
            )
            self._emit(
                WorkflowEventType.LEVEL_SKIPPED,
                workflow_id=workflow.id,
                level_order=level.level_order,
                payload={"level_name": level.name},
            )
            return []

        instances = []
        for approver in approvers:
            instance = ApprovalInstance(
                id=uuid.uuid4(),
                level_id=level.id,
                level_order=level.level_order,
                level_name=level.name,
                mode=ApprovalMode(level.mode).value,
                approver_id=approver.user_id,
                delegated_from_id=approver.delegated_from_id,
                decision=InstanceDecision.PENDING.value,
                created_at=now,
            )
            workflow.instances.append(instance)
            instances.append(instance)

        logger.info(
            "Activated level %s of workflow %s with %d approver(s)",
            level.level_order, workflow.id, len(instances),
        )
        self._emit(
            WorkflowEventType.LEVEL_ACTIVATED,
            workflow_id=workflow.id,
            level_order=level.level_order,
            actor_id=actor_id,
            recipients=[i.approver_id for i in instances],
            payload={
                "level_name": level.name,
                "mode": ApprovalMode(level.mode).value,
                "delegated_from": {
                    str(i.approver_id): str(i.delegated_from_id)
                    for i in instances if i.delegated_from_id
                },
            },
        )
        return instances

    def _pending_instances(
        self,
        workflow: ApprovalWorkflow,
        level_order: Optional[int] = None,
    ) -> List[ApprovalInstance]:
        return [
            i for i in workflow.instances
            if i.decision == InstanceDecision.PENDING.value
            and (level_order is None or i.level_order == level_order)
        ]

    def _skip_pending(self, workflow: ApprovalWorkflow, level_order: Optional[int] = None) -> List[UUID]:
        """Mark pending instances SKIPPED; returns the affected approvers."""
        skipped = []
        for instance in self._pending_instances(workflow, level_order):
            instance.decision = InstanceDecision.SKIPPED.value
            skipped.append(instance.approver_id)
        return skipped

    def _complete(
        self,
        workflow: ApprovalWorkflow,
        transition: WorkflowTransition,
        *,
        user_id: Optional[UUID] = None,
        comment: Optional[str] = None,
    ) -> None:
        """Move the workflow to a terminal state."""
        self._apply_transition(workflow, transition, user_id=user_id, comment=comment)

        workflow.completed_at = self._clock()
        workflow.final_comment = comment
        skipped = self._skip_pending(workflow)

        recipients = []
        if workflow.initiated_by is not None:
            recipients.append(workflow.initiated_by)
        if transition == WorkflowTransition.CANCEL:
            recipients.extend(a for a in skipped if a not in recipients)

        logger.info("Workflow %s is %s", workflow.id, workflow.status)
        self._emit(
            _TERMINAL_EVENTS[transition],
            workflow_id=workflow.id,
            level_order=workflow.current_level_order,
            actor_id=user_id,
            recipients=recipients,
            comment=comment,
            payload={
                "document_type": workflow.document_type,
                "document_id": workflow.document_id,
            },
        )
