"""Approver resolution for approval levels.

A level's approver specs are turned into concrete users when the level is
activated:

- fixed-user specs resolve to the user, if still active
- role specs resolve to every active member holding the role in the tenant
- each resolved approver is swapped for their delegate when a delegation
  is active at that moment
- the final list is de-duplicated, first occurrence wins

Resolution reads membership and delegations fresh on every call, so
nothing here is cached between levels.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy import and_
from sqlalchemy.orm import Session

from portal.core.errors import InvalidRuleError, UnresolvedApproverError
from portal.db.models import ApprovalLevel, Delegation, LevelApprover, TenantMembership, User
from .states import DelegationStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedApprover:
    """A concrete approver for a level."""
    user_id: UUID
    delegated_from_id: Optional[UUID] = None


class ApproverSpec(ABC):
    """Specification of who may decide at a level."""

    @abstractmethod
    def resolve(self, db: Session, tenant_id: UUID, now: datetime) -> List[UUID]:
        """Return the user IDs this spec designates, in a stable order."""


@dataclass(frozen=True)
class FixedUserSpec(ApproverSpec):
    user_id: UUID

    def resolve(self, db: Session, tenant_id: UUID, now: datetime) -> List[UUID]:
        user = db.query(User).filter(User.id == self.user_id).first()
        if user is None or not user.is_active:
            # Deactivated approvers drop out of the level instead of failing it
            logger.warning("Skipping approver: %s", UnresolvedApproverError(self.user_id))
            return []
        return [user.id]


@dataclass(frozen=True)
class RoleSpec(ApproverSpec):
    role_id: UUID

    def resolve(self, db: Session, tenant_id: UUID, now: datetime) -> List[UUID]:
        rows = (
            db.query(User.id)
            .join(TenantMembership, TenantMembership.user_id == User.id)
            .filter(
                and_(
                    TenantMembership.tenant_id == tenant_id,
                    TenantMembership.role_id == self.role_id,
                    TenantMembership.is_active.is_(True),
                    User.is_active.is_(True),
                )
            )
            .order_by(User.email.asc())
            .all()
        )
        return [row[0] for row in rows]


def spec_from_model(approver: LevelApprover) -> ApproverSpec:
    """Build the spec variant for a stored level approver."""
    if approver.user_id is not None and approver.role_id is None:
        return FixedUserSpec(approver.user_id)
    if approver.role_id is not None and approver.user_id is None:
        return RoleSpec(approver.role_id)
    raise InvalidRuleError(f"Level approver {approver.id} must reference exactly one of user or role")


def resolve_approvers(db: Session, spec: ApproverSpec, tenant_id: UUID, now: datetime) -> List[UUID]:
    """Resolve a single spec to user IDs."""
    return spec.resolve(db, tenant_id, now)


def delegation_status(delegation: Delegation, now: datetime) -> DelegationStatus:
    """Derive the status of a delegation at ``now``."""
    if not delegation.is_active:
        return DelegationStatus.CANCELLED
    if now < delegation.start_date:
        return DelegationStatus.SCHEDULED
    if now > delegation.end_date:
        return DelegationStatus.EXPIRED
    return DelegationStatus.ACTIVE


def find_active_delegation(
    db: Session,
    tenant_id: UUID,
    delegator_id: UUID,
    now: datetime,
) -> Optional[Delegation]:
    """
    Find the delegation in force for a delegator at ``now``.

    Overlapping windows are allowed; the most recently created one wins.
    """
    return (
        db.query(Delegation)
        .filter(
            and_(
                Delegation.tenant_id == tenant_id,
                Delegation.delegator_id == delegator_id,
                Delegation.is_active.is_(True),
                Delegation.start_date <= now,
                Delegation.end_date >= now,
            )
        )
        .order_by(Delegation.created_at.desc(), Delegation.id.desc())
        .first()
    )


def apply_delegation(db: Session, tenant_id: UUID, user_id: UUID, now: datetime) -> ResolvedApprover:
    """Substitute the active delegate for ``user_id``, if any.

    Substitution is a single hop: a delegate's own delegation is not
    followed.
    """
    delegation = find_active_delegation(db, tenant_id, user_id, now)
    if delegation is None:
        return ResolvedApprover(user_id)

    delegate = db.query(User).filter(User.id == delegation.delegate_id).first()
    if delegate is None or not delegate.is_active:
        logger.warning(
            "Ignoring delegation %s: delegate %s is not active", delegation.id, delegation.delegate_id
        )
        return ResolvedApprover(user_id)

    logger.info("Approver %s delegated to %s (delegation %s)", user_id, delegate.id, delegation.id)
    return ResolvedApprover(delegate.id, delegated_from_id=user_id)


def resolve_level_approvers(
    db: Session,
    level: ApprovalLevel,
    tenant_id: UUID,
    now: datetime,
) -> List[ResolvedApprover]:
    """
    Resolve every approver spec of a level into de-duplicated approvers.

    Args:
        db: Database session
        level: Level being activated
        tenant_id: Tenant owning the workflow
        now: Activation time, used for delegation windows

    Returns:
        Approvers in spec order; empty when nobody qualifies
    """
    resolved: List[ResolvedApprover] = []
    seen: set[UUID] = set()

    for approver in level.approvers:
        spec = spec_from_model(approver)
        for user_id in resolve_approvers(db, spec, tenant_id, now):
            candidate = apply_delegation(db, tenant_id, user_id, now)
            if candidate.user_id in seen:
                continue
            seen.add(candidate.user_id)
            resolved.append(candidate)

    return resolved
