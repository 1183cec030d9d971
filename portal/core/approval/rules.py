"""Approval rule matching and management.

Rules are evaluated by priority (highest first); the first active rule
whose document type, category and amount range all match is used.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Union
from uuid import UUID

from sqlalchemy import and_
from sqlalchemy.orm import Session

from portal.core.errors import InvalidRuleError, NotFoundError
from portal.db.models import ApprovalLevel, ApprovalRule, ApprovalWorkflow, LevelApprover, Role, User
from .states import ApprovalMode, LevelType, OPEN_STATES

logger = logging.getLogger(__name__)

Amount = Union[Decimal, int, float, str, None]


@dataclass
class ApproverDefinition:
    user_id: Optional[UUID] = None
    role_id: Optional[UUID] = None


@dataclass
class LevelDefinition:
    name: str
    approvers: List[ApproverDefinition]
    mode: ApprovalMode = ApprovalMode.ANY
    level_type: LevelType = LevelType.GENERAL


def _to_decimal(amount: Amount) -> Optional[Decimal]:
    if amount is None:
        return None
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))


def rule_matches(
    rule: ApprovalRule,
    document_type: str,
    amount: Amount = None,
    category: Optional[str] = None,
) -> bool:
    """Check whether a rule applies to a document. Amount bounds are inclusive."""
    if not rule.is_active:
        return False
    if rule.document_type and rule.document_type != document_type:
        return False
    if rule.category and rule.category != category:
        return False

    value = _to_decimal(amount)
    if rule.min_amount is not None and (value is None or value < rule.min_amount):
        return False
    if rule.max_amount is not None and (value is None or value > rule.max_amount):
        return False
    return True


def find_applicable_rule(
    db: Session,
    tenant_id: UUID,
    document_type: str,
    amount: Amount = None,
    category: Optional[str] = None,
) -> Optional[ApprovalRule]:
    """
    Find the approval rule for a document.

    Args:
        db: Database session
        tenant_id: Tenant scope
        document_type: Type of the document
        amount: Document total
        category: Purchase category of the document

    Returns:
        The highest-priority matching rule, or None
    """
    rules = (
        db.query(ApprovalRule)
        .filter(and_(ApprovalRule.tenant_id == tenant_id, ApprovalRule.is_active.is_(True)))
        .order_by(ApprovalRule.priority.desc(), ApprovalRule.created_at.asc())
        .all()
    )
    for rule in rules:
        if rule_matches(rule, document_type, amount, category):
            return rule

    logger.info("No approval rule matches %s (amount=%s, category=%s)", document_type, amount, category)
    return None


def ordered_levels(rule: ApprovalRule) -> List[ApprovalLevel]:
    return sorted(rule.levels, key=lambda level: level.level_order)


def next_level(rule: ApprovalRule, after_order: int) -> Optional[ApprovalLevel]:
    """Return the first level strictly after ``after_order``."""
    for level in ordered_levels(rule):
        if level.level_order > after_order:
            return level
    return None


def _validate_amounts(min_amount: Amount, max_amount: Amount) -> None:
    low, high = _to_decimal(min_amount), _to_decimal(max_amount)
    if low is not None and high is not None and low > high:
        raise InvalidRuleError(f"min_amount {low} is greater than max_amount {high}")


def _validate_approver(db: Session, tenant_id: UUID, approver: ApproverDefinition) -> None:
    if (approver.user_id is None) == (approver.role_id is None):
        raise InvalidRuleError("Each approver must reference exactly one of user_id or role_id")
    if approver.role_id is not None:
        role = db.query(Role).filter(and_(Role.id == approver.role_id, Role.tenant_id == tenant_id)).first()
        if role is None:
            raise NotFoundError("Role", approver.role_id)
    else:
        user = db.query(User).filter(User.id == approver.user_id).first()
        if user is None:
            raise NotFoundError("User", approver.user_id)


def create_rule(
    db: Session,
    tenant_id: UUID,
    name: str,
    levels: Sequence[LevelDefinition],
    *,
    document_type: Optional[str] = None,
    category: Optional[str] = None,
    min_amount: Amount = None,
    max_amount: Amount = None,
    priority: int = 0,
) -> ApprovalRule:
    """
    Create an approval rule with its levels.

    Levels are numbered 1..N in the order given.

    Raises:
        InvalidRuleError: If the rule has no levels or invalid bounds
        NotFoundError: If an approver references an unknown user or role
    """
    if not levels:
        raise InvalidRuleError("An approval rule needs at least one level")
    _validate_amounts(min_amount, max_amount)

    rule = ApprovalRule(
        tenant_id=tenant_id,
        name=name,
        document_type=document_type,
        category=category,
        min_amount=_to_decimal(min_amount),
        max_amount=_to_decimal(max_amount),
        priority=priority,
        is_active=True,
    )

    for index, definition in enumerate(levels, start=1):
        if not definition.approvers:
            raise InvalidRuleError(f"Level '{definition.name}' has no approvers")
        level = ApprovalLevel(
            name=definition.name,
            level_order=index,
            mode=ApprovalMode(definition.mode).value,
            level_type=LevelType(definition.level_type).value,
        )
        for position, approver in enumerate(definition.approvers):
            _validate_approver(db, tenant_id, approver)
            level.approvers.append(
                LevelApprover(position=position, user_id=approver.user_id, role_id=approver.role_id)
            )
        rule.levels.append(level)

    db.add(rule)
    db.flush()
    logger.info("Created approval rule %s with %d levels", rule.id, len(rule.levels))
    return rule


def get_rule(db: Session, tenant_id: UUID, rule_id: UUID) -> ApprovalRule:
    rule = db.query(ApprovalRule).filter(
        and_(ApprovalRule.id == rule_id, ApprovalRule.tenant_id == tenant_id)
    ).first()
    if rule is None:
        raise NotFoundError("Approval rule", rule_id)
    return rule


UPDATABLE_FIELDS = ("name", "document_type", "category", "min_amount", "max_amount", "priority", "is_active")


def update_rule(db: Session, rule: ApprovalRule, changes: Dict[str, Any]) -> ApprovalRule:
    """
    Update rule metadata.

    Levels are not editable here: running workflows depend on them.
    """
    unknown = set(changes) - set(UPDATABLE_FIELDS)
    if unknown:
        raise InvalidRuleError(f"Cannot update fields: {', '.join(sorted(unknown))}")

    min_amount = changes.get("min_amount", rule.min_amount)
    max_amount = changes.get("max_amount", rule.max_amount)
    _validate_amounts(min_amount, max_amount)

    for key, value in changes.items():
        if key in ("min_amount", "max_amount"):
            value = _to_decimal(value)
        setattr(rule, key, value)

    db.flush()
    return rule


def count_open_workflows(db: Session, rule_id: UUID) -> int:
    return db.query(ApprovalWorkflow).filter(
        and_(
            ApprovalWorkflow.rule_id == rule_id,
            ApprovalWorkflow.status.in_([s.value for s in OPEN_STATES]),
        )
    ).count()


def delete_rule(db: Session, rule: ApprovalRule) -> None:
    """
    Delete a rule and its levels.

    Raises:
        InvalidRuleError: If open workflows still use the rule
    """
    open_count = count_open_workflows(db, rule.id)
    if open_count:
        raise InvalidRuleError(f"Cannot delete rule with {open_count} active workflow(s)")
    db.delete(rule)
    db.flush()
