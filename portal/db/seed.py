"""Database seeding for the procurement portal.

Creates default roles, tenants, and approval rules loaded from YAML.
"""

import logging
import os
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from sqlalchemy.orm import Session
from sqlalchemy import and_

from portal.core.approval.rules import ApproverDefinition, LevelDefinition, create_rule
from portal.core.approval.states import ApprovalMode, LevelType
from portal.core.errors import InvalidRuleError
from portal.core.rbac.roles import DEFAULT_ROLES
from portal.db.models import ApprovalRule, Role, Tenant, User

logger = logging.getLogger(__name__)


def seed_default_roles(db: Session, tenant_id: uuid.UUID) -> dict[str, Role]:
    """
    Create the default roles for a tenant.

    Roles are idempotent - if they already exist, returns existing roles.

    Args:
        db: Database session
        tenant_id: Tenant ID to create roles for

    Returns:
        Dict mapping role key to Role object
    """
    created_roles = {}

    for role_key, role_config in DEFAULT_ROLES.items():
        existing = db.query(Role).filter(
            and_(
                Role.tenant_id == tenant_id,
                Role.name == role_config["name"],
                Role.is_system.is_(True),
            )
        ).first()

        if existing:
            created_roles[role_key] = existing
            continue

        role = Role(
            id=uuid.uuid4(),
            tenant_id=tenant_id,
            name=role_config["name"],
            description=role_config["description"],
            permissions=role_config["permissions"],
            is_system=True,
        )
        db.add(role)
        created_roles[role_key] = role

    db.flush()
    return created_roles


def seed_tenant(
    db: Session,
    name: str,
    slug: str,
    *,
    settings: Optional[dict] = None,
) -> Tenant:
    """
    Create a new tenant with default roles.

    Returns the existing tenant when the slug is taken.
    """
    existing = db.query(Tenant).filter(Tenant.slug == slug).first()
    if existing:
        return existing

    tenant = Tenant(
        id=uuid.uuid4(),
        name=name,
        slug=slug,
        settings=settings or {},
    )
    db.add(tenant)
    db.flush()

    seed_default_roles(db, tenant.id)

    return tenant


def get_role_by_name(db: Session, tenant_id: uuid.UUID, name: str) -> Optional[Role]:
    """Get a role by name within a tenant."""
    return db.query(Role).filter(
        and_(
            Role.tenant_id == tenant_id,
            Role.name == name,
        )
    ).first()


def load_rules_file(path: str) -> List[Dict[str, Any]]:
    """Load approval rule definitions from a YAML file.

    Args:
        path: Path to the rules file

    Returns:
        List of rule mappings

    Raises:
        FileNotFoundError: If the file doesn't exist
        yaml.YAMLError: If the file is invalid YAML
        TypeError: If the file has no ``rules`` list
    """
    rules_file = Path(path)
    if not rules_file.exists():
        raise FileNotFoundError(f"Approval rules file not found: {path}")

    with rules_file.open("r") as f:
        config = yaml.safe_load(f) or {}

    if not isinstance(config, dict):
        raise TypeError(f"Rules file root must be a mapping, got {type(config).__name__}")

    rules = _expand_env_vars(config.get("rules", []))
    if not isinstance(rules, list):
        raise TypeError(f"'rules' must be a list, got {type(rules).__name__}")
    return rules


def _expand_env_vars(obj: Any) -> Any:
    """Recursively expand environment variables in string values."""
    if isinstance(obj, dict):
        return {key: _expand_env_vars(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(item) for item in obj]
    elif isinstance(obj, str):
        return os.path.expandvars(obj)
    else:
        return obj


def _approver_definition(db: Session, tenant_id: uuid.UUID, entry: Dict[str, Any]) -> ApproverDefinition:
    if "role" in entry:
        role = get_role_by_name(db, tenant_id, entry["role"])
        if role is None:
            raise InvalidRuleError(f"Unknown role '{entry['role']}'")
        return ApproverDefinition(role_id=role.id)
    if "user" in entry:
        user = db.query(User).filter(User.email == entry["user"]).first()
        if user is None:
            raise InvalidRuleError(f"Unknown user '{entry['user']}'")
        return ApproverDefinition(user_id=user.id)
    raise InvalidRuleError(f"Approver entry needs 'role' or 'user': {entry}")


def seed_rules(db: Session, tenant_id: uuid.UUID, rules: List[Dict[str, Any]]) -> List[ApprovalRule]:
    """
    Create approval rules from their mappings.

    Rules whose name already exists in the tenant are left untouched.
    """
    seeded = []
    for entry in rules:
        existing = db.query(ApprovalRule).filter(
            and_(
                ApprovalRule.tenant_id == tenant_id,
                ApprovalRule.name == entry["name"],
            )
        ).first()
        if existing:
            seeded.append(existing)
            continue

        levels = [
            LevelDefinition(
                name=level["name"],
                mode=ApprovalMode(level.get("mode", "any")),
                level_type=LevelType(level.get("level_type", "general")),
                approvers=[_approver_definition(db, tenant_id, a) for a in level.get("approvers", [])],
            )
            for level in entry.get("levels", [])
        ]
        rule = create_rule(
            db,
            tenant_id,
            entry["name"],
            levels,
            document_type=entry.get("document_type"),
            category=entry.get("category"),
            min_amount=entry.get("min_amount"),
            max_amount=entry.get("max_amount"),
            priority=entry.get("priority", 0),
        )
        seeded.append(rule)

    logger.info("Seeded %d approval rule(s) for tenant %s", len(seeded), tenant_id)
    return seeded


# CLI script for seeding
if __name__ == "__main__":
    import sys
    from portal.core.config import get_settings
    from portal.db.session import SessionLocal

    settings = get_settings()
    db = SessionLocal()
    try:
        tenant = seed_tenant(db, name="Default Tenant", slug="default")
        print(f"Tenant: {tenant.name} (ID: {tenant.id})")

        roles = db.query(Role).filter(Role.tenant_id == tenant.id).all()
        print(f"\n{len(roles)} roles:")
        for role in roles:
            perm_count = len(role.permissions) if role.permissions else 0
            perm_display = "all (*:*)" if perm_count == 1 and "*:*" in role.permissions else f"{perm_count} permissions"
            print(f"  - {role.name}: {perm_display}")

        if settings.approval_rules_file:
            rules = seed_rules(db, tenant.id, load_rules_file(settings.approval_rules_file))
            print(f"\n{len(rules)} approval rules from {settings.approval_rules_file}")

        db.commit()
        print("\nSeeding complete!")

    except Exception as e:
        db.rollback()
        print(f"Error: {e}")
        sys.exit(1)
    finally:
        db.close()
