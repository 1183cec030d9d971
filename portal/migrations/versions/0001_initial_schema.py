"""Initial schema: tenants, users, roles, approval rules, workflows, delegations, notifications

Revision ID: 0001
Revises: None
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all tables."""

    # --- tenants (no FK deps) ---
    op.create_table(
        "tenants",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(100), nullable=False),
        sa.Column("settings", sa.JSON(), server_default="{}"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id", name="pk_tenants"),
        sa.UniqueConstraint("slug", name="uq_tenants_slug"),
    )
    op.create_index("ix_tenants_slug", "tenants", ["slug"])

    # --- users (no FK deps) ---
    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255)),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )
    op.create_index("ix_users_email", "users", ["email"])

    # --- roles (FK -> tenants) ---
    op.create_table(
        "roles",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("permissions", sa.JSON(), nullable=False, server_default="[]"),
        sa.Column("is_system", sa.Boolean(), server_default="false"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id", name="pk_roles"),
        sa.ForeignKeyConstraint(
            ["tenant_id"], ["tenants.id"],
            name="fk_roles_tenant_id_tenants", ondelete="CASCADE",
        ),
        sa.UniqueConstraint("tenant_id", "name", name="uq_roles_tenant_name"),
    )
    op.create_index("ix_roles_tenant_id", "roles", ["tenant_id"])

    # --- tenant_memberships (FK -> tenants, users, roles) ---
    op.create_table(
        "tenant_memberships",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("role_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id", name="pk_tenant_memberships"),
        sa.ForeignKeyConstraint(
            ["tenant_id"], ["tenants.id"],
            name="fk_tenant_memberships_tenant_id_tenants", ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"],
            name="fk_tenant_memberships_user_id_users", ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["role_id"], ["roles.id"],
            name="fk_tenant_memberships_role_id_roles", ondelete="CASCADE",
        ),
        sa.UniqueConstraint(
            "tenant_id", "user_id", "role_id",
            name="uq_tenant_memberships_tenant_user_role",
        ),
    )
    op.create_index("ix_tenant_memberships_tenant_id", "tenant_memberships", ["tenant_id"])
    op.create_index("ix_tenant_memberships_user_id", "tenant_memberships", ["user_id"])
    op.create_index("ix_tenant_memberships_role_id", "tenant_memberships", ["role_id"])

    # --- approval_rules (FK -> tenants) ---
    op.create_table(
        "approval_rules",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("document_type", sa.String(50), nullable=True),
        sa.Column("category", sa.String(50), nullable=True),
        sa.Column("min_amount", sa.Numeric(14, 2), nullable=True),
        sa.Column("max_amount", sa.Numeric(14, 2), nullable=True),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id", name="pk_approval_rules"),
        sa.ForeignKeyConstraint(
            ["tenant_id"], ["tenants.id"],
            name="fk_approval_rules_tenant_id_tenants", ondelete="CASCADE",
        ),
    )
    op.create_index("ix_approval_rules_tenant_id", "approval_rules", ["tenant_id"])
    op.create_index("ix_approval_rules_document_type", "approval_rules", ["document_type"])

    # --- approval_levels (FK -> approval_rules) ---
    op.create_table(
        "approval_levels",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("rule_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("level_order", sa.Integer(), nullable=False),
        sa.Column("mode", sa.String(20), nullable=False, server_default="any"),
        sa.Column("level_type", sa.String(50), nullable=False, server_default="general"),
        sa.PrimaryKeyConstraint("id", name="pk_approval_levels"),
        sa.ForeignKeyConstraint(
            ["rule_id"], ["approval_rules.id"],
            name="fk_approval_levels_rule_id_approval_rules", ondelete="CASCADE",
        ),
        sa.UniqueConstraint("rule_id", "level_order", name="uq_approval_levels_rule_order"),
    )
    op.create_index("ix_approval_levels_rule_id", "approval_levels", ["rule_id"])

    # --- level_approvers (FK -> approval_levels, users, roles) ---
    op.create_table(
        "level_approvers",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("level_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("role_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_level_approvers"),
        sa.ForeignKeyConstraint(
            ["level_id"], ["approval_levels.id"],
            name="fk_level_approvers_level_id_approval_levels", ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"],
            name="fk_level_approvers_user_id_users", ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["role_id"], ["roles.id"],
            name="fk_level_approvers_role_id_roles", ondelete="CASCADE",
        ),
        sa.CheckConstraint(
            "(user_id IS NULL) != (role_id IS NULL)",
            name="ck_level_approvers_user_xor_role",
        ),
    )
    op.create_index("ix_level_approvers_level_id", "level_approvers", ["level_id"])

    # --- approval_workflows (FK -> tenants, approval_rules, users) ---
    op.create_table(
        "approval_workflows",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("rule_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("document_type", sa.String(50), nullable=False),
        sa.Column("document_id", sa.String(100), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=True),
        sa.Column("category", sa.String(50), nullable=True),
        sa.Column("status", sa.String(50), nullable=False, server_default="pending"),
        sa.Column("current_level_order", sa.Integer(), nullable=True),
        sa.Column("initiated_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("final_comment", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_approval_workflows"),
        sa.ForeignKeyConstraint(
            ["tenant_id"], ["tenants.id"],
            name="fk_approval_workflows_tenant_id_tenants", ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["rule_id"], ["approval_rules.id"],
            name="fk_approval_workflows_rule_id_approval_rules", ondelete="SET NULL",
        ),
        sa.ForeignKeyConstraint(
            ["initiated_by"], ["users.id"],
            name="fk_approval_workflows_initiated_by_users", ondelete="SET NULL",
        ),
    )
    op.create_index("ix_approval_workflows_tenant_id", "approval_workflows", ["tenant_id"])
    op.create_index("ix_approval_workflows_rule_id", "approval_workflows", ["rule_id"])
    op.create_index("ix_approval_workflows_status", "approval_workflows", ["status"])
    op.create_index("ix_approval_workflows_created_at", "approval_workflows", ["created_at"])
    # One open workflow per document
    op.create_index(
        "uq_approval_workflows_open_document",
        "approval_workflows",
        ["tenant_id", "document_type", "document_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'in_progress')"),
    )

    # --- approval_instances (FK -> approval_workflows, approval_levels, users) ---
    op.create_table(
        "approval_instances",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("workflow_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("level_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("level_order", sa.Integer(), nullable=False),
        sa.Column("level_name", sa.String(255), nullable=False),
        sa.Column("mode", sa.String(20), nullable=False),
        sa.Column("approver_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("delegated_from_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("decision", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("decided_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id", name="pk_approval_instances"),
        sa.ForeignKeyConstraint(
            ["workflow_id"], ["approval_workflows.id"],
            name="fk_approval_instances_workflow_id_approval_workflows", ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["level_id"], ["approval_levels.id"],
            name="fk_approval_instances_level_id_approval_levels", ondelete="SET NULL",
        ),
        sa.ForeignKeyConstraint(
            ["approver_id"], ["users.id"],
            name="fk_approval_instances_approver_id_users", ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["delegated_from_id"], ["users.id"],
            name="fk_approval_instances_delegated_from_id_users", ondelete="SET NULL",
        ),
        sa.UniqueConstraint(
            "workflow_id", "level_order", "approver_id",
            name="uq_approval_instances_workflow_level_approver",
        ),
    )
    op.create_index("ix_approval_instances_workflow_id", "approval_instances", ["workflow_id"])
    op.create_index("ix_approval_instances_approver_id", "approval_instances", ["approver_id"])
    op.create_index("ix_approval_instances_decision", "approval_instances", ["decision"])

    # --- workflow_history (FK -> approval_workflows, users) ---
    op.create_table(
        "workflow_history",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("workflow_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("from_status", sa.String(50), nullable=False),
        sa.Column("to_status", sa.String(50), nullable=False),
        sa.Column("transition", sa.String(50), nullable=False),
        sa.Column("level_order", sa.Integer(), nullable=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("extra_data", sa.JSON(), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id", name="pk_workflow_history"),
        sa.ForeignKeyConstraint(
            ["workflow_id"], ["approval_workflows.id"],
            name="fk_workflow_history_workflow_id_approval_workflows", ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"],
            name="fk_workflow_history_user_id_users", ondelete="SET NULL",
        ),
    )
    op.create_index("ix_workflow_history_workflow_id", "workflow_history", ["workflow_id"])
    op.create_index("ix_workflow_history_created_at", "workflow_history", ["created_at"])

    # --- delegations (FK -> tenants, users) ---
    op.create_table(
        "delegations",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("delegator_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("delegate_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("start_date", sa.DateTime(), nullable=False),
        sa.Column("end_date", sa.DateTime(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id", name="pk_delegations"),
        sa.ForeignKeyConstraint(
            ["tenant_id"], ["tenants.id"],
            name="fk_delegations_tenant_id_tenants", ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["delegator_id"], ["users.id"],
            name="fk_delegations_delegator_id_users", ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["delegate_id"], ["users.id"],
            name="fk_delegations_delegate_id_users", ondelete="CASCADE",
        ),
        sa.CheckConstraint("start_date <= end_date", name="ck_delegations_window"),
    )
    op.create_index("ix_delegations_tenant_id", "delegations", ["tenant_id"])
    op.create_index("ix_delegations_delegator_id", "delegations", ["delegator_id"])
    op.create_index("ix_delegations_delegate_id", "delegations", ["delegate_id"])
    op.create_index("ix_delegations_created_at", "delegations", ["created_at"])

    # --- notification_logs (FK -> tenants, users, approval_workflows, delegations) ---
    op.create_table(
        "notification_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("channel", sa.String(50), nullable=False, server_default="email"),
        sa.Column("event_type", sa.String(50), nullable=False),
        sa.Column("recipient", sa.String(255), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("workflow_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("delegation_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("subject", sa.String(512), nullable=True),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(50), nullable=False, server_default="pending"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("attempts", sa.Integer(), server_default="0"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.Column("sent_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_notification_logs"),
        sa.ForeignKeyConstraint(
            ["tenant_id"], ["tenants.id"],
            name="fk_notification_logs_tenant_id_tenants", ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"],
            name="fk_notification_logs_user_id_users", ondelete="SET NULL",
        ),
        sa.ForeignKeyConstraint(
            ["workflow_id"], ["approval_workflows.id"],
            name="fk_notification_logs_workflow_id_approval_workflows", ondelete="SET NULL",
        ),
        sa.ForeignKeyConstraint(
            ["delegation_id"], ["delegations.id"],
            name="fk_notification_logs_delegation_id_delegations", ondelete="SET NULL",
        ),
    )
    op.create_index("ix_notification_logs_tenant_id", "notification_logs", ["tenant_id"])
    op.create_index("ix_notification_logs_created_at", "notification_logs", ["created_at"])


def downgrade() -> None:
    """Drop all tables in reverse dependency order."""
    op.drop_table("notification_logs")
    op.drop_table("delegations")
    op.drop_table("workflow_history")
    op.drop_table("approval_instances")
    op.drop_index("uq_approval_workflows_open_document", table_name="approval_workflows")
    op.drop_table("approval_workflows")
    op.drop_table("level_approvers")
    op.drop_table("approval_levels")
    op.drop_table("approval_rules")
    op.drop_table("tenant_memberships")
    op.drop_table("roles")
    op.drop_table("users")
    op.drop_table("tenants")
