"""create accounts, identities, permissions, invitations and audit tables

Revision ID: 0001_init
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def _json() -> sa.types.TypeEngine:
    return sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _auto_id() -> sa.types.TypeEngine:
    return sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def upgrade() -> None:
    op.create_table(
        "accounts",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )

    # Identities mirror auth provider subjects; soft-deleted via deleted_at.
    op.create_table(
        "users",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("account_id", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("role", sa.String(), nullable=False),
        sa.Column("first_name", sa.String(), nullable=True),
        sa.Column("last_name", sa.String(), nullable=True),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("date_of_birth", sa.Date(), nullable=True),
        sa.Column("reports_to", sa.String(), nullable=True),
        sa.Column("invited_by", sa.String(), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_account_role", "users", ["account_id", "role"], unique=False)
    op.create_index("ix_users_email", "users", ["email"], unique=False)

    op.create_table(
        "venues",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("account_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_venues_account_id", "venues", ["account_id"], unique=False)

    op.create_table(
        "venue_staff",
        sa.Column("id", _auto_id(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("venue_id", sa.String(), nullable=False),
        sa.Column("role", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["venue_id"], ["venues.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "venue_id", name="uq_venue_staff_user_venue"),
    )
    op.create_index("ix_venue_staff_user_id", "venue_staff", ["user_id"], unique=False)
    op.create_index("ix_venue_staff_venue_id", "venue_staff", ["venue_id"], unique=False)

    # Permission catalog and reusable templates.
    op.create_table(
        "permissions",
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("category", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("operator_only", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.PrimaryKeyConstraint("code"),
    )
    op.create_index("ix_permissions_category", "permissions", ["category"], unique=False)

    op.create_table(
        "role_templates",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_role_templates_code", "role_templates", ["code"], unique=True)

    op.create_table(
        "role_template_permissions",
        sa.Column("template_id", sa.String(), nullable=False),
        sa.Column("permission_code", sa.String(), nullable=False),
        sa.ForeignKeyConstraint(["template_id"], ["role_templates.id"]),
        sa.ForeignKeyConstraint(["permission_code"], ["permissions.code"]),
        sa.PrimaryKeyConstraint("template_id", "permission_code"),
    )

    op.create_table(
        "permission_assignments",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("account_id", sa.String(), nullable=False),
        sa.Column("venue_id", sa.String(), nullable=True),
        sa.Column("role_template_id", sa.String(), nullable=True),
        sa.Column("custom_permissions", _json(), nullable=False),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["venue_id"], ["venues.id"]),
        sa.ForeignKeyConstraint(["role_template_id"], ["role_templates.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "venue_id", name="uq_permission_assignments_user_venue"),
    )
    op.create_index("ix_permission_assignments_user", "permission_assignments", ["user_id"], unique=False)
    op.create_index(
        "uq_permission_assignments_user_account_wide",
        "permission_assignments",
        ["user_id"],
        unique=True,
        postgresql_where=sa.text("venue_id IS NULL"),
        sqlite_where=sa.text("venue_id IS NULL"),
    )
    op.create_index(
        "ix_permission_assignments_account_id", "permission_assignments", ["account_id"], unique=False
    )

    op.create_table(
        "manager_invitations",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("account_id", sa.String(), nullable=False),
        sa.Column("invited_by", sa.String(), nullable=False),
        sa.Column("venue_ids", _json(), nullable=False),
        sa.Column("token", sa.String(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("first_name", sa.String(), nullable=True),
        sa.Column("last_name", sa.String(), nullable=True),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("date_of_birth", sa.Date(), nullable=True),
        sa.Column("permission_template_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_manager_invitations_token", "manager_invitations", ["token"], unique=True)
    op.create_index(
        "ix_manager_invitations_email_status", "manager_invitations", ["email", "status"], unique=False
    )
    op.create_index(
        "ix_manager_invitations_account_status",
        "manager_invitations",
        ["account_id", "status"],
        unique=False,
    )

    # Append-only audit trail; rows outlive soft-deleted subjects.
    op.create_table(
        "permission_audit_log",
        sa.Column("id", _auto_id(), autoincrement=True, nullable=False),
        sa.Column("target_user_id", sa.String(), nullable=False),
        sa.Column("changed_by_user_id", sa.String(), nullable=False),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("previous_role_template_id", sa.String(), nullable=True),
        sa.Column("previous_custom_permissions", _json(), nullable=False),
        sa.Column("new_role_template_id", sa.String(), nullable=True),
        sa.Column("new_custom_permissions", _json(), nullable=False),
        sa.Column("account_id", sa.String(), nullable=True),
        sa.Column("venue_id", sa.String(), nullable=True),
        sa.Column("ip_address", sa.String(), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("metadata_json", _json(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_permission_audit_log_target", "permission_audit_log", ["target_user_id", "created_at"], unique=False
    )
    op.create_index(
        "ix_permission_audit_log_account", "permission_audit_log", ["account_id", "created_at"], unique=False
    )


def downgrade() -> None:
    op.drop_index("ix_permission_audit_log_account", table_name="permission_audit_log")
    op.drop_index("ix_permission_audit_log_target", table_name="permission_audit_log")
    op.drop_table("permission_audit_log")
    op.drop_index("ix_manager_invitations_account_status", table_name="manager_invitations")
    op.drop_index("ix_manager_invitations_email_status", table_name="manager_invitations")
    op.drop_index("ix_manager_invitations_token", table_name="manager_invitations")
    op.drop_table("manager_invitations")
    op.drop_index("ix_permission_assignments_account_id", table_name="permission_assignments")
    op.drop_index("ix_permission_assignments_user", table_name="permission_assignments")
    op.drop_index("uq_permission_assignments_user_account_wide", table_name="permission_assignments")
    op.drop_table("permission_assignments")
    op.drop_table("role_template_permissions")
    op.drop_index("ix_role_templates_code", table_name="role_templates")
    op.drop_table("role_templates")
    op.drop_index("ix_permissions_category", table_name="permissions")
    op.drop_table("permissions")
    op.drop_index("ix_venue_staff_venue_id", table_name="venue_staff")
    op.drop_index("ix_venue_staff_user_id", table_name="venue_staff")
    op.drop_table("venue_staff")
    op.drop_index("ix_venues_account_id", table_name="venues")
    op.drop_table("venues")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_index("ix_users_account_role", table_name="users")
    op.drop_table("users")
    op.drop_table("accounts")
