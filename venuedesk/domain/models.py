from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# JSONB on Postgres, plain JSON elsewhere (SQLite in tests).
JsonType = JSON().with_variant(JSONB(), "postgresql")
# SQLite only autoincrements INTEGER primary keys.
AutoId = BigInteger().with_variant(Integer(), "sqlite")


class Base(DeclarativeBase):
    pass


class Account(Base):
    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        Index("ix_users_account_role", "account_id", "role"),
        Index("ix_users_email", "email"),
    )

    # The id mirrors the auth provider subject so verified tokens map to one row.
    id: Mapped[str] = mapped_column(String, primary_key=True)
    # Operators are account-agnostic; every other live identity carries an account.
    account_id: Mapped[str | None] = mapped_column(String, ForeignKey("accounts.id"), nullable=True)
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    role: Mapped[str] = mapped_column(String)
    first_name: Mapped[str | None] = mapped_column(String, nullable=True)
    last_name: Mapped[str | None] = mapped_column(String, nullable=True)
    phone: Mapped[str | None] = mapped_column(String, nullable=True)
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    # Back-references only; deleting a parent never cascades to reports.
    reports_to: Mapped[str | None] = mapped_column(String, nullable=True)
    invited_by: Mapped[str | None] = mapped_column(String, nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deleted_by: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Venue(Base):
    __tablename__ = "venues"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    account_id: Mapped[str] = mapped_column(String, ForeignKey("accounts.id"), index=True)
    name: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class VenueStaff(Base):
    __tablename__ = "venue_staff"
    __table_args__ = (
        UniqueConstraint("user_id", "venue_id", name="uq_venue_staff_user_venue"),
    )

    # Direct venue assignment; the only grant of venue reach for scoped members.
    id: Mapped[int] = mapped_column(AutoId, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), index=True)
    venue_id: Mapped[str] = mapped_column(String, ForeignKey("venues.id"), index=True)
    role: Mapped[str] = mapped_column(String, default="manager")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Permission(Base):
    __tablename__ = "permissions"

    code: Mapped[str] = mapped_column(String, primary_key=True)
    category: Mapped[str] = mapped_column(String, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Reserved for operators; never grantable by anyone else.
    operator_only: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


class RoleTemplate(Base):
    __tablename__ = "role_templates"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    code: Mapped[str] = mapped_column(String, unique=True, index=True)
    name: Mapped[str] = mapped_column(String)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)


class RoleTemplatePermission(Base):
    __tablename__ = "role_template_permissions"

    template_id: Mapped[str] = mapped_column(String, ForeignKey("role_templates.id"), primary_key=True)
    permission_code: Mapped[str] = mapped_column(String, ForeignKey("permissions.code"), primary_key=True)


class PermissionAssignment(Base):
    __tablename__ = "permission_assignments"
    __table_args__ = (
        UniqueConstraint("user_id", "venue_id", name="uq_permission_assignments_user_venue"),
        # NULL venue ids are distinct under the unique constraint; one account-wide row per user.
        Index(
            "uq_permission_assignments_user_account_wide",
            "user_id",
            unique=True,
            postgresql_where=text("venue_id IS NULL"),
            sqlite_where=text("venue_id IS NULL"),
        ),
        Index("ix_permission_assignments_user", "user_id"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"))
    account_id: Mapped[str] = mapped_column(String, index=True)
    # Null means account-wide; venue rows take precedence for that venue.
    venue_id: Mapped[str | None] = mapped_column(String, ForeignKey("venues.id"), nullable=True)
    role_template_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("role_templates.id"), nullable=True
    )
    # Must stay empty whenever role_template_id is set (enforced by the write path).
    custom_permissions: Mapped[list[str]] = mapped_column(JsonType, default=list, nullable=False)
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class ManagerInvitation(Base):
    __tablename__ = "manager_invitations"
    __table_args__ = (
        Index("ix_manager_invitations_email_status", "email", "status"),
        Index("ix_manager_invitations_account_status", "account_id", "status"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    email: Mapped[str] = mapped_column(String)
    account_id: Mapped[str] = mapped_column(String, ForeignKey("accounts.id"))
    invited_by: Mapped[str] = mapped_column(String)
    venue_ids: Mapped[list[str]] = mapped_column(JsonType, default=list, nullable=False)
    token: Mapped[str] = mapped_column(String, unique=True, index=True)
    # Readers filter on expiry; rows are never purged or flipped to expired.
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    status: Mapped[str] = mapped_column(String, default="pending")
    first_name: Mapped[str | None] = mapped_column(String, nullable=True)
    last_name: Mapped[str | None] = mapped_column(String, nullable=True)
    phone: Mapped[str | None] = mapped_column(String, nullable=True)
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    permission_template_id: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class PermissionAuditLog(Base):
    __tablename__ = "permission_audit_log"
    __table_args__ = (
        Index("ix_permission_audit_log_target", "target_user_id", "created_at"),
        Index("ix_permission_audit_log_account", "account_id", "created_at"),
    )

    # Append-only; rows outlive soft-deleted subjects.
    id: Mapped[int] = mapped_column(AutoId, primary_key=True, autoincrement=True)
    target_user_id: Mapped[str] = mapped_column(String)
    changed_by_user_id: Mapped[str] = mapped_column(String)
    action: Mapped[str] = mapped_column(String)
    previous_role_template_id: Mapped[str | None] = mapped_column(String, nullable=True)
    previous_custom_permissions: Mapped[list[str]] = mapped_column(JsonType, default=list, nullable=False)
    new_role_template_id: Mapped[str | None] = mapped_column(String, nullable=True)
    new_custom_permissions: Mapped[list[str]] = mapped_column(JsonType, default=list, nullable=False)
    account_id: Mapped[str | None] = mapped_column(String, nullable=True)
    venue_id: Mapped[str | None] = mapped_column(String, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String, nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_json: Mapped[dict[str, Any] | None] = mapped_column(JsonType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
