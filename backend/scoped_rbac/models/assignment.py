from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, Column, ForeignKey, Index, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, relationship

from scoped_rbac.db.types import JSONBCompat, UTCDateTime

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class UserRoleAssignment(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """User x Role inside a workspace, optionally narrowed to one company."""

    __tablename__ = "rbac_user_role_assignments"
    __table_args__ = (
        Index(
            "uq_rbac_user_roles_workspace_scope",
            "user_id",
            "role_id",
            "workspace_id",
            unique=True,
            postgresql_where=text("company_id IS NULL"),
            sqlite_where=text("company_id IS NULL"),
        ),
        Index(
            "uq_rbac_user_roles_company_scope",
            "user_id",
            "role_id",
            "workspace_id",
            "company_id",
            unique=True,
            postgresql_where=text("company_id IS NOT NULL"),
            sqlite_where=text("company_id IS NOT NULL"),
        ),
    )

    user_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    role_id = Column(
        UUID(as_uuid=True),
        ForeignKey("rbac_roles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    workspace_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    company_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    assigned_by = Column(UUID(as_uuid=True), nullable=True)
    assigned_at: Mapped[datetime | None] = Column(
        UTCDateTime(), nullable=True, server_default=text("CURRENT_TIMESTAMP")
    )

    role = relationship("Role")


class UserPermissionGrant(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Direct-override layer: a permission granted (or denied) straight to a user."""

    __tablename__ = "rbac_user_permission_grants"
    __table_args__ = (
        Index(
            "uq_rbac_user_grants_workspace_scope",
            "user_id",
            "permission_id",
            "workspace_id",
            unique=True,
            postgresql_where=text("company_id IS NULL"),
            sqlite_where=text("company_id IS NULL"),
        ),
        Index(
            "uq_rbac_user_grants_company_scope",
            "user_id",
            "permission_id",
            "workspace_id",
            "company_id",
            unique=True,
            postgresql_where=text("company_id IS NOT NULL"),
            sqlite_where=text("company_id IS NOT NULL"),
        ),
    )

    user_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    permission_id = Column(
        UUID(as_uuid=True),
        ForeignKey("rbac_permissions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    workspace_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    company_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    is_granted: Mapped[bool] = Column(Boolean, nullable=False, default=True)
    granted_by = Column(UUID(as_uuid=True), nullable=True)
    granted_at: Mapped[datetime | None] = Column(
        UTCDateTime(), nullable=True, server_default=text("CURRENT_TIMESTAMP")
    )
    expires_at: Mapped[datetime | None] = Column(UTCDateTime(), nullable=True, index=True)
    conditions: Mapped[dict[str, Any] | None] = Column(JSONBCompat(), nullable=True)

    permission = relationship("Permission")


__all__ = ["UserPermissionGrant", "UserRoleAssignment"]
