from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, relationship

from scoped_rbac.db.types import JSONBCompat, UTCDateTime
from scoped_rbac.exceptions import ensure_exclusive_scope

from .base import Base, SoftDeleteMixin, TimestampMixin, UUIDPrimaryKeyMixin

_EXCLUSIVE_SCOPE_SQL = "(workspace_id IS NULL) != (company_id IS NULL)"


class Role(UUIDPrimaryKeyMixin, TimestampMixin, SoftDeleteMixin, Base):
    """A named bundle of grants, scoped to exactly one workspace or one company."""

    __tablename__ = "rbac_roles"
    __table_args__ = (
        CheckConstraint(_EXCLUSIVE_SCOPE_SQL, name="ck_rbac_roles_scope_exclusive"),
        UniqueConstraint("workspace_id", "code", name="uq_rbac_roles_workspace_code"),
        UniqueConstraint("company_id", "code", name="uq_rbac_roles_company_code"),
    )

    code: Mapped[str] = Column(String(50), nullable=False, index=True)
    name: Mapped[str] = Column(String(100), nullable=False)
    display_name: Mapped[str] = Column(String(100), nullable=False)
    description: Mapped[str | None] = Column(Text, nullable=True)
    workspace_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    company_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    is_system: Mapped[bool] = Column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = Column(Boolean, nullable=False, default=True)
    sort_order: Mapped[int] = Column(Integer, nullable=False, default=0)

    grants: Mapped[list[RoleGrant]] = relationship(
        "RoleGrant",
        back_populates="role",
        cascade="all, delete-orphan",
    )

    @property
    def is_workspace_scoped(self) -> bool:
        return self.workspace_id is not None


class RoleGrant(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """
    Role x Permission under its own workspace-or-company scope.

    The grant scope is independent of the role scope: a workspace role may
    hold grants narrowed to a single company.
    """

    __tablename__ = "rbac_role_grants"
    __table_args__ = (
        CheckConstraint(_EXCLUSIVE_SCOPE_SQL, name="ck_rbac_role_grants_scope_exclusive"),
        Index(
            "uq_rbac_role_grants_workspace_scope",
            "role_id",
            "permission_id",
            "workspace_id",
            unique=True,
            postgresql_where=text("company_id IS NULL"),
            sqlite_where=text("company_id IS NULL"),
        ),
        Index(
            "uq_rbac_role_grants_company_scope",
            "role_id",
            "permission_id",
            "company_id",
            unique=True,
            postgresql_where=text("workspace_id IS NULL"),
            sqlite_where=text("workspace_id IS NULL"),
        ),
    )

    role_id = Column(
        UUID(as_uuid=True),
        ForeignKey("rbac_roles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    permission_id = Column(
        UUID(as_uuid=True),
        ForeignKey("rbac_permissions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    workspace_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    company_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    # False 表示显式拒绝
    is_granted: Mapped[bool] = Column(Boolean, nullable=False, default=True)
    granted_by = Column(UUID(as_uuid=True), nullable=True)
    granted_at: Mapped[datetime | None] = Column(
        UTCDateTime(), nullable=True, server_default=text("CURRENT_TIMESTAMP")
    )
    expires_at: Mapped[datetime | None] = Column(UTCDateTime(), nullable=True, index=True)
    conditions: Mapped[dict[str, Any] | None] = Column(JSONBCompat(), nullable=True)

    role: Mapped[Role] = relationship("Role", back_populates="grants")
    permission = relationship("Permission")


@event.listens_for(Role, "before_insert")
@event.listens_for(Role, "before_update")
def _validate_role_scope(mapper, connection, target: Role) -> None:
    ensure_exclusive_scope(target.workspace_id, target.company_id, entity="Role")


@event.listens_for(RoleGrant, "before_insert")
@event.listens_for(RoleGrant, "before_update")
def _validate_role_grant_scope(mapper, connection, target: RoleGrant) -> None:
    ensure_exclusive_scope(target.workspace_id, target.company_id, entity="RoleGrant")


__all__ = ["Role", "RoleGrant"]
