from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import Select, or_, select
from sqlalchemy.orm import Session

from scoped_rbac.models import Role, UserPermissionGrant, UserRoleAssignment


def _company_filter(column, company_id: UUID | None):
    # company 为空的记录在整个 workspace 内生效；指定 company 的记录只在目标 company 命中时生效
    if company_id is None:
        return column.is_(None)
    return or_(column.is_(None), column == company_id)


def active_role_assignments(
    db: Session,
    *,
    user_id: UUID,
    workspace_id: UUID,
    company_id: UUID | None,
) -> list[tuple[UserRoleAssignment, Role]]:
    """Assignments whose role is active and not soft-deleted, for the target scope."""
    stmt = (
        select(UserRoleAssignment, Role)
        .join(Role, Role.id == UserRoleAssignment.role_id)
        .where(
            UserRoleAssignment.user_id == user_id,
            UserRoleAssignment.workspace_id == workspace_id,
            _company_filter(UserRoleAssignment.company_id, company_id),
            Role.is_active.is_(True),
            Role.deleted_at.is_(None),
        )
        .order_by(Role.sort_order, Role.code)
    )
    return [(row[0], row[1]) for row in db.execute(stmt).all()]


def get_assignment(
    db: Session,
    *,
    user_id: UUID,
    role_id: UUID,
    workspace_id: UUID,
    company_id: UUID | None,
) -> UserRoleAssignment | None:
    company_clause = (
        UserRoleAssignment.company_id.is_(None)
        if company_id is None
        else UserRoleAssignment.company_id == company_id
    )
    stmt: Select[tuple[UserRoleAssignment]] = select(UserRoleAssignment).where(
        UserRoleAssignment.user_id == user_id,
        UserRoleAssignment.role_id == role_id,
        UserRoleAssignment.workspace_id == workspace_id,
        company_clause,
    )
    return db.execute(stmt).scalars().first()


def list_user_assignments(
    db: Session,
    *,
    user_id: UUID,
    workspace_id: UUID | None = None,
) -> list[UserRoleAssignment]:
    stmt: Select[tuple[UserRoleAssignment]] = select(UserRoleAssignment).where(
        UserRoleAssignment.user_id == user_id
    )
    if workspace_id is not None:
        stmt = stmt.where(UserRoleAssignment.workspace_id == workspace_id)
    stmt = stmt.order_by(UserRoleAssignment.created_at)
    return list(db.execute(stmt).scalars().all())


def direct_grants(
    db: Session,
    *,
    user_id: UUID,
    workspace_id: UUID,
    company_id: UUID | None,
    permission_ids: Iterable[UUID] | None = None,
) -> list[UserPermissionGrant]:
    """Direct grants applying to the target scope. Expired rows are NOT filtered here."""
    stmt: Select[tuple[UserPermissionGrant]] = select(UserPermissionGrant).where(
        UserPermissionGrant.user_id == user_id,
        UserPermissionGrant.workspace_id == workspace_id,
        _company_filter(UserPermissionGrant.company_id, company_id),
    )
    if permission_ids is not None:
        stmt = stmt.where(UserPermissionGrant.permission_id.in_(list(permission_ids)))
    return list(db.execute(stmt).scalars().all())


def get_direct_grant(
    db: Session,
    *,
    user_id: UUID,
    permission_id: UUID,
    workspace_id: UUID,
    company_id: UUID | None,
) -> UserPermissionGrant | None:
    company_clause = (
        UserPermissionGrant.company_id.is_(None)
        if company_id is None
        else UserPermissionGrant.company_id == company_id
    )
    stmt: Select[tuple[UserPermissionGrant]] = select(UserPermissionGrant).where(
        UserPermissionGrant.user_id == user_id,
        UserPermissionGrant.permission_id == permission_id,
        UserPermissionGrant.workspace_id == workspace_id,
        company_clause,
    )
    return db.execute(stmt).scalars().first()


def list_user_direct_grants(
    db: Session,
    *,
    user_id: UUID,
    workspace_id: UUID | None = None,
) -> list[UserPermissionGrant]:
    stmt: Select[tuple[UserPermissionGrant]] = select(UserPermissionGrant).where(
        UserPermissionGrant.user_id == user_id
    )
    if workspace_id is not None:
        stmt = stmt.where(UserPermissionGrant.workspace_id == workspace_id)
    return list(db.execute(stmt).scalars().all())


__all__ = [
    "active_role_assignments",
    "direct_grants",
    "get_assignment",
    "get_direct_grant",
    "list_user_assignments",
    "list_user_direct_grants",
]
