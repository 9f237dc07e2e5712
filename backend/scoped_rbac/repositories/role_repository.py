from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import ColumnElement, Select, and_, or_, select
from sqlalchemy.orm import Session

from scoped_rbac.models import Role, RoleGrant, UserRoleAssignment


def _match(column, value: UUID | None) -> ColumnElement[bool]:
    return column.is_(None) if value is None else column == value


def get_role(db: Session, *, role_id: UUID, include_deleted: bool = False) -> Role | None:
    role = db.get(Role, role_id)
    if role is None or (role.is_deleted and not include_deleted):
        return None
    return role


def get_role_by_code(
    db: Session,
    *,
    code: str,
    workspace_id: UUID | None,
    company_id: UUID | None,
) -> Role | None:
    stmt: Select[tuple[Role]] = select(Role).where(
        Role.code == code,
        _match(Role.workspace_id, workspace_id),
        _match(Role.company_id, company_id),
    )
    return db.execute(stmt).scalars().first()


def list_roles(
    db: Session,
    *,
    workspace_id: UUID | None = None,
    company_ids: Iterable[UUID] = (),
    include_inactive: bool = False,
) -> list[Role]:
    """Roles defined at the workspace level and/or for the given companies."""
    company_ids = list(company_ids)
    scope_filters = []
    if workspace_id is not None:
        scope_filters.append(Role.workspace_id == workspace_id)
    if company_ids:
        scope_filters.append(Role.company_id.in_(company_ids))
    stmt: Select[tuple[Role]] = select(Role).where(Role.deleted_at.is_(None))
    if scope_filters:
        stmt = stmt.where(or_(*scope_filters))
    if not include_inactive:
        stmt = stmt.where(Role.is_active.is_(True))
    stmt = stmt.order_by(Role.sort_order, Role.code)
    return list(db.execute(stmt).scalars().all())


def grants_for_role(db: Session, *, role_id: UUID) -> list[RoleGrant]:
    stmt: Select[tuple[RoleGrant]] = (
        select(RoleGrant).where(RoleGrant.role_id == role_id).order_by(RoleGrant.created_at)
    )
    return list(db.execute(stmt).scalars().all())


def get_role_grant(
    db: Session,
    *,
    role_id: UUID,
    permission_id: UUID,
    workspace_id: UUID | None,
    company_id: UUID | None,
) -> RoleGrant | None:
    stmt: Select[tuple[RoleGrant]] = select(RoleGrant).where(
        RoleGrant.role_id == role_id,
        RoleGrant.permission_id == permission_id,
        _match(RoleGrant.workspace_id, workspace_id),
        _match(RoleGrant.company_id, company_id),
    )
    return db.execute(stmt).scalars().first()


def role_grants_in_scope(
    db: Session,
    *,
    role_ids: Iterable[UUID],
    workspace_id: UUID,
    company_id: UUID | None,
    permission_ids: Iterable[UUID] | None = None,
) -> list[RoleGrant]:
    """
    Candidate role grants for a resolution target.

    A workspace-scope grant applies to every company of its workspace; a
    company-scope grant only when the target company matches exactly.
    Expired grants are NOT filtered here.
    """
    role_ids = list(role_ids)
    if not role_ids:
        return []

    scope = and_(RoleGrant.company_id.is_(None), RoleGrant.workspace_id == workspace_id)
    if company_id is not None:
        scope = or_(scope, RoleGrant.company_id == company_id)

    stmt: Select[tuple[RoleGrant]] = select(RoleGrant).where(
        RoleGrant.role_id.in_(role_ids),
        scope,
    )
    if permission_ids is not None:
        stmt = stmt.where(RoleGrant.permission_id.in_(list(permission_ids)))
    return list(db.execute(stmt).scalars().all())


def holders_of_role(db: Session, *, role_id: UUID) -> list[tuple[UUID, UUID]]:
    """Distinct (user_id, workspace_id) pairs currently assigned the role."""
    stmt = (
        select(UserRoleAssignment.user_id, UserRoleAssignment.workspace_id)
        .where(UserRoleAssignment.role_id == role_id)
        .distinct()
    )
    return [(row.user_id, row.workspace_id) for row in db.execute(stmt)]


__all__ = [
    "get_role",
    "get_role_by_code",
    "get_role_grant",
    "grants_for_role",
    "holders_of_role",
    "list_roles",
    "role_grants_in_scope",
]
