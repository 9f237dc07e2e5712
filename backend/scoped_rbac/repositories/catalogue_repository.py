from __future__ import annotations

from uuid import UUID

from sqlalchemy import Select, select
from sqlalchemy.orm import Session

from scoped_rbac.models import Module, Permission, PermissionAction, Resource


def get_module(db: Session, *, module_id: UUID, include_deleted: bool = False) -> Module | None:
    module = db.get(Module, module_id)
    if module is None or (module.is_deleted and not include_deleted):
        return None
    return module


def get_module_by_code(db: Session, *, code: str) -> Module | None:
    stmt: Select[tuple[Module]] = select(Module).where(Module.code == code)
    return db.execute(stmt).scalars().first()


def list_modules(db: Session, *, include_deleted: bool = False) -> list[Module]:
    stmt: Select[tuple[Module]] = select(Module).order_by(Module.sort_order, Module.code)
    if not include_deleted:
        stmt = stmt.where(Module.deleted_at.is_(None))
    return list(db.execute(stmt).scalars().all())


def get_resource(
    db: Session, *, resource_id: UUID, include_deleted: bool = False
) -> Resource | None:
    resource = db.get(Resource, resource_id)
    if resource is None or (resource.is_deleted and not include_deleted):
        return None
    return resource


def get_resource_by_code(db: Session, *, module_id: UUID, code: str) -> Resource | None:
    stmt: Select[tuple[Resource]] = select(Resource).where(
        Resource.module_id == module_id,
        Resource.code == code,
    )
    return db.execute(stmt).scalars().first()


def find_resources_by_code(
    db: Session,
    *,
    code: str,
    module_code: str | None = None,
) -> list[Resource]:
    """Non-deleted resources with the given code, across non-deleted modules."""
    stmt: Select[tuple[Resource]] = (
        select(Resource)
        .join(Module, Module.id == Resource.module_id)
        .where(
            Resource.code == code,
            Resource.deleted_at.is_(None),
            Module.deleted_at.is_(None),
        )
    )
    if module_code is not None:
        stmt = stmt.where(Module.code == module_code)
    return list(db.execute(stmt).scalars().all())


def list_resources(
    db: Session,
    *,
    module_id: UUID | None = None,
    include_deleted: bool = False,
) -> list[Resource]:
    stmt: Select[tuple[Resource]] = select(Resource).order_by(Resource.sort_order, Resource.code)
    if module_id is not None:
        stmt = stmt.where(Resource.module_id == module_id)
    if not include_deleted:
        stmt = stmt.where(Resource.deleted_at.is_(None))
    return list(db.execute(stmt).scalars().all())


def resource_parent_map(db: Session) -> dict[UUID, UUID | None]:
    """Arena view of the resource tree: id -> parent id."""
    stmt = select(Resource.id, Resource.parent_resource_id)
    return {row.id: row.parent_resource_id for row in db.execute(stmt)}


def get_permission(db: Session, *, permission_id: UUID) -> Permission | None:
    return db.get(Permission, permission_id)


def get_permission_for(
    db: Session,
    *,
    resource_id: UUID,
    action: PermissionAction,
) -> Permission | None:
    stmt: Select[tuple[Permission]] = select(Permission).where(
        Permission.resource_id == resource_id,
        Permission.action == action,
    )
    return db.execute(stmt).scalars().first()


def get_permission_by_name(db: Session, *, name: str) -> Permission | None:
    stmt: Select[tuple[Permission]] = select(Permission).where(Permission.name == name)
    return db.execute(stmt).scalars().first()


def list_permissions_by_ids(db: Session, *, permission_ids: set[UUID]) -> list[Permission]:
    if not permission_ids:
        return []
    stmt: Select[tuple[Permission]] = select(Permission).where(Permission.id.in_(permission_ids))
    return list(db.execute(stmt).scalars().all())


def list_permission_catalogue(
    db: Session,
    *,
    active_only: bool = True,
) -> list[tuple[Permission, Resource, Module]]:
    """Every permission joined with its resource and module, ordered for display."""
    stmt = (
        select(Permission, Resource, Module)
        .join(Resource, Resource.id == Permission.resource_id)
        .join(Module, Module.id == Resource.module_id)
        .where(Resource.deleted_at.is_(None), Module.deleted_at.is_(None))
        .order_by(Module.sort_order, Module.code, Resource.sort_order, Resource.code, Permission.action)
    )
    if active_only:
        stmt = stmt.where(Permission.is_active.is_(True))
    return [(row[0], row[1], row[2]) for row in db.execute(stmt).all()]


__all__ = [
    "find_resources_by_code",
    "get_module",
    "get_module_by_code",
    "get_permission",
    "get_permission_by_name",
    "get_permission_for",
    "get_resource",
    "get_resource_by_code",
    "list_modules",
    "list_permission_catalogue",
    "list_permissions_by_ids",
    "list_resources",
    "resource_parent_map",
]
