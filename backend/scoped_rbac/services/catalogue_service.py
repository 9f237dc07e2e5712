from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from scoped_rbac.exceptions import (
    CatalogueCycle,
    DuplicateEntry,
    InvariantViolation,
    UnknownModule,
    UnknownPermission,
    UnknownResource,
)
from scoped_rbac.logging_config import logger
from scoped_rbac.models import (
    Module,
    ModuleCategory,
    Permission,
    PermissionAction,
    Resource,
    ResourceType,
)
from scoped_rbac.repositories.catalogue_repository import (
    find_resources_by_code,
    get_module,
    get_module_by_code,
    get_permission,
    get_permission_by_name,
    get_permission_for,
    get_resource,
    get_resource_by_code,
    list_permission_catalogue,
    resource_parent_map,
)
from scoped_rbac.schemas.rbac import GrantConditions
from scoped_rbac.services.resolution_cache import ResolutionCache


def normalize_conditions(conditions: Any) -> dict[str, Any] | None:
    """Validate a row-level qualifier and drop unset keys; empty means unrestricted."""
    if conditions is None:
        return None
    try:
        if isinstance(conditions, GrantConditions):
            parsed = conditions
        else:
            parsed = GrantConditions.model_validate(conditions)
    except ValidationError as exc:
        raise InvariantViolation(
            "Invalid grant conditions",
            errors=exc.errors(include_url=False, include_context=False),
        ) from exc
    data = parsed.model_dump(mode="json", exclude_none=True)
    return data or None


def parse_action(action: str | PermissionAction) -> PermissionAction | None:
    """Map a raw action string onto the closed vocabulary; None when it is not part of it."""
    if isinstance(action, PermissionAction):
        return action
    try:
        return PermissionAction(str(action).strip().lower())
    except ValueError:
        return None


def would_create_cycle(
    parents: dict[UUID, UUID | None],
    resource_id: UUID,
    new_parent_id: UUID | None,
) -> bool:
    """True when hanging `resource_id` under `new_parent_id` closes a loop."""
    current = new_parent_id
    seen: set[UUID] = set()
    while current is not None:
        if current == resource_id or current in seen:
            return True
        seen.add(current)
        current = parents.get(current)
    return False


class CatalogueService:
    """
    Catalogue administration: modules, the resource tree and permissions.

    The resolution engine only reads the catalogue; every write here bumps the
    resolution cache generation because it can change what is reachable for
    every user.
    """

    def __init__(self, session: Session, *, cache: ResolutionCache | None = None):
        self.session = session
        self.cache = cache

    def _commit(self, *, entity: str, **details: Any) -> None:
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise DuplicateEntry(f"{entity} already exists", entity=entity, **details) from exc
        if self.cache is not None:
            self.cache.invalidate_all()

    # ---- 查询能力 ----

    def get_module(self, module_id: UUID) -> Module:
        module = get_module(self.session, module_id=module_id)
        if module is None:
            raise UnknownModule(f"Module '{module_id}' does not exist", module_id=module_id)
        return module

    def get_resource(self, resource_id: UUID) -> Resource:
        resource = get_resource(self.session, resource_id=resource_id)
        if resource is None:
            raise UnknownResource(f"Resource '{resource_id}' does not exist", resource_id=resource_id)
        return resource

    def get_permission(self, permission_id: UUID) -> Permission:
        permission = get_permission(self.session, permission_id=permission_id)
        if permission is None:
            raise UnknownPermission(
                f"Permission '{permission_id}' does not exist", permission_id=permission_id
            )
        return permission

    def lookup_permission(
        self,
        resource_code: str,
        action: str | PermissionAction,
        *,
        module_code: str | None = None,
    ) -> tuple[Permission, Resource]:
        """
        Find the active permission for (resource_code, action).

        Resource codes are unique per module only, so a bare code that matches
        several modules is ambiguous and rejected like an unknown one.
        """
        parsed = parse_action(action)
        if parsed is None:
            raise UnknownPermission(
                f"Action '{action}' is not part of the action vocabulary",
                resource_code=resource_code,
                action=str(action),
            )

        candidates = find_resources_by_code(self.session, code=resource_code, module_code=module_code)
        if not candidates:
            raise UnknownPermission(
                f"Resource '{resource_code}' does not exist",
                resource_code=resource_code,
                action=parsed.value,
                module_code=module_code,
            )
        if len(candidates) > 1:
            raise UnknownPermission(
                f"Resource code '{resource_code}' is ambiguous, pass module_code",
                resource_code=resource_code,
                action=parsed.value,
            )

        resource = candidates[0]
        permission = get_permission_for(self.session, resource_id=resource.id, action=parsed)
        if permission is None or not permission.is_active:
            raise UnknownPermission(
                f"Permission '{resource_code}.{parsed.value}' does not exist",
                resource_code=resource_code,
                action=parsed.value,
                module_code=module_code,
            )
        return permission, resource

    def list_catalogue(self, *, active_only: bool = True) -> list[tuple[Permission, Resource, Module]]:
        return list_permission_catalogue(self.session, active_only=active_only)

    # ---- 模块 ----

    def create_module(
        self,
        *,
        code: str,
        name: str,
        category: ModuleCategory,
        display_name: str | None = None,
        description: str | None = None,
        sort_order: int = 0,
    ) -> Module:
        if get_module_by_code(self.session, code=code) is not None:
            raise DuplicateEntry(f"Module '{code}' already exists", entity="Module", code=code)
        module = Module(
            code=code,
            name=name,
            display_name=display_name or name,
            description=description,
            category=category,
            sort_order=sort_order,
            is_active=True,
        )
        self.session.add(module)
        self._commit(entity="Module", code=code)
        self.session.refresh(module)
        logger.info("rbac catalogue: created module %s (%s)", module.code, module.id)
        return module

    def set_module_active(self, module_id: UUID, is_active: bool) -> Module:
        module = self.get_module(module_id)
        module.is_active = is_active
        self._commit(entity="Module", module_id=module_id)
        return module

    def soft_delete_module(self, module_id: UUID) -> Module:
        module = self.get_module(module_id)
        module.deleted_at = datetime.now(UTC)
        module.is_active = False
        self._commit(entity="Module", module_id=module_id)
        logger.info("rbac catalogue: soft-deleted module %s", module.code)
        return module

    # ---- 资源树 ----

    def create_resource(
        self,
        *,
        module_id: UUID,
        code: str,
        name: str,
        resource_type: ResourceType,
        display_name: str | None = None,
        description: str | None = None,
        path: str | None = None,
        parent_resource_id: UUID | None = None,
        sort_order: int = 0,
    ) -> Resource:
        module = self.get_module(module_id)
        if get_resource_by_code(self.session, module_id=module.id, code=code) is not None:
            raise DuplicateEntry(
                f"Resource '{code}' already exists in module '{module.code}'",
                entity="Resource",
                code=code,
                module_id=module.id,
            )
        if parent_resource_id is not None:
            parent = self.get_resource(parent_resource_id)
            if parent.module_id != module.id:
                raise InvariantViolation(
                    "Parent resource must belong to the same module",
                    parent_resource_id=parent_resource_id,
                    module_id=module.id,
                )

        resource = Resource(
            module_id=module.id,
            code=code,
            name=name,
            display_name=display_name or name,
            description=description,
            resource_type=resource_type,
            path=path,
            parent_resource_id=parent_resource_id,
            sort_order=sort_order,
            is_active=True,
        )
        self.session.add(resource)
        self._commit(entity="Resource", code=code)
        self.session.refresh(resource)
        return resource

    def move_resource(self, resource_id: UUID, new_parent_id: UUID | None) -> Resource:
        """Re-parent a resource; the tree must stay acyclic and inside one module."""
        resource = self.get_resource(resource_id)
        if new_parent_id is not None:
            parent = self.get_resource(new_parent_id)
            if parent.module_id != resource.module_id:
                raise InvariantViolation(
                    "Parent resource must belong to the same module",
                    parent_resource_id=new_parent_id,
                    module_id=resource.module_id,
                )
            if would_create_cycle(resource_parent_map(self.session), resource.id, new_parent_id):
                raise CatalogueCycle(
                    f"Moving resource '{resource.code}' under '{parent.code}' would create a cycle",
                    resource_id=resource.id,
                    parent_resource_id=new_parent_id,
                )

        resource.parent_resource_id = new_parent_id
        self._commit(entity="Resource", resource_id=resource_id)
        return resource

    def set_resource_active(self, resource_id: UUID, is_active: bool) -> Resource:
        resource = self.get_resource(resource_id)
        resource.is_active = is_active
        self._commit(entity="Resource", resource_id=resource_id)
        return resource

    def soft_delete_resource(self, resource_id: UUID) -> Resource:
        resource = self.get_resource(resource_id)
        resource.deleted_at = datetime.now(UTC)
        resource.is_active = False
        self._commit(entity="Resource", resource_id=resource_id)
        logger.info("rbac catalogue: soft-deleted resource %s", resource.code)
        return resource

    # ---- 权限 ----

    def create_permission(
        self,
        *,
        resource_id: UUID,
        action: PermissionAction,
        name: str | None = None,
        display_name: str | None = None,
        description: str | None = None,
        conditions: Any = None,
    ) -> Permission:
        resource = self.get_resource(resource_id)
        normalized = normalize_conditions(conditions)
        if get_permission_for(self.session, resource_id=resource.id, action=action) is not None:
            raise DuplicateEntry(
                f"Permission '{resource.code}.{action.value}' already exists",
                entity="Permission",
                resource_id=resource.id,
                action=action.value,
            )
        permission_name = name or f"{resource.code}.{action.value}"
        if get_permission_by_name(self.session, name=permission_name) is not None:
            # 同名资源出现在多个模块时需要显式指定 name
            raise DuplicateEntry(
                f"Permission name '{permission_name}' is taken; pass an explicit name",
                entity="Permission",
                name=permission_name,
            )
        permission = Permission(
            resource_id=resource.id,
            action=action,
            name=permission_name,
            display_name=display_name or permission_name,
            description=description,
            conditions=normalized,
            is_active=True,
        )
        self.session.add(permission)
        self._commit(entity="Permission", name=permission_name)
        self.session.refresh(permission)
        return permission

    def set_permission_active(self, permission_id: UUID, is_active: bool) -> Permission:
        permission = self.get_permission(permission_id)
        permission.is_active = is_active
        self._commit(entity="Permission", permission_id=permission_id)
        return permission


__all__ = ["CatalogueService", "normalize_conditions", "parse_action", "would_create_cycle"]
