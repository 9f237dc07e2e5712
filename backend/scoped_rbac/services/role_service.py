from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from scoped_rbac.exceptions import DuplicateEntry, ImmutableRole, UnknownRole, ensure_exclusive_scope
from scoped_rbac.logging_config import logger
from scoped_rbac.models import Role, RoleGrant
from scoped_rbac.repositories.assignment_repository import (
    active_role_assignments as repo_active_role_assignments,
)
from scoped_rbac.repositories.role_repository import (
    get_role,
    get_role_by_code,
    grants_for_role as repo_grants_for_role,
    holders_of_role,
    list_roles as repo_list_roles,
)
from scoped_rbac.services.resolution_cache import ResolutionCache


def invalidate_role_holders(session: Session, cache: ResolutionCache | None, role_id: UUID) -> None:
    """A role's grants changed: drop cached resolutions of everyone holding it."""
    if cache is None:
        return
    holders = holders_of_role(session, role_id=role_id)
    for user_id, workspace_id in holders:
        cache.invalidate(user_id, workspace_id)
    logger.debug("rbac: invalidated %d holders of role %s", len(holders), role_id)


class RoleService:
    """角色的增删改查；系统角色（is_system）不允许改名或删除。"""

    def __init__(self, session: Session, *, cache: ResolutionCache | None = None):
        self.session = session
        self.cache = cache

    # ---- 查询能力 ----

    def get_role(self, role_id: UUID) -> Role:
        role = get_role(self.session, role_id=role_id)
        if role is None:
            raise UnknownRole(f"Role '{role_id}' does not exist", role_id=role_id)
        return role

    def list_roles(
        self,
        *,
        workspace_id: UUID | None = None,
        company_ids: Iterable[UUID] = (),
        include_inactive: bool = False,
    ) -> list[Role]:
        return repo_list_roles(
            self.session,
            workspace_id=workspace_id,
            company_ids=company_ids,
            include_inactive=include_inactive,
        )

    def grants_for_role(self, role_id: UUID) -> list[RoleGrant]:
        self.get_role(role_id)
        return repo_grants_for_role(self.session, role_id=role_id)

    def active_role_assignments(
        self,
        user_id: UUID,
        workspace_id: UUID,
        company_id: UUID | None = None,
    ) -> list[UUID]:
        """Ids of the active roles the user holds for the target scope."""
        pairs = repo_active_role_assignments(
            self.session,
            user_id=user_id,
            workspace_id=workspace_id,
            company_id=company_id,
        )
        return [role.id for _, role in pairs]

    # ---- 写操作 ----

    def create_role(
        self,
        *,
        code: str,
        name: str,
        workspace_id: UUID | None = None,
        company_id: UUID | None = None,
        display_name: str | None = None,
        description: str | None = None,
        is_system: bool = False,
        sort_order: int = 0,
    ) -> Role:
        ensure_exclusive_scope(workspace_id, company_id, entity="Role")
        existing = get_role_by_code(
            self.session, code=code, workspace_id=workspace_id, company_id=company_id
        )
        if existing is not None:
            raise DuplicateEntry(
                f"Role '{code}' already exists in this scope",
                entity="Role",
                code=code,
                workspace_id=workspace_id,
                company_id=company_id,
            )

        role = Role(
            code=code,
            name=name,
            display_name=display_name or name,
            description=description,
            workspace_id=workspace_id,
            company_id=company_id,
            is_system=is_system,
            is_active=True,
            sort_order=sort_order,
        )
        self.session.add(role)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise DuplicateEntry(
                f"Role '{code}' already exists in this scope", entity="Role", code=code
            ) from exc
        self.session.refresh(role)
        logger.info("rbac: created role %s (%s)", role.code, role.id)
        return role

    def update_role(
        self,
        role_id: UUID,
        *,
        name: str | None = None,
        display_name: str | None = None,
        description: str | None = None,
        sort_order: int | None = None,
        is_active: bool | None = None,
    ) -> Role:
        role = self.get_role(role_id)
        if role.is_system and name is not None and name != role.name:
            raise ImmutableRole(f"System role '{role.code}' cannot be renamed", role_id=role.id)

        if name is not None:
            role.name = name
        if display_name is not None:
            role.display_name = display_name
        if description is not None:
            role.description = description
        if sort_order is not None:
            role.sort_order = sort_order
        activity_changed = is_active is not None and is_active != role.is_active
        if is_active is not None:
            role.is_active = is_active

        self.session.commit()
        self.session.refresh(role)
        # name 会出现在决策的 sources 中，任何变更都需要失效缓存
        invalidate_role_holders(self.session, self.cache, role.id)
        if activity_changed:
            logger.info("rbac: role %s is_active=%s", role.code, role.is_active)
        return role

    def delete_role(self, role_id: UUID) -> Role:
        """Soft-delete: assignments stay in place but stop contributing."""
        role = self.get_role(role_id)
        if role.is_system:
            raise ImmutableRole(f"System role '{role.code}' cannot be deleted", role_id=role.id)
        role.deleted_at = datetime.now(UTC)
        role.is_active = False
        self.session.commit()
        invalidate_role_holders(self.session, self.cache, role.id)
        logger.info("rbac: soft-deleted role %s", role.code)
        return role


__all__ = ["RoleService", "invalidate_role_holders"]
