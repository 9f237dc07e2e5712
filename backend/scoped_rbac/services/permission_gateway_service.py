from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import Any, TypeVar
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from scoped_rbac.exceptions import (
    DuplicateEntry,
    InvariantViolation,
    ScopeViolation,
    UnknownPermission,
    UnknownRole,
    ensure_exclusive_scope,
)
from scoped_rbac.logging_config import logger
from scoped_rbac.models import Permission, Role, RoleGrant, UserPermissionGrant, UserRoleAssignment
from scoped_rbac.repositories.assignment_repository import (
    get_assignment,
    get_direct_grant,
    list_user_assignments,
    list_user_direct_grants,
)
from scoped_rbac.repositories.catalogue_repository import get_permission, list_permissions_by_ids
from scoped_rbac.repositories.role_repository import get_role, get_role_grant
from scoped_rbac.services.catalogue_service import normalize_conditions
from scoped_rbac.services.resolution_cache import ResolutionCache
from scoped_rbac.services.role_service import invalidate_role_holders

T = TypeVar("T")


class PermissionGatewayService:
    """
    唯一的授权写入口：角色分配、用户直挂授权以及角色授权。

    每个操作在一个事务中完成；并发 upsert 撞上唯一索引时回滚并整体重试一次，
    第二次会读到胜出的那一行并覆盖它（last-writer-wins）。提交成功后同步失效
    受影响 (user, workspace, company) 的缓存。
    """

    def __init__(
        self,
        session: Session,
        *,
        cache: ResolutionCache | None = None,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self.session = session
        self.cache = cache
        self._now = now or (lambda: datetime.now(UTC))

    def _run(self, operation: Callable[[], T], *, label: str) -> T:
        for attempt in (1, 2):
            try:
                result = operation()
                self.session.commit()
                return result
            except IntegrityError as exc:
                self.session.rollback()
                if attempt == 2:
                    raise DuplicateEntry(f"{label} conflicted with a concurrent write") from exc
                logger.info("rbac gateway: %s hit a unique index, retrying once", label)
            except Exception:
                self.session.rollback()
                raise
        raise AssertionError("unreachable")

    def _invalidate(self, user_id: UUID, workspace_id: UUID, company_id: UUID | None) -> None:
        if self.cache is not None:
            self.cache.invalidate(user_id, workspace_id, company_id)

    def _require_role(self, role_id: UUID) -> Role:
        role = get_role(self.session, role_id=role_id)
        if role is None:
            raise UnknownRole(f"Role '{role_id}' does not exist", role_id=role_id)
        return role

    def _require_permission(self, permission_id: UUID) -> Permission:
        permission = get_permission(self.session, permission_id=permission_id)
        if permission is None or not permission.is_active:
            raise UnknownPermission(
                f"Permission '{permission_id}' does not exist", permission_id=permission_id
            )
        return permission

    # ---- 角色分配 ----

    def grant_role(
        self,
        user_id: UUID,
        role_id: UUID,
        workspace_id: UUID,
        company_id: UUID | None = None,
        *,
        assigned_by: UUID | None = None,
    ) -> UserRoleAssignment:
        """Idempotent: re-granting a held role returns the existing assignment."""

        def operation() -> tuple[UserRoleAssignment, bool]:
            role = self._require_role(role_id)
            if role.workspace_id is not None and role.workspace_id != workspace_id:
                raise ScopeViolation(
                    "Workspace role can only be assigned inside its own workspace",
                    role_id=role.id,
                    workspace_id=workspace_id,
                )
            if role.company_id is not None and role.company_id != company_id:
                raise ScopeViolation(
                    "Company role can only be assigned with its own company",
                    role_id=role.id,
                    company_id=company_id,
                )

            existing = get_assignment(
                self.session,
                user_id=user_id,
                role_id=role_id,
                workspace_id=workspace_id,
                company_id=company_id,
            )
            if existing is not None:
                return existing, False
            assignment = UserRoleAssignment(
                user_id=user_id,
                role_id=role_id,
                workspace_id=workspace_id,
                company_id=company_id,
                assigned_by=assigned_by,
                assigned_at=self._now(),
            )
            self.session.add(assignment)
            return assignment, True

        assignment, created = self._run(operation, label="grant_role")
        if created:
            self._invalidate(user_id, workspace_id, company_id)
            logger.info(
                "rbac gateway: assigned role %s to user %s (workspace=%s company=%s)",
                role_id,
                user_id,
                workspace_id,
                company_id,
            )
        return assignment

    def revoke_role(
        self,
        user_id: UUID,
        role_id: UUID,
        workspace_id: UUID,
        company_id: UUID | None = None,
    ) -> bool:
        """Idempotent: returns False when there was nothing to revoke."""
        if get_role(self.session, role_id=role_id, include_deleted=True) is None:
            raise UnknownRole(f"Role '{role_id}' does not exist", role_id=role_id)

        def operation() -> bool:
            existing = get_assignment(
                self.session,
                user_id=user_id,
                role_id=role_id,
                workspace_id=workspace_id,
                company_id=company_id,
            )
            if existing is None:
                return False
            self.session.delete(existing)
            return True

        removed = self._run(operation, label="revoke_role")
        if removed:
            self._invalidate(user_id, workspace_id, company_id)
        return removed

    def list_user_roles(
        self, user_id: UUID, workspace_id: UUID | None = None
    ) -> list[UserRoleAssignment]:
        return list_user_assignments(self.session, user_id=user_id, workspace_id=workspace_id)

    def list_direct_grants(
        self, user_id: UUID, workspace_id: UUID | None = None
    ) -> list[UserPermissionGrant]:
        """Direct grant and deny rows of a user, expired ones included."""
        return list_user_direct_grants(self.session, user_id=user_id, workspace_id=workspace_id)

    # ---- 用户直挂授权 ----

    def _upsert_direct_grant(
        self,
        *,
        user_id: UUID,
        permission_id: UUID,
        workspace_id: UUID,
        company_id: UUID | None,
        is_granted: bool,
        expires_at: datetime | None,
        conditions: dict[str, Any] | None,
        granted_by: UUID | None,
    ) -> UserPermissionGrant:
        grant = get_direct_grant(
            self.session,
            user_id=user_id,
            permission_id=permission_id,
            workspace_id=workspace_id,
            company_id=company_id,
        )
        if grant is None:
            grant = UserPermissionGrant(
                user_id=user_id,
                permission_id=permission_id,
                workspace_id=workspace_id,
                company_id=company_id,
            )
            self.session.add(grant)
        grant.is_granted = is_granted
        grant.expires_at = expires_at
        grant.conditions = conditions
        grant.granted_by = granted_by
        grant.granted_at = self._now()
        return grant

    def set_direct_grant(
        self,
        user_id: UUID,
        permission_id: UUID,
        workspace_id: UUID,
        company_id: UUID | None = None,
        *,
        is_granted: bool = True,
        expires_at: datetime | None = None,
        conditions: Any = None,
        granted_by: UUID | None = None,
    ) -> UserPermissionGrant:
        normalized = normalize_conditions(conditions)

        def operation() -> UserPermissionGrant:
            self._require_permission(permission_id)
            return self._upsert_direct_grant(
                user_id=user_id,
                permission_id=permission_id,
                workspace_id=workspace_id,
                company_id=company_id,
                is_granted=is_granted,
                expires_at=expires_at,
                conditions=normalized,
                granted_by=granted_by,
            )

        grant = self._run(operation, label="set_direct_grant")
        self._invalidate(user_id, workspace_id, company_id)
        return grant

    def clear_direct_grant(
        self,
        user_id: UUID,
        permission_id: UUID,
        workspace_id: UUID,
        company_id: UUID | None = None,
    ) -> bool:
        """Remove the direct grant row entirely (neither grant nor deny remains)."""

        def operation() -> bool:
            grant = get_direct_grant(
                self.session,
                user_id=user_id,
                permission_id=permission_id,
                workspace_id=workspace_id,
                company_id=company_id,
            )
            if grant is None:
                return False
            self.session.delete(grant)
            return True

        removed = self._run(operation, label="clear_direct_grant")
        if removed:
            self._invalidate(user_id, workspace_id, company_id)
        return removed

    def bulk_set_direct_grants(
        self,
        user_id: UUID,
        workspace_id: UUID,
        company_id: UUID | None,
        changes: Iterable[tuple[UUID, bool]],
        *,
        granted_by: UUID | None = None,
    ) -> int:
        """
        All-or-nothing batch of (permission_id, is_granted) pairs.

        Every entry is validated before anything is written; an unknown
        permission or two conflicting entries for one permission reject the
        whole batch. Duplicate identical entries collapse into one.
        """
        wanted: dict[UUID, bool] = {}
        for permission_id, is_granted in changes:
            previous = wanted.get(permission_id)
            if previous is not None and previous != is_granted:
                raise InvariantViolation(
                    "Conflicting entries for the same permission in one batch",
                    permission_id=permission_id,
                )
            wanted[permission_id] = is_granted
        if not wanted:
            return 0

        def operation() -> int:
            known = {
                permission.id
                for permission in list_permissions_by_ids(
                    self.session, permission_ids=set(wanted)
                )
                if permission.is_active
            }
            missing = sorted(str(pid) for pid in wanted if pid not in known)
            if missing:
                raise UnknownPermission(
                    f"{len(missing)} permission(s) do not exist", permission_ids=missing
                )
            for permission_id, is_granted in wanted.items():
                self._upsert_direct_grant(
                    user_id=user_id,
                    permission_id=permission_id,
                    workspace_id=workspace_id,
                    company_id=company_id,
                    is_granted=is_granted,
                    expires_at=None,
                    conditions=None,
                    granted_by=granted_by,
                )
            return len(wanted)

        updated = self._run(operation, label="bulk_set_direct_grants")
        self._invalidate(user_id, workspace_id, company_id)
        logger.info(
            "rbac gateway: bulk-set %d direct grants for user %s (workspace=%s company=%s)",
            updated,
            user_id,
            workspace_id,
            company_id,
        )
        return updated

    # ---- 角色授权 ----

    def set_role_grant(
        self,
        role_id: UUID,
        permission_id: UUID,
        *,
        workspace_id: UUID | None = None,
        company_id: UUID | None = None,
        is_granted: bool = True,
        expires_at: datetime | None = None,
        conditions: Any = None,
        granted_by: UUID | None = None,
    ) -> RoleGrant:
        ensure_exclusive_scope(workspace_id, company_id, entity="RoleGrant")
        normalized = normalize_conditions(conditions)

        def operation() -> RoleGrant:
            role = self._require_role(role_id)
            self._require_permission(permission_id)
            if role.company_id is not None and company_id != role.company_id:
                raise ScopeViolation(
                    "Company role can only hold grants for its own company",
                    role_id=role.id,
                    company_id=company_id,
                )
            if role.workspace_id is not None and workspace_id not in (None, role.workspace_id):
                raise ScopeViolation(
                    "Workspace role can only hold workspace grants for its own workspace",
                    role_id=role.id,
                    workspace_id=workspace_id,
                )

            grant = get_role_grant(
                self.session,
                role_id=role_id,
                permission_id=permission_id,
                workspace_id=workspace_id,
                company_id=company_id,
            )
            if grant is None:
                grant = RoleGrant(
                    role_id=role_id,
                    permission_id=permission_id,
                    workspace_id=workspace_id,
                    company_id=company_id,
                )
                self.session.add(grant)
            grant.is_granted = is_granted
            grant.expires_at = expires_at
            grant.conditions = normalized
            grant.granted_by = granted_by
            grant.granted_at = self._now()
            return grant

        grant = self._run(operation, label="set_role_grant")
        invalidate_role_holders(self.session, self.cache, role_id)
        return grant

    def remove_role_grant(
        self,
        role_id: UUID,
        permission_id: UUID,
        *,
        workspace_id: UUID | None = None,
        company_id: UUID | None = None,
    ) -> bool:
        ensure_exclusive_scope(workspace_id, company_id, entity="RoleGrant")
        self._require_role(role_id)

        def operation() -> bool:
            grant = get_role_grant(
                self.session,
                role_id=role_id,
                permission_id=permission_id,
                workspace_id=workspace_id,
                company_id=company_id,
            )
            if grant is None:
                return False
            self.session.delete(grant)
            return True

        removed = self._run(operation, label="remove_role_grant")
        if removed:
            invalidate_role_holders(self.session, self.cache, role_id)
        return removed


__all__ = ["PermissionGatewayService"]
