"""
Effective-permission resolution.

`resolve` answers "may this user perform this action on this resource in
this workspace/company, and why". Every candidate grant, whether it comes
from a role or is attached straight to the user, is normalised into one
`Candidate` shape carrying a tagged `GrantSource` before `decide` applies the
precedence rules:

    direct deny > direct grant > role deny > role grant(s) > no grant

Row-level `conditions` ride along with an allowed decision as a visibility
qualifier; the engine never filters business records itself.
"""

from __future__ import annotations

import enum
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal
from uuid import UUID

from sqlalchemy.orm import Session

from scoped_rbac.exceptions import UnknownPermission
from scoped_rbac.logging_config import audit_logger, logger
from scoped_rbac.models import Permission, PermissionAction
from scoped_rbac.repositories.assignment_repository import active_role_assignments, direct_grants
from scoped_rbac.repositories.role_repository import role_grants_in_scope
from scoped_rbac.services.catalogue_service import CatalogueService
from scoped_rbac.services.enablement_service import EnablementService
from scoped_rbac.services.resolution_cache import ResolutionCache
from scoped_rbac.settings import settings

# workspace > company > department > own
SCOPE_BREADTH: dict[str, int] = {"own": 0, "department": 1, "company": 2, "workspace": 3}
_LIST_CONDITION_KEYS = ("fields", "departments", "companies")


@dataclass(frozen=True, slots=True)
class RoleSourced:
    role_id: UUID
    role_name: str

    def as_dict(self) -> dict[str, Any]:
        return {"type": "role", "role": self.role_name}


@dataclass(frozen=True, slots=True)
class DirectSourced:
    def as_dict(self) -> dict[str, Any]:
        return {"type": "direct", "role": None}


GrantSource = RoleSourced | DirectSourced


@dataclass(frozen=True, slots=True)
class Candidate:
    permission_id: UUID
    is_granted: bool
    source: GrantSource
    conditions: dict[str, Any] | None = None
    expires_at: datetime | None = None

    @property
    def is_direct(self) -> bool:
        return isinstance(self.source, DirectSourced)

    def is_live(self, now: datetime) -> bool:
        return self.expires_at is None or self.expires_at > now


class DecisionReason(enum.StrEnum):
    DIRECT_DENY = "direct_deny"
    DIRECT_GRANT = "direct_grant"
    ROLE_DENY = "role_deny"
    ROLE_GRANT = "role_grant"
    NO_GRANT = "no_grant"
    DISABLED = "disabled"


@dataclass(slots=True)
class Decision:
    allowed: bool
    reason: DecisionReason
    sources: list[GrantSource] = field(default_factory=list)
    conditions: dict[str, Any] | None = None
    permission_id: UUID | None = None

    def sources_as_dicts(self) -> list[dict[str, Any]]:
        return [source.as_dict() for source in self.sources]

    def as_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "reason": self.reason.value,
            "sources": self.sources_as_dicts(),
            "conditions": self.conditions,
            "permission_id": self.permission_id,
        }


def _scope_breadth(conditions: dict[str, Any]) -> int:
    scope = conditions.get("scope")
    if scope is None:
        return SCOPE_BREADTH["workspace"]
    return SCOPE_BREADTH.get(str(scope), SCOPE_BREADTH["workspace"])


def merge_conditions(items: Sequence[dict[str, Any] | None]) -> dict[str, Any] | None:
    """
    Combine the visibility qualifiers of every contributing grant.

    A grant without conditions is unrestricted, so it makes the whole result
    unrestricted. Otherwise the broadest scope wins and the list restrictions
    of equally broad grants are unioned.
    """
    if not items:
        return None
    if any(not item for item in items):
        return None

    present = [item for item in items if item]
    broadest = max(_scope_breadth(item) for item in present)
    winners = [item for item in present if _scope_breadth(item) == broadest]
    if len(winners) == 1:
        return dict(winners[0])

    merged: dict[str, Any] = {}
    scope = winners[0].get("scope")
    if scope is not None:
        merged["scope"] = scope
    for key in _LIST_CONDITION_KEYS:
        values: list[Any] = []
        restricted = True
        for item in winners:
            entries = item.get(key)
            if entries is None:
                # one grant does not restrict this dimension at all
                restricted = False
                break
            values.extend(value for value in entries if value not in values)
        if restricted:
            merged[key] = values
    custom: dict[str, Any] = {}
    for item in winners:
        custom.update(item.get("custom_conditions") or {})
    if custom:
        merged["custom_conditions"] = custom
    return merged


def decide(
    candidates: Iterable[Candidate],
    *,
    default_conditions: dict[str, Any] | None = None,
    permission_id: UUID | None = None,
) -> Decision:
    """Apply grant precedence to live candidates of a single permission."""
    direct: list[Candidate] = []
    roles: list[Candidate] = []
    for candidate in candidates:
        (direct if candidate.is_direct else roles).append(candidate)

    def effective(candidate: Candidate) -> dict[str, Any] | None:
        return candidate.conditions if candidate.conditions is not None else default_conditions

    if any(not c.is_granted for c in direct):
        return Decision(False, DecisionReason.DIRECT_DENY, permission_id=permission_id)

    direct_grants_ = [c for c in direct if c.is_granted]
    if direct_grants_:
        return Decision(
            True,
            DecisionReason.DIRECT_GRANT,
            sources=[DirectSourced()],
            conditions=merge_conditions([effective(c) for c in direct_grants_]),
            permission_id=permission_id,
        )

    if any(not c.is_granted for c in roles):
        return Decision(False, DecisionReason.ROLE_DENY, permission_id=permission_id)

    role_grants = [c for c in roles if c.is_granted]
    if role_grants:
        sources: list[GrantSource] = []
        # union of role names: a workspace "Viewer" and a company "Viewer" are one source
        seen_names: set[str] = set()
        for candidate in role_grants:
            source = candidate.source
            if isinstance(source, RoleSourced) and source.role_name not in seen_names:
                seen_names.add(source.role_name)
                sources.append(source)
        return Decision(
            True,
            DecisionReason.ROLE_GRANT,
            sources=sources,
            conditions=merge_conditions([effective(c) for c in role_grants]),
            permission_id=permission_id,
        )

    return Decision(False, DecisionReason.NO_GRANT, permission_id=permission_id)


EffectiveShape = Literal["flat", "map"]


class ResolutionEngine:
    """
    Stateless resolver over the catalogue, enablement, role and assignment stores.

    `now` may be pinned for deterministic expiry checks; `audit_sink` receives
    the same structured record that is written to the audit logger.
    """

    def __init__(
        self,
        session: Session,
        *,
        cache: ResolutionCache | None = None,
        now: Callable[[], datetime] | None = None,
        audit_sink: Callable[[dict[str, Any]], None] | None = None,
    ) -> None:
        self.session = session
        self.cache = cache
        self._now = now or (lambda: datetime.now(UTC))
        self.audit_sink = audit_sink
        self.catalogue = CatalogueService(session)
        self.enablement = EnablementService(session)

    # ---- 候选授权收集 ----

    def _collect_candidates(
        self,
        user_id: UUID,
        workspace_id: UUID,
        company_id: UUID | None,
        permission_ids: Iterable[UUID] | None,
        *,
        now: datetime | None = None,
    ) -> list[Candidate]:
        now = now or self._now()
        permission_ids = list(permission_ids) if permission_ids is not None else None
        candidates: list[Candidate] = []

        assignments = active_role_assignments(
            self.session,
            user_id=user_id,
            workspace_id=workspace_id,
            company_id=company_id,
        )
        roles = {role.id: role for _, role in assignments}
        order = {role_id: index for index, role_id in enumerate(roles)}
        grants = role_grants_in_scope(
            self.session,
            role_ids=roles.keys(),
            workspace_id=workspace_id,
            company_id=company_id,
            permission_ids=permission_ids,
        )
        for grant in sorted(grants, key=lambda g: order[g.role_id]):
            role = roles[grant.role_id]
            candidate = Candidate(
                permission_id=grant.permission_id,
                is_granted=grant.is_granted,
                source=RoleSourced(role_id=role.id, role_name=role.name),
                conditions=grant.conditions,
                expires_at=grant.expires_at,
            )
            if not candidate.is_live(now):
                logger.debug(
                    "rbac: skipping expired role grant %s (role=%s expires_at=%s)",
                    grant.id,
                    role.code,
                    grant.expires_at,
                )
                continue
            candidates.append(candidate)

        for grant in direct_grants(
            self.session,
            user_id=user_id,
            workspace_id=workspace_id,
            company_id=company_id,
            permission_ids=permission_ids,
        ):
            candidate = Candidate(
                permission_id=grant.permission_id,
                is_granted=grant.is_granted,
                source=DirectSourced(),
                conditions=grant.conditions,
                expires_at=grant.expires_at,
            )
            if not candidate.is_live(now):
                logger.debug(
                    "rbac: skipping expired direct grant %s (user=%s expires_at=%s)",
                    grant.id,
                    user_id,
                    grant.expires_at,
                )
                continue
            candidates.append(candidate)
        return candidates

    # ---- 单次判定 ----

    def resolve(
        self,
        user_id: UUID,
        workspace_id: UUID,
        company_id: UUID | None,
        resource_code: str,
        action: str | PermissionAction,
        *,
        module_code: str | None = None,
    ) -> Decision:
        try:
            permission, resource = self.catalogue.lookup_permission(
                resource_code, action, module_code=module_code
            )
        except UnknownPermission as exc:
            self._audit_unknown(user_id, workspace_id, company_id, resource_code, action, exc)
            raise

        if not self.enablement.is_resource_reachable(company_id, resource.id):
            decision = Decision(False, DecisionReason.DISABLED, permission_id=permission.id)
        else:
            candidates = self._collect_candidates(
                user_id, workspace_id, company_id, permission_ids=[permission.id]
            )
            decision = decide(
                candidates,
                default_conditions=permission.conditions,
                permission_id=permission.id,
            )

        self._audit(
            user_id,
            workspace_id,
            company_id,
            resource_code,
            permission.action.value,
            decision,
        )
        return decision

    def is_allowed(
        self,
        user_id: UUID,
        workspace_id: UUID,
        company_id: UUID | None,
        resource_code: str,
        action: str | PermissionAction,
        *,
        module_code: str | None = None,
    ) -> bool:
        return self.resolve(
            user_id, workspace_id, company_id, resource_code, action, module_code=module_code
        ).allowed

    # ---- 批量：有效权限集合 ----

    def _compute_effective_set(
        self,
        user_id: UUID,
        workspace_id: UUID,
        company_id: UUID | None,
        now: datetime,
    ) -> tuple[list[dict[str, Any]], datetime | None]:
        """Items plus the earliest future expiry among the grants considered."""
        reachability = self.enablement.reachability(company_id)
        catalogue = [
            (permission, resource, module)
            for permission, resource, module in self.catalogue.list_catalogue(active_only=True)
            if reachability.is_reachable(resource.id)
        ]
        permission_ids = [permission.id for permission, _, _ in catalogue]

        by_permission: dict[UUID, list[Candidate]] = {}
        valid_until: datetime | None = None
        for candidate in self._collect_candidates(
            user_id, workspace_id, company_id, permission_ids=permission_ids, now=now
        ):
            by_permission.setdefault(candidate.permission_id, []).append(candidate)
            # a grant or deny that lapses later changes the result at that moment
            if candidate.expires_at is not None and (
                valid_until is None or candidate.expires_at < valid_until
            ):
                valid_until = candidate.expires_at

        items: list[dict[str, Any]] = []
        for permission, resource, module in catalogue:
            decision = decide(
                by_permission.get(permission.id, []),
                default_conditions=permission.conditions,
                permission_id=permission.id,
            )
            if not decision.allowed:
                continue
            items.append(
                {
                    "permission_id": str(permission.id),
                    "name": permission.name,
                    "module": module.code,
                    "resource": resource.code,
                    "action": permission.action.value,
                    "sources": decision.sources_as_dicts(),
                    "conditions": decision.conditions,
                }
            )
        items.sort(key=lambda item: (item["module"], item["resource"], item["action"]))
        return items, valid_until

    def resolve_effective_set(
        self,
        user_id: UUID,
        workspace_id: UUID,
        company_id: UUID | None = None,
        *,
        shape: EffectiveShape = "flat",
    ) -> list[dict[str, Any]] | dict[str, bool]:
        """
        Every permission the user currently holds in the scope.

        Runs the same per-permission `decide` as `resolve`. The result is
        cached per (user, workspace, company); the cache slot is taken before
        reading the database so a concurrent mutation always wins, and an
        entry never outlives the earliest expiring grant behind it.
        """
        now = self._now()
        slot = None
        if self.cache is not None:
            slot = self.cache.open_slot(user_id, workspace_id, company_id)
        items = self.cache.read(slot, now=now) if slot is not None else None
        if items is None:
            items, valid_until = self._compute_effective_set(user_id, workspace_id, company_id, now)
            if slot is not None:
                self.cache.write(slot, items, valid_until=valid_until, now=now)

        if shape == "map":
            return {item["name"]: True for item in items}
        return items

    # ---- 审计 ----

    def _emit(self, record: dict[str, Any], *, warning: bool = False) -> None:
        if self.audit_sink is not None:
            self.audit_sink(record)
        if not settings.audit_log_enabled:
            return
        if warning:
            audit_logger.warning("rbac.resolve %s", record, extra={"rbac_audit": record})
        else:
            audit_logger.info("rbac.resolve %s", record, extra={"rbac_audit": record})

    def _audit(
        self,
        user_id: UUID,
        workspace_id: UUID,
        company_id: UUID | None,
        resource_code: str,
        action: str,
        decision: Decision,
    ) -> None:
        self._emit(
            {
                "user_id": str(user_id),
                "workspace_id": str(workspace_id),
                "company_id": str(company_id) if company_id is not None else None,
                "resource_code": resource_code,
                "action": action,
                "allowed": decision.allowed,
                "sources": decision.sources_as_dicts(),
                "reason": decision.reason.value,
            }
        )

    def _audit_unknown(
        self,
        user_id: UUID,
        workspace_id: UUID,
        company_id: UUID | None,
        resource_code: str,
        action: str | PermissionAction,
        exc: UnknownPermission,
    ) -> None:
        self._emit(
            {
                "user_id": str(user_id),
                "workspace_id": str(workspace_id),
                "company_id": str(company_id) if company_id is not None else None,
                "resource_code": resource_code,
                "action": str(action),
                "allowed": False,
                "sources": [],
                "reason": "unknown_permission",
                "error": exc.message,
            },
            warning=True,
        )


__all__ = [
    "Candidate",
    "Decision",
    "DecisionReason",
    "DirectSourced",
    "GrantSource",
    "ResolutionEngine",
    "RoleSourced",
    "decide",
    "merge_conditions",
]
