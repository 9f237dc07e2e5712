from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy.orm import Session

from scoped_rbac.exceptions import UnknownModule, UnknownResource
from scoped_rbac.logging_config import logger
from scoped_rbac.models import CompanyModule, CompanyResource, Resource
from scoped_rbac.repositories.catalogue_repository import (
    get_module,
    get_resource,
    list_modules,
    list_resources,
)
from scoped_rbac.repositories.enablement_repository import (
    disabled_module_ids,
    disabled_resource_ids,
    upsert_company_module,
    upsert_company_resource,
)
from scoped_rbac.services.resolution_cache import ResolutionCache


@dataclass(frozen=True, slots=True)
class ResourceNode:
    id: UUID
    module_id: UUID
    parent_id: UUID | None
    active: bool

    @classmethod
    def from_resource(cls, resource: Resource) -> ResourceNode:
        return cls(
            id=resource.id,
            module_id=resource.module_id,
            parent_id=resource.parent_resource_id,
            active=bool(resource.is_active) and not resource.is_deleted,
        )


class Reachability:
    """
    Pure reachability check over an arena of resource nodes.

    A resource is reachable for a company when its module is active and not
    disabled for the company, and the resource and every ancestor are active
    and not disabled for the company. No company means only the active flags
    count.
    """

    def __init__(
        self,
        *,
        nodes: Mapping[UUID, ResourceNode],
        active_modules: set[UUID],
        disabled_modules: set[UUID],
        disabled_resources: set[UUID],
    ) -> None:
        self.nodes = nodes
        self.active_modules = active_modules
        self.disabled_modules = disabled_modules
        self.disabled_resources = disabled_resources

    def is_reachable(self, resource_id: UUID) -> bool:
        node = self.nodes.get(resource_id)
        if node is None:
            return False
        if node.module_id not in self.active_modules or node.module_id in self.disabled_modules:
            return False

        seen: set[UUID] = set()
        while node is not None:
            if node.id in seen:
                # cycles are rejected at write time; corrupted data is treated as unreachable
                return False
            seen.add(node.id)
            if not node.active or node.id in self.disabled_resources:
                return False
            if node.parent_id is None:
                return True
            node = self.nodes.get(node.parent_id)
        return False


class EnablementService:
    """每个 company 对 module / resource 的启用开关，以及可达性判断。"""

    def __init__(self, session: Session, *, cache: ResolutionCache | None = None):
        self.session = session
        self.cache = cache

    # ---- 查询能力 ----

    def _disabled_sets(self, company_id: UUID | None) -> tuple[set[UUID], set[UUID]]:
        if company_id is None:
            return set(), set()
        return (
            disabled_module_ids(self.session, company_id=company_id),
            disabled_resource_ids(self.session, company_id=company_id),
        )

    def reachability_for_resource(self, company_id: UUID | None, resource_id: UUID) -> Reachability:
        """Build a reachability view holding only the resource's ancestry chain."""
        nodes: dict[UUID, ResourceNode] = {}
        current = get_resource(self.session, resource_id=resource_id, include_deleted=True)
        if current is None:
            raise UnknownResource(f"Resource '{resource_id}' does not exist", resource_id=resource_id)

        module = get_module(self.session, module_id=current.module_id, include_deleted=True)
        active_modules = (
            {module.id} if module is not None and module.is_active and not module.is_deleted else set()
        )
        while current is not None and current.id not in nodes:
            nodes[current.id] = ResourceNode.from_resource(current)
            if current.parent_resource_id is None:
                break
            current = get_resource(
                self.session, resource_id=current.parent_resource_id, include_deleted=True
            )

        disabled_modules, disabled_resources = self._disabled_sets(company_id)
        return Reachability(
            nodes=nodes,
            active_modules=active_modules,
            disabled_modules=disabled_modules,
            disabled_resources=disabled_resources,
        )

    def reachability(self, company_id: UUID | None) -> Reachability:
        """Build a reachability view over the whole catalogue (batch resolution)."""
        nodes = {
            resource.id: ResourceNode.from_resource(resource)
            for resource in list_resources(self.session, include_deleted=True)
        }
        active_modules = {module.id for module in list_modules(self.session) if module.is_active}
        disabled_modules, disabled_resources = self._disabled_sets(company_id)
        return Reachability(
            nodes=nodes,
            active_modules=active_modules,
            disabled_modules=disabled_modules,
            disabled_resources=disabled_resources,
        )

    def is_resource_reachable(self, company_id: UUID | None, resource_id: UUID) -> bool:
        return self.reachability_for_resource(company_id, resource_id).is_reachable(resource_id)

    def list_disabled_modules(self, company_id: UUID) -> set[UUID]:
        return disabled_module_ids(self.session, company_id=company_id)

    # ---- 写操作 ----

    def set_module_enabled(
        self,
        company_id: UUID,
        module_id: UUID,
        is_enabled: bool,
        *,
        toggled_by: UUID | None = None,
    ) -> CompanyModule:
        if get_module(self.session, module_id=module_id) is None:
            raise UnknownModule(f"Module '{module_id}' does not exist", module_id=module_id)
        record = upsert_company_module(
            self.session,
            company_id=company_id,
            module_id=module_id,
            is_enabled=is_enabled,
            toggled_by=toggled_by,
            now=datetime.now(UTC),
        )
        logger.info(
            "rbac: module %s %s for company %s",
            module_id,
            "enabled" if is_enabled else "disabled",
            company_id,
        )
        if self.cache is not None:
            self.cache.invalidate_all()
        return record

    def set_resource_enabled(
        self,
        company_id: UUID,
        resource_id: UUID,
        is_enabled: bool,
        *,
        toggled_by: UUID | None = None,
    ) -> CompanyResource:
        if get_resource(self.session, resource_id=resource_id) is None:
            raise UnknownResource(f"Resource '{resource_id}' does not exist", resource_id=resource_id)
        record = upsert_company_resource(
            self.session,
            company_id=company_id,
            resource_id=resource_id,
            is_enabled=is_enabled,
            toggled_by=toggled_by,
            now=datetime.now(UTC),
        )
        logger.info(
            "rbac: resource %s %s for company %s",
            resource_id,
            "enabled" if is_enabled else "disabled",
            company_id,
        )
        if self.cache is not None:
            self.cache.invalidate_all()
        return record


__all__ = ["EnablementService", "Reachability", "ResourceNode"]
