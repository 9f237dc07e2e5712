from __future__ import annotations

import uuid

import pytest

from scoped_rbac.exceptions import UnknownModule, UnknownResource
from scoped_rbac.repositories.catalogue_repository import get_module_by_code, get_resource_by_code
from scoped_rbac.services.catalogue_service import CatalogueService
from scoped_rbac.services.enablement_service import EnablementService, Reachability, ResourceNode
from tests.utils import seed_permission


def test_reachability_walks_ancestors_and_guards_cycles():
    module_id = uuid.uuid4()
    root, child, loop_a, loop_b = (uuid.uuid4() for _ in range(4))
    nodes = {
        root: ResourceNode(id=root, module_id=module_id, parent_id=None, active=True),
        child: ResourceNode(id=child, module_id=module_id, parent_id=root, active=True),
        loop_a: ResourceNode(id=loop_a, module_id=module_id, parent_id=loop_b, active=True),
        loop_b: ResourceNode(id=loop_b, module_id=module_id, parent_id=loop_a, active=True),
    }

    reach = Reachability(nodes=nodes, active_modules={module_id}, disabled_modules=set(), disabled_resources=set())
    assert reach.is_reachable(child) is True
    assert reach.is_reachable(loop_a) is False
    assert reach.is_reachable(uuid.uuid4()) is False

    blocked = Reachability(
        nodes=nodes, active_modules={module_id}, disabled_modules=set(), disabled_resources={root}
    )
    assert blocked.is_reachable(child) is False

    module_off = Reachability(
        nodes=nodes, active_modules={module_id}, disabled_modules={module_id}, disabled_resources=set()
    )
    assert module_off.is_reachable(root) is False


def test_no_enablement_row_means_enabled(db_session, company_id):
    seed_permission(db_session, module_code="crm", resource_code="leads", action="view")
    module = get_module_by_code(db_session, code="crm")
    resource = get_resource_by_code(db_session, module_id=module.id, code="leads")

    service = EnablementService(db_session)
    assert service.is_resource_reachable(company_id, resource.id) is True
    assert service.is_resource_reachable(None, resource.id) is True


def test_toggles_are_per_company(db_session, company_id, other_company_id):
    seed_permission(db_session, module_code="crm", resource_code="leads", action="view")
    module = get_module_by_code(db_session, code="crm")
    resource = get_resource_by_code(db_session, module_id=module.id, code="leads")
    service = EnablementService(db_session)

    record = service.set_module_enabled(company_id, module.id, False, toggled_by=uuid.uuid4())
    assert record.is_enabled is False
    assert record.toggled_at is not None
    assert service.is_resource_reachable(company_id, resource.id) is False
    assert service.is_resource_reachable(other_company_id, resource.id) is True
    assert service.list_disabled_modules(company_id) == {module.id}

    service.set_module_enabled(company_id, module.id, True)
    service.set_resource_enabled(company_id, resource.id, False)
    assert service.is_resource_reachable(company_id, resource.id) is False
    assert service.list_disabled_modules(company_id) == set()


def test_inactive_resource_unreachable_without_company(db_session):
    seed_permission(db_session, module_code="crm", resource_code="leads", action="view")
    module = get_module_by_code(db_session, code="crm")
    resource = get_resource_by_code(db_session, module_id=module.id, code="leads")
    CatalogueService(db_session).set_resource_active(resource.id, False)

    assert EnablementService(db_session).is_resource_reachable(None, resource.id) is False


def test_toggle_unknown_targets(db_session, company_id):
    service = EnablementService(db_session)
    with pytest.raises(UnknownModule):
        service.set_module_enabled(company_id, uuid.uuid4(), False)
    with pytest.raises(UnknownResource):
        service.set_resource_enabled(company_id, uuid.uuid4(), False)


def test_toggle_bumps_cache_generation(db_session, cache, fake_redis, company_id):
    seed_permission(db_session, module_code="crm", resource_code="leads", action="view")
    module = get_module_by_code(db_session, code="crm")

    EnablementService(db_session, cache=cache).set_module_enabled(company_id, module.id, False)
    assert fake_redis.get("rbac:effective:generation") == "1"
