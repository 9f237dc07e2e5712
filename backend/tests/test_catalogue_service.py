from __future__ import annotations

import uuid

import pytest

from scoped_rbac.exceptions import (
    CatalogueCycle,
    DuplicateEntry,
    InvariantViolation,
    UnknownPermission,
    UnknownResource,
)
from scoped_rbac.models import ModuleCategory, PermissionAction, ResourceType
from scoped_rbac.services.catalogue_service import CatalogueService, parse_action, would_create_cycle


def _module(service: CatalogueService, code: str = "inventory"):
    return service.create_module(code=code, name=code.title(), category=ModuleCategory.INVENTORY)


def _resource(service: CatalogueService, module_id, code: str, parent_id=None):
    return service.create_resource(
        module_id=module_id,
        code=code,
        name=code.title(),
        resource_type=ResourceType.SUBMODULE,
        parent_resource_id=parent_id,
    )


def test_parse_action_accepts_closed_vocabulary_only():
    assert parse_action("View") is PermissionAction.VIEW
    assert parse_action(PermissionAction.UPLOAD) is PermissionAction.UPLOAD
    assert parse_action("all") is None
    assert parse_action("approve ") is PermissionAction.APPROVE


def test_would_create_cycle_walks_parent_chain():
    a, b, c = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
    parents = {a: None, b: a, c: b}
    assert would_create_cycle(parents, a, c) is True
    assert would_create_cycle(parents, a, a) is True
    assert would_create_cycle(parents, c, a) is False
    assert would_create_cycle(parents, b, None) is False


def test_duplicate_module_code_rejected(db_session):
    service = CatalogueService(db_session)
    _module(service)
    with pytest.raises(DuplicateEntry):
        _module(service)


def test_create_permission_defaults_name(db_session):
    service = CatalogueService(db_session)
    module = _module(service)
    resource = _resource(service, module.id, "stock")

    permission = service.create_permission(resource_id=resource.id, action=PermissionAction.EXPORT)
    assert permission.name == "stock.export"
    assert permission.display_name == "stock.export"

    with pytest.raises(DuplicateEntry):
        service.create_permission(resource_id=resource.id, action=PermissionAction.EXPORT)


def test_parent_must_live_in_same_module(db_session):
    service = CatalogueService(db_session)
    inventory = _module(service)
    finance = _module(service, "finance")
    parent = _resource(service, inventory.id, "warehouse")

    with pytest.raises(InvariantViolation):
        _resource(service, finance.id, "ledger", parent_id=parent.id)


def test_move_resource_rejects_cycles(db_session):
    service = CatalogueService(db_session)
    module = _module(service)
    root = _resource(service, module.id, "warehouse")
    child = _resource(service, module.id, "stock", parent_id=root.id)
    grandchild = _resource(service, module.id, "batches", parent_id=child.id)

    with pytest.raises(CatalogueCycle):
        service.move_resource(root.id, grandchild.id)
    with pytest.raises(CatalogueCycle):
        service.move_resource(child.id, child.id)

    moved = service.move_resource(grandchild.id, root.id)
    assert moved.parent_resource_id == root.id
    detached = service.move_resource(child.id, None)
    assert detached.parent_resource_id is None


def test_lookup_permission(db_session):
    service = CatalogueService(db_session)
    module = _module(service)
    resource = _resource(service, module.id, "stock")
    permission = service.create_permission(resource_id=resource.id, action=PermissionAction.VIEW)

    found, found_resource = service.lookup_permission("stock", "view")
    assert found.id == permission.id
    assert found_resource.id == resource.id

    with pytest.raises(UnknownPermission):
        service.lookup_permission("stock", "delete")

    service.set_permission_active(permission.id, False)
    with pytest.raises(UnknownPermission):
        service.lookup_permission("stock", "view")


def test_soft_deleted_resource_is_gone(db_session):
    service = CatalogueService(db_session)
    module = _module(service)
    resource = _resource(service, module.id, "stock")
    service.create_permission(resource_id=resource.id, action=PermissionAction.VIEW)

    service.soft_delete_resource(resource.id)
    with pytest.raises(UnknownPermission):
        service.lookup_permission("stock", "view")
    with pytest.raises(UnknownResource):
        service.get_resource(resource.id)
    assert service.list_catalogue() == []


def test_catalogue_writes_bump_cache_generation(db_session, cache, fake_redis):
    service = CatalogueService(db_session, cache=cache)
    module = _module(service)
    service.set_module_active(module.id, False)
    assert fake_redis.get("rbac:effective:generation") == "2"


def test_permission_names_stay_unique_across_modules(db_session):
    service = CatalogueService(db_session)
    hr = _module(service, "hr")
    finance = _module(service, "finance")
    hr_reports = _resource(service, hr.id, "reports")
    finance_reports = _resource(service, finance.id, "reports")
    service.create_permission(resource_id=hr_reports.id, action=PermissionAction.VIEW)

    with pytest.raises(DuplicateEntry):
        service.create_permission(resource_id=finance_reports.id, action=PermissionAction.VIEW)

    named = service.create_permission(
        resource_id=finance_reports.id, action=PermissionAction.VIEW, name="finance.reports.view"
    )
    assert named.name == "finance.reports.view"


def test_permission_default_conditions_are_validated(db_session):
    service = CatalogueService(db_session)
    module = _module(service)
    resource = _resource(service, module.id, "stock")

    with pytest.raises(InvariantViolation):
        service.create_permission(
            resource_id=resource.id, action=PermissionAction.VIEW, conditions={"scope": "galaxy"}
        )
    with pytest.raises(InvariantViolation):
        service.create_permission(
            resource_id=resource.id, action=PermissionAction.VIEW, conditions={"region": "north"}
        )

    permission = service.create_permission(
        resource_id=resource.id,
        action=PermissionAction.VIEW,
        conditions={"scope": "department", "departments": ["ops"], "fields": None},
    )
    assert permission.conditions == {"scope": "department", "departments": ["ops"]}
