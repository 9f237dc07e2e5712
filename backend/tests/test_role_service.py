from __future__ import annotations

import uuid

import pytest

from scoped_rbac.exceptions import DuplicateEntry, ImmutableRole, ScopeViolation, UnknownRole
from scoped_rbac.services.permission_gateway_service import PermissionGatewayService
from scoped_rbac.services.role_service import RoleService
from tests.utils import seed_permission, seed_role


def test_create_role_requires_exactly_one_scope(db_session, workspace_id, company_id):
    service = RoleService(db_session)
    with pytest.raises(ScopeViolation):
        service.create_role(code="nobody", name="Nobody")
    with pytest.raises(ScopeViolation):
        service.create_role(code="both", name="Both", workspace_id=workspace_id, company_id=company_id)


def test_role_code_unique_within_scope(db_session, workspace_id):
    service = RoleService(db_session)
    service.create_role(code="viewer", name="Viewer", workspace_id=workspace_id)
    with pytest.raises(DuplicateEntry):
        service.create_role(code="viewer", name="Viewer again", workspace_id=workspace_id)

    # same code in another workspace is fine
    other = service.create_role(code="viewer", name="Viewer", workspace_id=uuid.uuid4())
    assert other.code == "viewer"


def test_system_role_cannot_be_renamed_or_deleted(db_session, workspace_id):
    role = seed_role(db_session, code="owner", name="Owner", workspace_id=workspace_id, is_system=True)
    service = RoleService(db_session)

    with pytest.raises(ImmutableRole):
        service.update_role(role.id, name="Boss")
    with pytest.raises(ImmutableRole):
        service.delete_role(role.id)

    updated = service.update_role(role.id, description="workspace owner", sort_order=1)
    assert updated.name == "Owner"
    assert updated.sort_order == 1


def test_deleted_role_is_unknown(db_session, workspace_id):
    role = seed_role(db_session, code="temp", workspace_id=workspace_id)
    service = RoleService(db_session)
    service.delete_role(role.id)

    with pytest.raises(UnknownRole):
        service.get_role(role.id)
    assert service.list_roles(workspace_id=workspace_id) == []


def test_list_roles_by_workspace_and_company(db_session, workspace_id, company_id):
    seed_role(db_session, code="viewer", workspace_id=workspace_id)
    seed_role(db_session, code="clerk", company_id=company_id)
    seed_role(db_session, code="elsewhere", workspace_id=uuid.uuid4())
    service = RoleService(db_session)

    codes = {role.code for role in service.list_roles(workspace_id=workspace_id, company_ids=[company_id])}
    assert codes == {"viewer", "clerk"}


def test_active_role_assignments_respect_company(db_session, user_id, workspace_id, company_id, other_company_id):
    gateway = PermissionGatewayService(db_session)
    ws_role = seed_role(db_session, code="viewer", workspace_id=workspace_id)
    narrowed = seed_role(db_session, code="auditor", workspace_id=workspace_id)
    gateway.grant_role(user_id, ws_role.id, workspace_id)
    gateway.grant_role(user_id, narrowed.id, workspace_id, company_id)
    service = RoleService(db_session)

    assert set(service.active_role_assignments(user_id, workspace_id, company_id)) == {ws_role.id, narrowed.id}
    assert service.active_role_assignments(user_id, workspace_id, other_company_id) == [ws_role.id]
    assert service.active_role_assignments(user_id, workspace_id) == [ws_role.id]


def test_grants_for_role(db_session, workspace_id, company_id):
    permission = seed_permission(db_session, module_code="sales", resource_code="orders", action="approve")
    role = seed_role(db_session, code="approver", workspace_id=workspace_id)
    gateway = PermissionGatewayService(db_session)
    gateway.set_role_grant(role.id, permission.id, workspace_id=workspace_id)
    gateway.set_role_grant(role.id, permission.id, company_id=company_id, is_granted=False)

    grants = RoleService(db_session).grants_for_role(role.id)
    assert {(g.workspace_id, g.company_id, g.is_granted) for g in grants} == {
        (workspace_id, None, True),
        (None, company_id, False),
    }


def test_role_rename_invalidates_holders(db_session, cache, user_id, workspace_id):
    role = seed_role(db_session, code="viewer", workspace_id=workspace_id)
    PermissionGatewayService(db_session).grant_role(user_id, role.id, workspace_id)
    cache.set_effective_set(user_id, workspace_id, None, [])
    assert cache.get_effective_set(user_id, workspace_id, None) == []

    RoleService(db_session, cache=cache).update_role(role.id, name="Reader")
    assert cache.get_effective_set(user_id, workspace_id, None) is None
