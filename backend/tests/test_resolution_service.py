from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

import pytest

from scoped_rbac.exceptions import UnknownPermission
from scoped_rbac.models import ModuleCategory
from scoped_rbac.repositories.catalogue_repository import get_module_by_code, get_resource_by_code
from scoped_rbac.services.catalogue_service import CatalogueService
from scoped_rbac.services.enablement_service import EnablementService
from scoped_rbac.services.permission_gateway_service import PermissionGatewayService
from scoped_rbac.services.resolution_service import (
    Decision,
    DecisionReason,
    ResolutionEngine,
    RoleSourced,
)
from scoped_rbac.services.role_service import RoleService
from tests.utils import seed_permission, seed_role


@pytest.fixture()
def catalogue(db_session):
    return {
        "employees.view": seed_permission(
            db_session,
            module_code="employees",
            resource_code="employees",
            action="view",
            category=ModuleCategory.HR,
        ),
        "employees.edit": seed_permission(
            db_session,
            module_code="employees",
            resource_code="employees",
            action="edit",
            category=ModuleCategory.HR,
        ),
        "files.upload": seed_permission(
            db_session,
            module_code="files",
            resource_code="files",
            action="upload",
            category=ModuleCategory.DOCUMENT,
        ),
    }


@pytest.fixture()
def gateway(db_session):
    return PermissionGatewayService(db_session)


@pytest.fixture()
def engine(db_session):
    return ResolutionEngine(db_session)


def _grant_role_permission(db_session, gateway, *, role_code, role_name, permission, workspace_id, user_id,
                           is_granted=True, company_id=None):
    role = seed_role(db_session, code=role_code, name=role_name, workspace_id=workspace_id)
    gateway.set_role_grant(role.id, permission.id, workspace_id=workspace_id, is_granted=is_granted)
    gateway.grant_role(user_id, role.id, workspace_id, company_id)
    return role


def test_unknown_permission_is_a_configuration_error(engine, catalogue, user_id, workspace_id):
    with pytest.raises(UnknownPermission):
        engine.resolve(user_id, workspace_id, None, "payroll", "view")
    with pytest.raises(UnknownPermission):
        engine.resolve(user_id, workspace_id, None, "employees", "approve")


def test_action_outside_vocabulary_is_unknown(engine, catalogue, user_id, workspace_id):
    with pytest.raises(UnknownPermission):
        engine.resolve(user_id, workspace_id, None, "employees", "all")


def test_ambiguous_resource_code_requires_module(db_session, engine, user_id, workspace_id):
    seed_permission(db_session, module_code="hr", resource_code="reports", action="view")
    finance = seed_permission(
        db_session, module_code="finance", resource_code="reports", action="view", name="finance.reports.view"
    )
    PermissionGatewayService(db_session).set_direct_grant(user_id, finance.id, workspace_id)

    with pytest.raises(UnknownPermission):
        engine.resolve(user_id, workspace_id, None, "reports", "view")

    decision = engine.resolve(user_id, workspace_id, None, "reports", "view", module_code="finance")
    assert decision.allowed is True
    assert decision.permission_id == finance.id


def test_no_grant_is_default_deny(engine, catalogue, user_id, workspace_id, company_id):
    decision = engine.resolve(user_id, workspace_id, company_id, "employees", "view")
    assert decision.allowed is False
    assert decision.reason == DecisionReason.NO_GRANT
    assert decision.sources == []


def test_direct_deny_beats_role_grant(db_session, engine, gateway, catalogue, user_id, workspace_id):
    permission = catalogue["employees.view"]
    _grant_role_permission(
        db_session, gateway, role_code="viewer", role_name="Viewer", permission=permission,
        workspace_id=workspace_id, user_id=user_id,
    )
    gateway.set_direct_grant(user_id, permission.id, workspace_id, is_granted=False)

    decision = engine.resolve(user_id, workspace_id, None, "employees", "view")
    assert decision.allowed is False
    assert decision.sources == []
    assert decision.reason == DecisionReason.DIRECT_DENY


def test_direct_grant_beats_role_deny(db_session, engine, gateway, catalogue, user_id, workspace_id):
    permission = catalogue["employees.edit"]
    _grant_role_permission(
        db_session, gateway, role_code="readonly", role_name="Read Only", permission=permission,
        workspace_id=workspace_id, user_id=user_id, is_granted=False,
    )
    gateway.set_direct_grant(user_id, permission.id, workspace_id, is_granted=True)

    decision = engine.resolve(user_id, workspace_id, None, "employees", "edit")
    assert decision.allowed is True
    assert decision.reason == DecisionReason.DIRECT_GRANT
    assert decision.sources_as_dicts() == [{"type": "direct", "role": None}]


def test_role_deny_beats_role_grant(db_session, engine, gateway, catalogue, user_id, workspace_id):
    permission = catalogue["employees.edit"]
    _grant_role_permission(
        db_session, gateway, role_code="editor", role_name="Editor", permission=permission,
        workspace_id=workspace_id, user_id=user_id,
    )
    _grant_role_permission(
        db_session, gateway, role_code="auditor", role_name="Auditor", permission=permission,
        workspace_id=workspace_id, user_id=user_id, is_granted=False,
    )

    decision = engine.resolve(user_id, workspace_id, None, "employees", "edit")
    assert decision.allowed is False
    assert decision.reason == DecisionReason.ROLE_DENY
    assert decision.sources == []


def test_role_grants_union_role_names(db_session, engine, gateway, catalogue, user_id, workspace_id):
    permission = catalogue["employees.view"]
    _grant_role_permission(
        db_session, gateway, role_code="viewer", role_name="Viewer", permission=permission,
        workspace_id=workspace_id, user_id=user_id,
    )
    _grant_role_permission(
        db_session, gateway, role_code="manager", role_name="Manager", permission=permission,
        workspace_id=workspace_id, user_id=user_id,
    )

    decision = engine.resolve(user_id, workspace_id, None, "employees", "view")
    assert decision.allowed is True
    assert decision.reason == DecisionReason.ROLE_GRANT
    assert sorted(s.role_name for s in decision.sources if isinstance(s, RoleSourced)) == [
        "Manager",
        "Viewer",
    ]


def test_expired_role_grant_is_excluded_until_extended(
    db_session, engine, gateway, catalogue, user_id, workspace_id
):
    permission = catalogue["employees.view"]
    role = seed_role(db_session, code="viewer", name="Viewer", workspace_id=workspace_id)
    gateway.grant_role(user_id, role.id, workspace_id)
    gateway.set_role_grant(
        role.id,
        permission.id,
        workspace_id=workspace_id,
        expires_at=datetime.now(UTC) - timedelta(minutes=1),
    )
    assert engine.resolve(user_id, workspace_id, None, "employees", "view").reason == DecisionReason.NO_GRANT

    gateway.set_role_grant(role.id, permission.id, workspace_id=workspace_id, expires_at=None)
    assert engine.resolve(user_id, workspace_id, None, "employees", "view").allowed is True

    gateway.set_role_grant(
        role.id,
        permission.id,
        workspace_id=workspace_id,
        expires_at=datetime.now(UTC) + timedelta(days=1),
    )
    assert engine.resolve(user_id, workspace_id, None, "employees", "view").allowed is True


def test_expired_direct_deny_no_longer_blocks(db_session, engine, gateway, catalogue, user_id, workspace_id):
    permission = catalogue["employees.view"]
    _grant_role_permission(
        db_session, gateway, role_code="viewer", role_name="Viewer", permission=permission,
        workspace_id=workspace_id, user_id=user_id,
    )
    gateway.set_direct_grant(
        user_id,
        permission.id,
        workspace_id,
        is_granted=False,
        expires_at=datetime.now(UTC) - timedelta(seconds=5),
    )

    decision = engine.resolve(user_id, workspace_id, None, "employees", "view")
    assert decision.allowed is True
    assert decision.reason == DecisionReason.ROLE_GRANT


def test_pinned_clock_controls_expiry(db_session, gateway, catalogue, user_id, workspace_id):
    permission = catalogue["employees.view"]
    expires_at = datetime(2030, 1, 1, tzinfo=UTC)
    gateway.set_direct_grant(user_id, permission.id, workspace_id, expires_at=expires_at)

    before = ResolutionEngine(db_session, now=lambda: expires_at - timedelta(seconds=1))
    after = ResolutionEngine(db_session, now=lambda: expires_at)
    assert before.is_allowed(user_id, workspace_id, None, "employees", "view") is True
    assert after.is_allowed(user_id, workspace_id, None, "employees", "view") is False


def test_disabled_module_short_circuits_direct_grant(
    db_session, engine, gateway, catalogue, user_id, workspace_id, company_id
):
    permission = catalogue["employees.view"]
    gateway.set_direct_grant(user_id, permission.id, workspace_id)
    module = get_module_by_code(db_session, code="employees")
    EnablementService(db_session).set_module_enabled(company_id, module.id, False)

    decision = engine.resolve(user_id, workspace_id, company_id, "employees", "view")
    assert decision.allowed is False
    assert decision.reason == DecisionReason.DISABLED
    assert decision.sources == []


def test_viewer_role_follows_module_enablement(
    db_session, engine, gateway, catalogue, user_id, workspace_id, company_id
):
    _grant_role_permission(
        db_session, gateway, role_code="viewer", role_name="Viewer",
        permission=catalogue["employees.view"], workspace_id=workspace_id, user_id=user_id,
    )
    module = get_module_by_code(db_session, code="employees")
    enablement = EnablementService(db_session)

    enablement.set_module_enabled(company_id, module.id, False)
    disabled = engine.resolve(user_id, workspace_id, company_id, "employees", "view")
    assert disabled.allowed is False
    assert disabled.reason == DecisionReason.DISABLED

    enablement.set_module_enabled(company_id, module.id, True)
    enabled = engine.resolve(user_id, workspace_id, company_id, "employees", "view")
    assert enabled.allowed is True
    assert enabled.sources_as_dicts() == [{"type": "role", "role": "Viewer"}]


def test_company_scoped_direct_grant_does_not_leak(
    engine, gateway, catalogue, user_id, workspace_id, company_id, other_company_id
):
    gateway.set_direct_grant(user_id, catalogue["files.upload"].id, workspace_id, company_id)

    assert engine.resolve(user_id, workspace_id, company_id, "files", "upload").allowed is True
    assert engine.resolve(user_id, workspace_id, other_company_id, "files", "upload").allowed is False
    assert engine.resolve(user_id, workspace_id, None, "files", "upload").allowed is False


def test_company_narrowed_role_grant_applies_to_that_company_only(
    db_session, engine, gateway, catalogue, user_id, workspace_id, company_id, other_company_id
):
    role = seed_role(db_session, code="uploader", name="Uploader", workspace_id=workspace_id)
    gateway.grant_role(user_id, role.id, workspace_id)
    gateway.set_role_grant(role.id, catalogue["files.upload"].id, company_id=company_id)

    assert engine.resolve(user_id, workspace_id, company_id, "files", "upload").allowed is True
    assert engine.resolve(user_id, workspace_id, other_company_id, "files", "upload").allowed is False


def test_company_role_assignment_only_counts_in_its_company(
    db_session, engine, gateway, catalogue, user_id, workspace_id, company_id, other_company_id
):
    role = seed_role(db_session, code="clerk", name="Clerk", company_id=company_id)
    gateway.set_role_grant(role.id, catalogue["employees.view"].id, company_id=company_id)
    gateway.grant_role(user_id, role.id, workspace_id, company_id)

    assert engine.resolve(user_id, workspace_id, company_id, "employees", "view").allowed is True
    assert engine.resolve(user_id, workspace_id, other_company_id, "employees", "view").allowed is False


def test_inactive_role_stops_contributing(db_session, engine, gateway, catalogue, user_id, workspace_id):
    role = _grant_role_permission(
        db_session, gateway, role_code="viewer", role_name="Viewer",
        permission=catalogue["employees.view"], workspace_id=workspace_id, user_id=user_id,
    )
    RoleService(db_session).update_role(role.id, is_active=False)

    decision = engine.resolve(user_id, workspace_id, None, "employees", "view")
    assert decision.reason == DecisionReason.NO_GRANT


def test_disabled_parent_resource_cascades(db_session, engine, gateway, user_id, workspace_id, company_id):
    seed_permission(db_session, module_code="crm", resource_code="accounts", action="view")
    child = seed_permission(
        db_session, module_code="crm", resource_code="contacts", action="view", parent_code="accounts"
    )
    gateway.set_direct_grant(user_id, child.id, workspace_id)
    module = get_module_by_code(db_session, code="crm")
    parent = get_resource_by_code(db_session, module_id=module.id, code="accounts")

    assert engine.resolve(user_id, workspace_id, company_id, "contacts", "view").allowed is True
    EnablementService(db_session).set_resource_enabled(company_id, parent.id, False)
    decision = engine.resolve(user_id, workspace_id, company_id, "contacts", "view")
    assert decision.reason == DecisionReason.DISABLED


def test_inactive_module_is_unreachable_everywhere(
    db_session, engine, gateway, catalogue, user_id, workspace_id
):
    gateway.set_direct_grant(user_id, catalogue["employees.view"].id, workspace_id)
    module = get_module_by_code(db_session, code="employees")
    CatalogueService(db_session).set_module_active(module.id, False)

    decision = engine.resolve(user_id, workspace_id, None, "employees", "view")
    assert decision.reason == DecisionReason.DISABLED


def test_conditions_are_returned_not_applied(db_session, gateway, catalogue, user_id, workspace_id):
    permission = catalogue["employees.view"]
    gateway.set_direct_grant(
        user_id,
        permission.id,
        workspace_id,
        conditions={"scope": "department", "departments": ["sales"]},
    )

    decision = ResolutionEngine(db_session).resolve(user_id, workspace_id, None, "employees", "view")
    assert decision.allowed is True
    assert decision.conditions == {"scope": "department", "departments": ["sales"]}


def test_permission_default_conditions_apply_when_grant_has_none(
    db_session, gateway, user_id, workspace_id
):
    permission = seed_permission(
        db_session,
        module_code="payroll",
        resource_code="payslips",
        action="view",
        conditions={"scope": "own"},
    )
    gateway.set_direct_grant(user_id, permission.id, workspace_id)

    decision = ResolutionEngine(db_session).resolve(user_id, workspace_id, None, "payslips", "view")
    assert decision.conditions == {"scope": "own"}


def test_broadest_role_condition_wins(db_session, gateway, catalogue, user_id, workspace_id):
    permission = catalogue["employees.view"]
    own = seed_role(db_session, code="self", name="Self", workspace_id=workspace_id)
    company = seed_role(db_session, code="hr", name="HR", workspace_id=workspace_id)
    gateway.set_role_grant(own.id, permission.id, workspace_id=workspace_id, conditions={"scope": "own"})
    gateway.set_role_grant(
        company.id, permission.id, workspace_id=workspace_id, conditions={"scope": "company"}
    )
    gateway.grant_role(user_id, own.id, workspace_id)
    gateway.grant_role(user_id, company.id, workspace_id)

    decision = ResolutionEngine(db_session).resolve(user_id, workspace_id, None, "employees", "view")
    assert decision.conditions == {"scope": "company"}


def test_effective_set_matches_per_permission_resolve(
    db_session, engine, gateway, catalogue, user_id, workspace_id, company_id
):
    _grant_role_permission(
        db_session, gateway, role_code="viewer", role_name="Viewer",
        permission=catalogue["employees.view"], workspace_id=workspace_id, user_id=user_id,
    )
    gateway.set_direct_grant(user_id, catalogue["files.upload"].id, workspace_id, company_id)
    gateway.set_direct_grant(user_id, catalogue["employees.edit"].id, workspace_id, is_granted=False)

    effective = engine.resolve_effective_set(user_id, workspace_id, company_id)
    names = [item["name"] for item in effective]
    assert names == ["employees.view", "files.upload"]

    for key, permission in catalogue.items():
        resource_code, action = key.split(".")
        decision: Decision = engine.resolve(user_id, workspace_id, company_id, resource_code, action)
        assert decision.allowed is (permission.name in names)
        if decision.allowed:
            item = next(i for i in effective if i["name"] == permission.name)
            assert item["sources"] == decision.sources_as_dicts()
            assert item["conditions"] == decision.conditions


def test_effective_set_map_shape(engine, gateway, catalogue, user_id, workspace_id):
    gateway.set_direct_grant(user_id, catalogue["files.upload"].id, workspace_id)
    assert engine.resolve_effective_set(user_id, workspace_id, None, shape="map") == {
        "files.upload": True
    }


def test_every_resolve_emits_an_audit_record(db_session, catalogue, user_id, workspace_id, caplog):
    records: list[dict] = []
    engine = ResolutionEngine(db_session, audit_sink=records.append)

    with caplog.at_level(logging.INFO, logger="scoped_rbac.audit"):
        engine.resolve(user_id, workspace_id, None, "employees", "view")
        with pytest.raises(UnknownPermission):
            engine.resolve(user_id, workspace_id, None, "ghost", "view")

    assert [r["reason"] for r in records] == ["no_grant", "unknown_permission"]
    assert records[0] == {
        "user_id": str(user_id),
        "workspace_id": str(workspace_id),
        "company_id": None,
        "resource_code": "employees",
        "action": "view",
        "allowed": False,
        "sources": [],
        "reason": "no_grant",
    }
    warnings = [r for r in caplog.records if r.name == "scoped_rbac.audit" and r.levelno == logging.WARNING]
    assert len(warnings) == 1


def test_same_role_name_in_two_scopes_is_one_source(
    db_session, engine, gateway, catalogue, user_id, workspace_id, company_id
):
    permission = catalogue["employees.view"]
    _grant_role_permission(
        db_session, gateway, role_code="viewer", role_name="Viewer", permission=permission,
        workspace_id=workspace_id, user_id=user_id,
    )
    company_role = seed_role(db_session, code="company_viewer", name="Viewer", company_id=company_id)
    gateway.set_role_grant(company_role.id, permission.id, company_id=company_id)
    gateway.grant_role(user_id, company_role.id, workspace_id, company_id)

    decision = engine.resolve(user_id, workspace_id, company_id, "employees", "view")
    assert decision.sources_as_dicts() == [{"type": "role", "role": "Viewer"}]


def test_cached_effective_set_follows_grant_expiry(
    db_session, cache, gateway, catalogue, user_id, workspace_id
):
    t0 = datetime(2026, 3, 2, 8, 0, tzinfo=UTC)
    clock = {"now": t0}
    engine = ResolutionEngine(db_session, cache=cache, now=lambda: clock["now"])
    gateway.set_direct_grant(
        user_id, catalogue["files.upload"].id, workspace_id, expires_at=t0 + timedelta(seconds=60)
    )

    assert [i["name"] for i in engine.resolve_effective_set(user_id, workspace_id)] == ["files.upload"]

    clock["now"] = t0 + timedelta(seconds=120)
    assert engine.resolve(user_id, workspace_id, None, "files", "upload").allowed is False
    assert engine.resolve_effective_set(user_id, workspace_id) == []


def test_mutation_committed_during_compute_is_not_cached(
    db_session, cache, catalogue, user_id, workspace_id, monkeypatch
):
    gateway = PermissionGatewayService(db_session, cache=cache)
    engine = ResolutionEngine(db_session, cache=cache)
    permission = catalogue["files.upload"]
    gateway.set_direct_grant(user_id, permission.id, workspace_id)

    compute = engine._compute_effective_set

    def compute_then_revoke(*args, **kwargs):
        result = compute(*args, **kwargs)
        # the deny commits after the reader loaded its grants but before it caches them
        gateway.set_direct_grant(user_id, permission.id, workspace_id, is_granted=False)
        return result

    monkeypatch.setattr(engine, "_compute_effective_set", compute_then_revoke)
    before = engine.resolve_effective_set(user_id, workspace_id)
    assert [i["name"] for i in before] == ["files.upload"]

    monkeypatch.setattr(engine, "_compute_effective_set", compute)
    assert engine.resolve_effective_set(user_id, workspace_id) == []
