from __future__ import annotations

from typing import Any
from uuid import UUID

from fastapi import FastAPI
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from scoped_rbac.deps import get_db, get_redis
from scoped_rbac.jwt_auth import create_access_token
from scoped_rbac.models import Base, ModuleCategory, Permission, PermissionAction, ResourceType, Role
from scoped_rbac.repositories.catalogue_repository import get_module_by_code, get_resource_by_code
from scoped_rbac.services.catalogue_service import CatalogueService
from scoped_rbac.services.role_service import RoleService


class InMemoryRedis:
    """Just enough of the sync redis-py surface for the resolution cache (no real expiry)."""

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}
        self.ttls: dict[str, int] = {}

    def get(self, key: str) -> Any:
        return self._data.get(key)

    def set(self, key: str, value: str, ex: int | None = None) -> bool:
        self._data[key] = value
        if ex is not None:
            self.ttls[key] = ex
        return True

    def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._data.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    def mget(self, keys: list[str]) -> list[Any]:
        return [self._data.get(key) for key in keys]

    def expire(self, key: str, seconds: int) -> bool:
        if key not in self._data:
            return False
        self.ttls[key] = seconds
        return True

    def incr(self, key: str) -> int:
        value = int(self._data.get(key) or 0) + 1
        self._data[key] = str(value)
        return value

    def keys(self, prefix: str = "") -> list[str]:
        return sorted(key for key in self._data if key.startswith(prefix))


def create_inmemory_sessionmaker() -> sessionmaker[Session]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


def install_inmemory_db(
    app: FastAPI, *, redis: InMemoryRedis | None = None
) -> sessionmaker[Session]:
    """Point the app's DB and Redis dependencies at in-memory fakes."""
    SessionLocal = create_inmemory_sessionmaker()

    def override_get_db():
        session = SessionLocal()
        try:
            yield session
        finally:
            session.close()

    fake_redis = redis or InMemoryRedis()

    def override_get_redis():
        return fake_redis

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    return SessionLocal


def jwt_auth_headers(user_id: UUID | str, *, is_superuser: bool = False) -> dict[str, str]:
    token = create_access_token(user_id, is_superuser=is_superuser)
    return {"Authorization": f"Bearer {token}"}


def seed_permission(
    session: Session,
    *,
    module_code: str,
    resource_code: str,
    action: str,
    category: ModuleCategory = ModuleCategory.CORE,
    parent_code: str | None = None,
    conditions: dict[str, Any] | None = None,
    name: str | None = None,
) -> Permission:
    """Create (module, resource, permission), reusing the module/resource when present."""
    catalogue = CatalogueService(session)
    module = get_module_by_code(session, code=module_code)
    if module is None:
        module = catalogue.create_module(
            code=module_code, name=module_code.title(), category=category
        )
    resource = get_resource_by_code(session, module_id=module.id, code=resource_code)
    if resource is None:
        parent_id = None
        if parent_code is not None:
            parent = get_resource_by_code(session, module_id=module.id, code=parent_code)
            assert parent is not None, f"seed parent {parent_code} first"
            parent_id = parent.id
        resource = catalogue.create_resource(
            module_id=module.id,
            code=resource_code,
            name=resource_code.title(),
            resource_type=ResourceType.PAGE,
            parent_resource_id=parent_id,
        )
    return catalogue.create_permission(
        resource_id=resource.id,
        action=PermissionAction(action),
        name=name,
        conditions=conditions,
    )


def seed_role(
    session: Session,
    *,
    code: str,
    name: str | None = None,
    workspace_id: UUID | None = None,
    company_id: UUID | None = None,
    is_system: bool = False,
) -> Role:
    return RoleService(session).create_role(
        code=code,
        name=name or code.title(),
        workspace_id=workspace_id,
        company_id=company_id,
        is_system=is_system,
    )
