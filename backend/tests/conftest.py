"""
Shared pytest configuration.

This file ensures the backend root is on sys.path so that `import scoped_rbac`
works consistently in all tests, and provides reusable fixtures for tests.
"""

from __future__ import annotations

import os
import sys
import uuid
from pathlib import Path

# The engine is built at import time; never let tests reach a real Postgres.
os.environ.setdefault("RBAC_DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("RBAC_SECRET_KEY", "test-secret-key")

# Ensure backend root is importable for test modules.
# This MUST be done before importing scoped_rbac modules.
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker

from scoped_rbac.routes import create_app
from scoped_rbac.services.resolution_cache import ResolutionCache
from tests.utils import InMemoryRedis, create_inmemory_sessionmaker, install_inmemory_db


@pytest.fixture()
def session_factory() -> sessionmaker[Session]:
    return create_inmemory_sessionmaker()


@pytest.fixture()
def db_session(session_factory):
    with session_factory() as session:
        yield session


@pytest.fixture()
def fake_redis() -> InMemoryRedis:
    return InMemoryRedis()


@pytest.fixture()
def cache(fake_redis) -> ResolutionCache:
    return ResolutionCache(fake_redis, ttl_seconds=300, enabled=True)


@pytest.fixture()
def app_with_inmemory_db(fake_redis) -> tuple[FastAPI, sessionmaker[Session]]:
    fastapi_app = create_app()
    SessionLocal: sessionmaker[Session] = install_inmemory_db(fastapi_app, redis=fake_redis)
    yield fastapi_app, SessionLocal
    fastapi_app.dependency_overrides.clear()


@pytest.fixture()
def client(app_with_inmemory_db):
    app, _ = app_with_inmemory_db
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def workspace_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture()
def company_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture()
def other_company_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture()
def user_id() -> uuid.UUID:
    return uuid.uuid4()
