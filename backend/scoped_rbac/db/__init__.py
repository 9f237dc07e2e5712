from __future__ import annotations

from collections.abc import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from scoped_rbac.settings import settings

engine = create_engine(settings.database_url, pool_pre_ping=True, future=True)
SessionLocal: sessionmaker[Session] = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    expire_on_commit=False,
    future=True,
)


def get_db_session() -> Iterator[Session]:
    """Yield a session and always close it afterwards."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


__all__ = ["SessionLocal", "engine", "get_db_session"]
