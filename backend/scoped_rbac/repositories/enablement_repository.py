from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import Select, select
from sqlalchemy.orm import Session

from scoped_rbac.models import CompanyModule, CompanyResource


def get_company_module(db: Session, *, company_id: UUID, module_id: UUID) -> CompanyModule | None:
    stmt: Select[tuple[CompanyModule]] = select(CompanyModule).where(
        CompanyModule.company_id == company_id,
        CompanyModule.module_id == module_id,
    )
    return db.execute(stmt).scalars().first()


def get_company_resource(
    db: Session, *, company_id: UUID, resource_id: UUID
) -> CompanyResource | None:
    stmt: Select[tuple[CompanyResource]] = select(CompanyResource).where(
        CompanyResource.company_id == company_id,
        CompanyResource.resource_id == resource_id,
    )
    return db.execute(stmt).scalars().first()


def disabled_module_ids(db: Session, *, company_id: UUID) -> set[UUID]:
    stmt = select(CompanyModule.module_id).where(
        CompanyModule.company_id == company_id,
        CompanyModule.is_enabled.is_(False),
    )
    return set(db.execute(stmt).scalars().all())


def disabled_resource_ids(db: Session, *, company_id: UUID) -> set[UUID]:
    stmt = select(CompanyResource.resource_id).where(
        CompanyResource.company_id == company_id,
        CompanyResource.is_enabled.is_(False),
    )
    return set(db.execute(stmt).scalars().all())


def upsert_company_module(
    db: Session,
    *,
    company_id: UUID,
    module_id: UUID,
    is_enabled: bool,
    toggled_by: UUID | None,
    now: datetime,
) -> CompanyModule:
    record = get_company_module(db, company_id=company_id, module_id=module_id)
    if record is None:
        record = CompanyModule(company_id=company_id, module_id=module_id)
        db.add(record)
    record.is_enabled = is_enabled
    record.toggled_by = toggled_by
    record.toggled_at = now
    db.commit()
    db.refresh(record)
    return record


def upsert_company_resource(
    db: Session,
    *,
    company_id: UUID,
    resource_id: UUID,
    is_enabled: bool,
    toggled_by: UUID | None,
    now: datetime,
) -> CompanyResource:
    record = get_company_resource(db, company_id=company_id, resource_id=resource_id)
    if record is None:
        record = CompanyResource(company_id=company_id, resource_id=resource_id)
        db.add(record)
    record.is_enabled = is_enabled
    record.toggled_by = toggled_by
    record.toggled_at = now
    db.commit()
    db.refresh(record)
    return record


__all__ = [
    "disabled_module_ids",
    "disabled_resource_ids",
    "get_company_module",
    "get_company_resource",
    "upsert_company_module",
    "upsert_company_resource",
]
