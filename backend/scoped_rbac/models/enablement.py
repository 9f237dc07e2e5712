from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, Column, ForeignKey, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped

from scoped_rbac.db.types import UTCDateTime

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class CompanyModule(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Per-company on/off switch for a module. No row means enabled."""

    __tablename__ = "rbac_company_modules"
    __table_args__ = (
        UniqueConstraint("company_id", "module_id", name="uq_rbac_company_modules"),
    )

    company_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    module_id = Column(
        UUID(as_uuid=True),
        ForeignKey("rbac_modules.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    is_enabled: Mapped[bool] = Column(Boolean, nullable=False, default=True)
    toggled_by = Column(UUID(as_uuid=True), nullable=True)
    toggled_at: Mapped[datetime | None] = Column(UTCDateTime(), nullable=True)


class CompanyResource(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Per-company on/off switch for a single resource. No row means enabled."""

    __tablename__ = "rbac_company_resources"
    __table_args__ = (
        UniqueConstraint("company_id", "resource_id", name="uq_rbac_company_resources"),
    )

    company_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    resource_id = Column(
        UUID(as_uuid=True),
        ForeignKey("rbac_resources.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    is_enabled: Mapped[bool] = Column(Boolean, nullable=False, default=True)
    toggled_by = Column(UUID(as_uuid=True), nullable=True)
    toggled_at: Mapped[datetime | None] = Column(UTCDateTime(), nullable=True)


__all__ = ["CompanyModule", "CompanyResource"]
