from __future__ import annotations

import enum
from typing import Any

from sqlalchemy import (
    Boolean,
    Column,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, relationship

from scoped_rbac.db.types import JSONBCompat

from .base import Base, SoftDeleteMixin, TimestampMixin, UUIDPrimaryKeyMixin


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class ModuleCategory(enum.StrEnum):
    CORE = "core"
    HR = "hr"
    FINANCE = "finance"
    INVENTORY = "inventory"
    CRM = "crm"
    PROJECT = "project"
    DOCUMENT = "document"
    REPORTING = "reporting"
    INTEGRATION = "integration"
    SECURITY = "security"
    SETTINGS = "settings"


class ResourceType(enum.StrEnum):
    PAGE = "page"
    API = "api"
    FEATURE = "feature"
    REPORT = "report"
    ACTION = "action"
    WIDGET = "widget"
    SUBMODULE = "submodule"


class PermissionAction(enum.StrEnum):
    """The one closed action vocabulary shared by the catalogue and every grant."""

    VIEW = "view"
    CREATE = "create"
    EDIT = "edit"
    DELETE = "delete"
    APPROVE = "approve"
    MANAGE = "manage"
    EXECUTE = "execute"
    EXPORT = "export"
    IMPORT = "import"
    UPLOAD = "upload"


class Module(UUIDPrimaryKeyMixin, TimestampMixin, SoftDeleteMixin, Base):
    """Top-level functional area grouping resources."""

    __tablename__ = "rbac_modules"

    code: Mapped[str] = Column(String(50), unique=True, nullable=False, index=True)
    name: Mapped[str] = Column(String(100), nullable=False)
    display_name: Mapped[str] = Column(String(100), nullable=False)
    description: Mapped[str | None] = Column(Text, nullable=True)
    category: Mapped[ModuleCategory] = Column(
        Enum(ModuleCategory, native_enum=False, values_callable=_enum_values, length=20),
        nullable=False,
        index=True,
    )
    is_active: Mapped[bool] = Column(Boolean, nullable=False, default=True)
    sort_order: Mapped[int] = Column(Integer, nullable=False, default=0)
    settings: Mapped[dict[str, Any] | None] = Column(JSONBCompat(), nullable=True)

    resources: Mapped[list[Resource]] = relationship(
        "Resource",
        back_populates="module",
        order_by="Resource.sort_order",
    )


class Resource(UUIDPrimaryKeyMixin, TimestampMixin, SoftDeleteMixin, Base):
    """A checkable unit inside a module, optionally nested under a parent resource."""

    __tablename__ = "rbac_resources"
    __table_args__ = (
        UniqueConstraint("module_id", "code", name="uq_rbac_resources_module_code"),
    )

    module_id = Column(
        UUID(as_uuid=True),
        ForeignKey("rbac_modules.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    code: Mapped[str] = Column(String(100), nullable=False, index=True)
    name: Mapped[str] = Column(String(100), nullable=False)
    display_name: Mapped[str] = Column(String(100), nullable=False)
    description: Mapped[str | None] = Column(Text, nullable=True)
    resource_type: Mapped[ResourceType] = Column(
        Enum(ResourceType, native_enum=False, values_callable=_enum_values, length=20),
        nullable=False,
    )
    # URL path or API endpoint, informational only
    path: Mapped[str | None] = Column(String(255), nullable=True)
    parent_resource_id = Column(
        UUID(as_uuid=True),
        ForeignKey("rbac_resources.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    is_active: Mapped[bool] = Column(Boolean, nullable=False, default=True)
    sort_order: Mapped[int] = Column(Integer, nullable=False, default=0)

    module: Mapped[Module] = relationship("Module", back_populates="resources")
    permissions: Mapped[list[Permission]] = relationship(
        "Permission",
        back_populates="resource",
    )


class Permission(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Exactly one (resource, action) pair; the smallest checkable capability."""

    __tablename__ = "rbac_permissions"
    __table_args__ = (
        UniqueConstraint("resource_id", "action", name="uq_rbac_permissions_resource_action"),
        # effective-set maps are keyed by name, so it must identify one permission
        UniqueConstraint("name", name="uq_rbac_permissions_name"),
    )

    resource_id = Column(
        UUID(as_uuid=True),
        ForeignKey("rbac_resources.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    action: Mapped[PermissionAction] = Column(
        Enum(PermissionAction, native_enum=False, values_callable=_enum_values, length=20),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = Column(String(100), nullable=False)
    display_name: Mapped[str] = Column(String(100), nullable=False)
    description: Mapped[str | None] = Column(Text, nullable=True)
    is_active: Mapped[bool] = Column(Boolean, nullable=False, default=True)
    # Default row-level qualifier; a grant's own conditions override it.
    conditions: Mapped[dict[str, Any] | None] = Column(JSONBCompat(), nullable=True)

    resource: Mapped[Resource] = relationship("Resource", back_populates="permissions")


__all__ = [
    "Module",
    "ModuleCategory",
    "Permission",
    "PermissionAction",
    "Resource",
    "ResourceType",
]
