from .assignment import UserPermissionGrant, UserRoleAssignment
from .base import Base, SoftDeleteMixin, TimestampMixin, UUIDPrimaryKeyMixin
from .catalogue import (
    Module,
    ModuleCategory,
    Permission,
    PermissionAction,
    Resource,
    ResourceType,
)
from .enablement import CompanyModule, CompanyResource
from .role import Role, RoleGrant

__all__ = [
    "Base",
    "CompanyModule",
    "CompanyResource",
    "Module",
    "ModuleCategory",
    "Permission",
    "PermissionAction",
    "Resource",
    "ResourceType",
    "Role",
    "RoleGrant",
    "SoftDeleteMixin",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    "UserPermissionGrant",
    "UserRoleAssignment",
]
