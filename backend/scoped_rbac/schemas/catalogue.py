from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from scoped_rbac.models import ModuleCategory, PermissionAction, ResourceType

from .rbac import GrantConditions

_CODE_PATTERN = r"^[a-z0-9][a-z0-9_.-]*$"


class ModuleCreateRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=50, pattern=_CODE_PATTERN)
    name: str = Field(..., min_length=1, max_length=100)
    display_name: str | None = Field(default=None, max_length=100)
    description: str | None = None
    category: ModuleCategory
    sort_order: int = 0


class ModuleResponse(BaseModel):
    id: UUID
    code: str
    name: str
    display_name: str
    description: str | None = None
    category: ModuleCategory
    is_active: bool
    sort_order: int
    deleted_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class ResourceCreateRequest(BaseModel):
    module_id: UUID
    code: str = Field(..., min_length=1, max_length=100, pattern=_CODE_PATTERN)
    name: str = Field(..., min_length=1, max_length=100)
    display_name: str | None = Field(default=None, max_length=100)
    description: str | None = None
    resource_type: ResourceType
    path: str | None = Field(default=None, max_length=255)
    parent_resource_id: UUID | None = None
    sort_order: int = 0


class ResourceMoveRequest(BaseModel):
    parent_resource_id: UUID | None = None


class ResourceResponse(BaseModel):
    id: UUID
    module_id: UUID
    code: str
    name: str
    display_name: str
    resource_type: ResourceType
    path: str | None = None
    parent_resource_id: UUID | None = None
    is_active: bool
    sort_order: int
    deleted_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class PermissionCreateRequest(BaseModel):
    resource_id: UUID
    action: PermissionAction
    name: str | None = Field(default=None, max_length=100)
    display_name: str | None = Field(default=None, max_length=100)
    description: str | None = None
    conditions: GrantConditions | None = None


class PermissionResponse(BaseModel):
    id: UUID
    resource_id: UUID
    action: PermissionAction
    name: str
    display_name: str
    is_active: bool
    conditions: dict[str, Any] | None = None

    model_config = ConfigDict(from_attributes=True)


class ActiveToggleRequest(BaseModel):
    is_active: bool


class EnablementToggleRequest(BaseModel):
    is_enabled: bool


class EnablementResponse(BaseModel):
    company_id: UUID
    target_id: UUID
    is_enabled: bool
    toggled_by: UUID | None = None
    toggled_at: datetime | None = None


class RoleCreateRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=50, pattern=_CODE_PATTERN)
    name: str = Field(..., min_length=1, max_length=100)
    display_name: str | None = Field(default=None, max_length=100)
    description: str | None = None
    workspace_id: UUID | None = None
    company_id: UUID | None = None
    is_system: bool = False
    sort_order: int = 0

    @model_validator(mode="after")
    def ensure_single_scope(self) -> "RoleCreateRequest":
        if (self.workspace_id is None) == (self.company_id is None):
            raise ValueError("角色必须且只能指定 workspace_id 或 company_id 之一")
        return self


class RoleUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    display_name: str | None = Field(default=None, max_length=100)
    description: str | None = None
    sort_order: int | None = None
    is_active: bool | None = None


class RoleResponse(BaseModel):
    id: UUID
    code: str
    name: str
    display_name: str
    description: str | None = None
    workspace_id: UUID | None = None
    company_id: UUID | None = None
    is_system: bool
    is_active: bool
    sort_order: int

    model_config = ConfigDict(from_attributes=True)


class RoleGrantRequest(BaseModel):
    permission_id: UUID
    workspace_id: UUID | None = None
    company_id: UUID | None = None
    is_granted: bool = True
    expires_at: datetime | None = None
    conditions: GrantConditions | None = None


class RoleGrantResponse(BaseModel):
    id: UUID
    role_id: UUID
    permission_id: UUID
    workspace_id: UUID | None = None
    company_id: UUID | None = None
    is_granted: bool
    expires_at: datetime | None = None
    conditions: dict[str, Any] | None = None
    granted_by: UUID | None = None

    model_config = ConfigDict(from_attributes=True)


__all__ = [
    "ActiveToggleRequest",
    "EnablementResponse",
    "EnablementToggleRequest",
    "ModuleCreateRequest",
    "ModuleResponse",
    "PermissionCreateRequest",
    "PermissionResponse",
    "ResourceCreateRequest",
    "ResourceMoveRequest",
    "ResourceResponse",
    "RoleCreateRequest",
    "RoleGrantRequest",
    "RoleGrantResponse",
    "RoleResponse",
    "RoleUpdateRequest",
]
