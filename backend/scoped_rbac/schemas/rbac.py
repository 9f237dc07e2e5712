from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

ConditionScope = Literal["own", "department", "company", "workspace"]


class GrantConditions(BaseModel):
    """Row-level visibility qualifier returned alongside a decision."""

    scope: ConditionScope | None = None
    fields: list[str] | None = None
    departments: list[str] | None = None
    companies: list[str] | None = None
    custom_conditions: dict[str, Any] | None = None

    model_config = ConfigDict(extra="forbid")


class GrantSourceOut(BaseModel):
    type: Literal["role", "direct"]
    role: str | None = None


class ResolveRequest(BaseModel):
    user_id: UUID
    workspace_id: UUID
    company_id: UUID | None = None
    resource_code: str = Field(..., min_length=1, max_length=100)
    action: str = Field(..., min_length=1, max_length=20)
    module_code: str | None = Field(default=None, max_length=50)


class DecisionResponse(BaseModel):
    allowed: bool
    reason: str
    sources: list[GrantSourceOut] = Field(default_factory=list)
    conditions: dict[str, Any] | None = None
    permission_id: UUID | None = None


class EffectivePermission(BaseModel):
    permission_id: UUID
    name: str
    module: str
    resource: str
    action: str
    sources: list[GrantSourceOut]
    conditions: dict[str, Any] | None = None


class EffectivePermissionMapResponse(BaseModel):
    permissions: dict[str, bool]


class RoleAssignRequest(BaseModel):
    role_id: UUID
    workspace_id: UUID
    company_id: UUID | None = None


class RoleAssignmentResponse(BaseModel):
    id: UUID
    user_id: UUID
    role_id: UUID
    workspace_id: UUID
    company_id: UUID | None = None
    assigned_by: UUID | None = None
    assigned_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class DirectGrantRequest(BaseModel):
    workspace_id: UUID
    company_id: UUID | None = None
    is_granted: bool = True
    expires_at: datetime | None = None
    conditions: GrantConditions | None = None


class DirectGrantResponse(BaseModel):
    id: UUID
    user_id: UUID
    permission_id: UUID
    workspace_id: UUID
    company_id: UUID | None = None
    is_granted: bool
    expires_at: datetime | None = None
    conditions: dict[str, Any] | None = None
    granted_by: UUID | None = None
    granted_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class DirectGrantChange(BaseModel):
    permission_id: UUID
    is_granted: bool


class BulkDirectGrantRequest(BaseModel):
    workspace_id: UUID
    company_id: UUID | None = None
    grants: list[DirectGrantChange] = Field(default_factory=list, max_length=1000)


class BulkDirectGrantResponse(BaseModel):
    updated: int


__all__ = [
    "BulkDirectGrantRequest",
    "BulkDirectGrantResponse",
    "ConditionScope",
    "DecisionResponse",
    "DirectGrantChange",
    "DirectGrantRequest",
    "DirectGrantResponse",
    "EffectivePermission",
    "EffectivePermissionMapResponse",
    "GrantConditions",
    "GrantSourceOut",
    "ResolveRequest",
    "RoleAssignRequest",
    "RoleAssignmentResponse",
]
