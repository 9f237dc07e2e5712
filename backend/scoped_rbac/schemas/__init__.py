from .catalogue import (
    ActiveToggleRequest,
    EnablementResponse,
    EnablementToggleRequest,
    ModuleCreateRequest,
    ModuleResponse,
    PermissionCreateRequest,
    PermissionResponse,
    ResourceCreateRequest,
    ResourceMoveRequest,
    ResourceResponse,
    RoleCreateRequest,
    RoleGrantRequest,
    RoleGrantResponse,
    RoleResponse,
    RoleUpdateRequest,
)
from .rbac import (
    BulkDirectGrantRequest,
    BulkDirectGrantResponse,
    DecisionResponse,
    DirectGrantChange,
    DirectGrantRequest,
    DirectGrantResponse,
    EffectivePermission,
    EffectivePermissionMapResponse,
    GrantConditions,
    GrantSourceOut,
    ResolveRequest,
    RoleAssignmentResponse,
    RoleAssignRequest,
)

__all__ = [
    "ActiveToggleRequest",
    "BulkDirectGrantRequest",
    "BulkDirectGrantResponse",
    "DecisionResponse",
    "DirectGrantChange",
    "DirectGrantRequest",
    "DirectGrantResponse",
    "EffectivePermission",
    "EffectivePermissionMapResponse",
    "EnablementResponse",
    "EnablementToggleRequest",
    "GrantConditions",
    "GrantSourceOut",
    "ModuleCreateRequest",
    "ModuleResponse",
    "PermissionCreateRequest",
    "PermissionResponse",
    "ResolveRequest",
    "ResourceCreateRequest",
    "ResourceMoveRequest",
    "ResourceResponse",
    "RoleAssignRequest",
    "RoleAssignmentResponse",
    "RoleCreateRequest",
    "RoleGrantRequest",
    "RoleGrantResponse",
    "RoleResponse",
    "RoleUpdateRequest",
]
