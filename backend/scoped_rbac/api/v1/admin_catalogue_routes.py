from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from scoped_rbac.deps import get_db, get_resolution_cache
from scoped_rbac.errors import forbidden, rbac_http_error
from scoped_rbac.exceptions import RBACError
from scoped_rbac.jwt_auth import AuthenticatedUser, require_jwt_token
from scoped_rbac.repositories.catalogue_repository import list_modules, list_resources
from scoped_rbac.schemas import (
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
)
from scoped_rbac.services.catalogue_service import CatalogueService
from scoped_rbac.services.enablement_service import EnablementService
from scoped_rbac.services.resolution_cache import ResolutionCache

router = APIRouter(
    tags=["admin-rbac-catalogue"],
    dependencies=[Depends(require_jwt_token)],
)


def _ensure_admin(current_user: AuthenticatedUser) -> None:
    if not current_user.is_superuser:
        raise forbidden("需要管理员权限")


# ---- 模块 ----


@router.get("/admin/rbac/modules", response_model=list[ModuleResponse])
def list_modules_endpoint(
    db: Session = Depends(get_db),
    current_user: AuthenticatedUser = Depends(require_jwt_token),
) -> list[ModuleResponse]:
    _ensure_admin(current_user)
    return [ModuleResponse.model_validate(m) for m in list_modules(db)]


@router.post(
    "/admin/rbac/modules",
    response_model=ModuleResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_module_endpoint(
    payload: ModuleCreateRequest,
    db: Session = Depends(get_db),
    cache: ResolutionCache = Depends(get_resolution_cache),
    current_user: AuthenticatedUser = Depends(require_jwt_token),
) -> ModuleResponse:
    _ensure_admin(current_user)
    service = CatalogueService(db, cache=cache)
    try:
        module = service.create_module(**payload.model_dump())
    except RBACError as exc:
        raise rbac_http_error(exc) from exc
    return ModuleResponse.model_validate(module)


@router.patch("/admin/rbac/modules/{module_id}/active", response_model=ModuleResponse)
def set_module_active_endpoint(
    module_id: UUID,
    payload: ActiveToggleRequest,
    db: Session = Depends(get_db),
    cache: ResolutionCache = Depends(get_resolution_cache),
    current_user: AuthenticatedUser = Depends(require_jwt_token),
) -> ModuleResponse:
    _ensure_admin(current_user)
    service = CatalogueService(db, cache=cache)
    try:
        module = service.set_module_active(module_id, payload.is_active)
    except RBACError as exc:
        raise rbac_http_error(exc) from exc
    return ModuleResponse.model_validate(module)


@router.delete("/admin/rbac/modules/{module_id}", response_model=ModuleResponse)
def delete_module_endpoint(
    module_id: UUID,
    db: Session = Depends(get_db),
    cache: ResolutionCache = Depends(get_resolution_cache),
    current_user: AuthenticatedUser = Depends(require_jwt_token),
) -> ModuleResponse:
    """软删除模块：历史授权记录保留，但模块下的资源不再可达。"""

    _ensure_admin(current_user)
    service = CatalogueService(db, cache=cache)
    try:
        module = service.soft_delete_module(module_id)
    except RBACError as exc:
        raise rbac_http_error(exc) from exc
    return ModuleResponse.model_validate(module)


# ---- 资源 ----


@router.get("/admin/rbac/resources", response_model=list[ResourceResponse])
def list_resources_endpoint(
    module_id: UUID | None = Query(default=None),
    db: Session = Depends(get_db),
    current_user: AuthenticatedUser = Depends(require_jwt_token),
) -> list[ResourceResponse]:
    _ensure_admin(current_user)
    return [ResourceResponse.model_validate(r) for r in list_resources(db, module_id=module_id)]


@router.post(
    "/admin/rbac/resources",
    response_model=ResourceResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_resource_endpoint(
    payload: ResourceCreateRequest,
    db: Session = Depends(get_db),
    cache: ResolutionCache = Depends(get_resolution_cache),
    current_user: AuthenticatedUser = Depends(require_jwt_token),
) -> ResourceResponse:
    _ensure_admin(current_user)
    service = CatalogueService(db, cache=cache)
    try:
        resource = service.create_resource(**payload.model_dump())
    except RBACError as exc:
        raise rbac_http_error(exc) from exc
    return ResourceResponse.model_validate(resource)


@router.put("/admin/rbac/resources/{resource_id}/parent", response_model=ResourceResponse)
def move_resource_endpoint(
    resource_id: UUID,
    payload: ResourceMoveRequest,
    db: Session = Depends(get_db),
    cache: ResolutionCache = Depends(get_resolution_cache),
    current_user: AuthenticatedUser = Depends(require_jwt_token),
) -> ResourceResponse:
    """调整资源父节点；会形成环的移动以 409 拒绝。"""

    _ensure_admin(current_user)
    service = CatalogueService(db, cache=cache)
    try:
        resource = service.move_resource(resource_id, payload.parent_resource_id)
    except RBACError as exc:
        raise rbac_http_error(exc) from exc
    return ResourceResponse.model_validate(resource)


@router.patch("/admin/rbac/resources/{resource_id}/active", response_model=ResourceResponse)
def set_resource_active_endpoint(
    resource_id: UUID,
    payload: ActiveToggleRequest,
    db: Session = Depends(get_db),
    cache: ResolutionCache = Depends(get_resolution_cache),
    current_user: AuthenticatedUser = Depends(require_jwt_token),
) -> ResourceResponse:
    _ensure_admin(current_user)
    service = CatalogueService(db, cache=cache)
    try:
        resource = service.set_resource_active(resource_id, payload.is_active)
    except RBACError as exc:
        raise rbac_http_error(exc) from exc
    return ResourceResponse.model_validate(resource)


@router.delete("/admin/rbac/resources/{resource_id}", response_model=ResourceResponse)
def delete_resource_endpoint(
    resource_id: UUID,
    db: Session = Depends(get_db),
    cache: ResolutionCache = Depends(get_resolution_cache),
    current_user: AuthenticatedUser = Depends(require_jwt_token),
) -> ResourceResponse:
    _ensure_admin(current_user)
    service = CatalogueService(db, cache=cache)
    try:
        resource = service.soft_delete_resource(resource_id)
    except RBACError as exc:
        raise rbac_http_error(exc) from exc
    return ResourceResponse.model_validate(resource)


# ---- 权限 ----


@router.get("/admin/rbac/permissions", response_model=list[PermissionResponse])
def list_permissions_endpoint(
    include_inactive: bool = Query(default=False),
    db: Session = Depends(get_db),
    current_user: AuthenticatedUser = Depends(require_jwt_token),
) -> list[PermissionResponse]:
    _ensure_admin(current_user)
    service = CatalogueService(db)
    rows = service.list_catalogue(active_only=not include_inactive)
    return [PermissionResponse.model_validate(permission) for permission, _, _ in rows]


@router.post(
    "/admin/rbac/permissions",
    response_model=PermissionResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_permission_endpoint(
    payload: PermissionCreateRequest,
    db: Session = Depends(get_db),
    cache: ResolutionCache = Depends(get_resolution_cache),
    current_user: AuthenticatedUser = Depends(require_jwt_token),
) -> PermissionResponse:
    _ensure_admin(current_user)
    service = CatalogueService(db, cache=cache)
    try:
        permission = service.create_permission(
            resource_id=payload.resource_id,
            action=payload.action,
            name=payload.name,
            display_name=payload.display_name,
            description=payload.description,
            conditions=payload.conditions,
        )
    except RBACError as exc:
        raise rbac_http_error(exc) from exc
    return PermissionResponse.model_validate(permission)


@router.patch("/admin/rbac/permissions/{permission_id}/active", response_model=PermissionResponse)
def set_permission_active_endpoint(
    permission_id: UUID,
    payload: ActiveToggleRequest,
    db: Session = Depends(get_db),
    cache: ResolutionCache = Depends(get_resolution_cache),
    current_user: AuthenticatedUser = Depends(require_jwt_token),
) -> PermissionResponse:
    _ensure_admin(current_user)
    service = CatalogueService(db, cache=cache)
    try:
        permission = service.set_permission_active(permission_id, payload.is_active)
    except RBACError as exc:
        raise rbac_http_error(exc) from exc
    return PermissionResponse.model_validate(permission)


# ---- 公司启用开关 ----


@router.put(
    "/admin/rbac/companies/{company_id}/modules/{module_id}/enabled",
    response_model=EnablementResponse,
)
def set_module_enabled_endpoint(
    company_id: UUID,
    module_id: UUID,
    payload: EnablementToggleRequest,
    db: Session = Depends(get_db),
    cache: ResolutionCache = Depends(get_resolution_cache),
    current_user: AuthenticatedUser = Depends(require_jwt_token),
) -> EnablementResponse:
    _ensure_admin(current_user)
    service = EnablementService(db, cache=cache)
    try:
        record = service.set_module_enabled(
            company_id, module_id, payload.is_enabled, toggled_by=current_user.id
        )
    except RBACError as exc:
        raise rbac_http_error(exc) from exc
    return EnablementResponse(
        company_id=record.company_id,
        target_id=record.module_id,
        is_enabled=record.is_enabled,
        toggled_by=record.toggled_by,
        toggled_at=record.toggled_at,
    )


@router.put(
    "/admin/rbac/companies/{company_id}/resources/{resource_id}/enabled",
    response_model=EnablementResponse,
)
def set_resource_enabled_endpoint(
    company_id: UUID,
    resource_id: UUID,
    payload: EnablementToggleRequest,
    db: Session = Depends(get_db),
    cache: ResolutionCache = Depends(get_resolution_cache),
    current_user: AuthenticatedUser = Depends(require_jwt_token),
) -> EnablementResponse:
    _ensure_admin(current_user)
    service = EnablementService(db, cache=cache)
    try:
        record = service.set_resource_enabled(
            company_id, resource_id, payload.is_enabled, toggled_by=current_user.id
        )
    except RBACError as exc:
        raise rbac_http_error(exc) from exc
    return EnablementResponse(
        company_id=record.company_id,
        target_id=record.resource_id,
        is_enabled=record.is_enabled,
        toggled_by=record.toggled_by,
        toggled_at=record.toggled_at,
    )


__all__ = ["router"]
