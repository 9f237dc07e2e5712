from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from scoped_rbac.deps import get_db, get_resolution_cache
from scoped_rbac.errors import forbidden, rbac_http_error
from scoped_rbac.exceptions import RBACError
from scoped_rbac.jwt_auth import AuthenticatedUser, require_jwt_token
from scoped_rbac.schemas import (
    RoleCreateRequest,
    RoleGrantRequest,
    RoleGrantResponse,
    RoleResponse,
    RoleUpdateRequest,
)
from scoped_rbac.services.permission_gateway_service import PermissionGatewayService
from scoped_rbac.services.resolution_cache import ResolutionCache
from scoped_rbac.services.role_service import RoleService

router = APIRouter(
    tags=["admin-rbac-roles"],
    dependencies=[Depends(require_jwt_token)],
)


def _ensure_admin(current_user: AuthenticatedUser) -> None:
    if not current_user.is_superuser:
        raise forbidden("需要管理员权限")


@router.get("/admin/rbac/roles", response_model=list[RoleResponse])
def list_roles_endpoint(
    workspace_id: UUID | None = Query(default=None),
    company_id: list[UUID] = Query(default=[]),
    include_inactive: bool = Query(default=False),
    db: Session = Depends(get_db),
    current_user: AuthenticatedUser = Depends(require_jwt_token),
) -> list[RoleResponse]:
    _ensure_admin(current_user)
    service = RoleService(db)
    roles = service.list_roles(
        workspace_id=workspace_id,
        company_ids=company_id,
        include_inactive=include_inactive,
    )
    return [RoleResponse.model_validate(role) for role in roles]


@router.post(
    "/admin/rbac/roles",
    response_model=RoleResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_role_endpoint(
    payload: RoleCreateRequest,
    db: Session = Depends(get_db),
    current_user: AuthenticatedUser = Depends(require_jwt_token),
) -> RoleResponse:
    _ensure_admin(current_user)
    service = RoleService(db)
    try:
        role = service.create_role(**payload.model_dump())
    except RBACError as exc:
        raise rbac_http_error(exc) from exc
    return RoleResponse.model_validate(role)


@router.patch("/admin/rbac/roles/{role_id}", response_model=RoleResponse)
def update_role_endpoint(
    role_id: UUID,
    payload: RoleUpdateRequest,
    db: Session = Depends(get_db),
    cache: ResolutionCache = Depends(get_resolution_cache),
    current_user: AuthenticatedUser = Depends(require_jwt_token),
) -> RoleResponse:
    """更新角色信息；系统角色不允许改名。"""

    _ensure_admin(current_user)
    service = RoleService(db, cache=cache)
    try:
        role = service.update_role(role_id, **payload.model_dump(exclude_unset=True))
    except RBACError as exc:
        raise rbac_http_error(exc) from exc
    return RoleResponse.model_validate(role)


@router.delete("/admin/rbac/roles/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_role_endpoint(
    role_id: UUID,
    db: Session = Depends(get_db),
    cache: ResolutionCache = Depends(get_resolution_cache),
    current_user: AuthenticatedUser = Depends(require_jwt_token),
) -> Response:
    _ensure_admin(current_user)
    service = RoleService(db, cache=cache)
    try:
        service.delete_role(role_id)
    except RBACError as exc:
        raise rbac_http_error(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/admin/rbac/roles/{role_id}/grants", response_model=list[RoleGrantResponse])
def list_role_grants_endpoint(
    role_id: UUID,
    db: Session = Depends(get_db),
    current_user: AuthenticatedUser = Depends(require_jwt_token),
) -> list[RoleGrantResponse]:
    _ensure_admin(current_user)
    service = RoleService(db)
    try:
        grants = service.grants_for_role(role_id)
    except RBACError as exc:
        raise rbac_http_error(exc) from exc
    return [RoleGrantResponse.model_validate(grant) for grant in grants]


@router.put("/admin/rbac/roles/{role_id}/grants", response_model=RoleGrantResponse)
def set_role_grant_endpoint(
    role_id: UUID,
    payload: RoleGrantRequest,
    db: Session = Depends(get_db),
    cache: ResolutionCache = Depends(get_resolution_cache),
    current_user: AuthenticatedUser = Depends(require_jwt_token),
) -> RoleGrantResponse:
    """为角色授予（或显式拒绝）权限，并失效所有持有该角色用户的缓存。"""

    _ensure_admin(current_user)
    service = PermissionGatewayService(db, cache=cache)
    try:
        grant = service.set_role_grant(
            role_id,
            payload.permission_id,
            workspace_id=payload.workspace_id,
            company_id=payload.company_id,
            is_granted=payload.is_granted,
            expires_at=payload.expires_at,
            conditions=payload.conditions,
            granted_by=current_user.id,
        )
    except RBACError as exc:
        raise rbac_http_error(exc) from exc
    return RoleGrantResponse.model_validate(grant)


@router.delete(
    "/admin/rbac/roles/{role_id}/grants/{permission_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
def remove_role_grant_endpoint(
    role_id: UUID,
    permission_id: UUID,
    workspace_id: UUID | None = Query(default=None),
    company_id: UUID | None = Query(default=None),
    db: Session = Depends(get_db),
    cache: ResolutionCache = Depends(get_resolution_cache),
    current_user: AuthenticatedUser = Depends(require_jwt_token),
) -> Response:
    _ensure_admin(current_user)
    service = PermissionGatewayService(db, cache=cache)
    try:
        service.remove_role_grant(
            role_id,
            permission_id,
            workspace_id=workspace_id,
            company_id=company_id,
        )
    except RBACError as exc:
        raise rbac_http_error(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


__all__ = ["router"]
