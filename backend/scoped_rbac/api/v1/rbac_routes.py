from __future__ import annotations

from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from scoped_rbac.deps import get_db, get_resolution_cache
from scoped_rbac.errors import forbidden, rbac_http_error
from scoped_rbac.exceptions import RBACError
from scoped_rbac.jwt_auth import AuthenticatedUser, require_jwt_token
from scoped_rbac.schemas import (
    BulkDirectGrantRequest,
    BulkDirectGrantResponse,
    DecisionResponse,
    DirectGrantRequest,
    DirectGrantResponse,
    EffectivePermission,
    EffectivePermissionMapResponse,
    ResolveRequest,
    RoleAssignmentResponse,
    RoleAssignRequest,
)
from scoped_rbac.services.permission_gateway_service import PermissionGatewayService
from scoped_rbac.services.resolution_cache import ResolutionCache
from scoped_rbac.services.resolution_service import ResolutionEngine

router = APIRouter(
    tags=["rbac"],
    dependencies=[Depends(require_jwt_token)],
)


def _ensure_admin(current_user: AuthenticatedUser) -> None:
    if not current_user.is_superuser:
        raise forbidden("需要管理员权限")


def _ensure_self_or_admin(current_user: AuthenticatedUser, user_id: UUID) -> None:
    if current_user.id != user_id and not current_user.is_superuser:
        raise forbidden("只能查看自己的权限", user_id=user_id)


@router.post("/rbac/resolve", response_model=DecisionResponse)
def resolve_endpoint(
    payload: ResolveRequest,
    db: Session = Depends(get_db),
    cache: ResolutionCache = Depends(get_resolution_cache),
    current_user: AuthenticatedUser = Depends(require_jwt_token),
) -> DecisionResponse:
    """判定用户在指定 workspace/company 下能否对资源执行某个动作。"""

    _ensure_self_or_admin(current_user, payload.user_id)
    engine = ResolutionEngine(db, cache=cache)
    try:
        decision = engine.resolve(
            payload.user_id,
            payload.workspace_id,
            payload.company_id,
            payload.resource_code,
            payload.action,
            module_code=payload.module_code,
        )
    except RBACError as exc:
        raise rbac_http_error(exc) from exc
    return DecisionResponse.model_validate(decision.as_dict())


@router.get(
    "/rbac/users/{user_id}/effective-permissions",
    response_model=list[EffectivePermission] | EffectivePermissionMapResponse,
)
def effective_permissions_endpoint(
    user_id: UUID,
    workspace_id: UUID = Query(...),
    company_id: UUID | None = Query(default=None),
    shape: Literal["flat", "map"] = Query(default="flat"),
    db: Session = Depends(get_db),
    cache: ResolutionCache = Depends(get_resolution_cache),
    current_user: AuthenticatedUser = Depends(require_jwt_token),
) -> list[EffectivePermission] | EffectivePermissionMapResponse:
    """返回用户在该范围内当前持有的全部权限（用于渲染权限矩阵）。"""

    _ensure_self_or_admin(current_user, user_id)
    engine = ResolutionEngine(db, cache=cache)
    result = engine.resolve_effective_set(user_id, workspace_id, company_id, shape=shape)
    if shape == "map":
        return EffectivePermissionMapResponse(permissions=result)
    return [EffectivePermission.model_validate(item) for item in result]


@router.get(
    "/rbac/users/{user_id}/roles",
    response_model=list[RoleAssignmentResponse],
)
def list_user_roles_endpoint(
    user_id: UUID,
    workspace_id: UUID | None = Query(default=None),
    db: Session = Depends(get_db),
    current_user: AuthenticatedUser = Depends(require_jwt_token),
) -> list[RoleAssignmentResponse]:
    _ensure_self_or_admin(current_user, user_id)
    service = PermissionGatewayService(db)
    records = service.list_user_roles(user_id, workspace_id)
    return [RoleAssignmentResponse.model_validate(rec) for rec in records]


@router.post(
    "/rbac/users/{user_id}/roles",
    response_model=RoleAssignmentResponse,
    status_code=status.HTTP_201_CREATED,
)
def assign_role_endpoint(
    user_id: UUID,
    payload: RoleAssignRequest,
    db: Session = Depends(get_db),
    cache: ResolutionCache = Depends(get_resolution_cache),
    current_user: AuthenticatedUser = Depends(require_jwt_token),
) -> RoleAssignmentResponse:
    """为用户分配角色；重复分配是幂等的。"""

    _ensure_admin(current_user)
    service = PermissionGatewayService(db, cache=cache)
    try:
        assignment = service.grant_role(
            user_id,
            payload.role_id,
            payload.workspace_id,
            payload.company_id,
            assigned_by=current_user.id,
        )
    except RBACError as exc:
        raise rbac_http_error(exc) from exc
    return RoleAssignmentResponse.model_validate(assignment)


@router.delete(
    "/rbac/users/{user_id}/roles/{role_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
def revoke_role_endpoint(
    user_id: UUID,
    role_id: UUID,
    workspace_id: UUID = Query(...),
    company_id: UUID | None = Query(default=None),
    db: Session = Depends(get_db),
    cache: ResolutionCache = Depends(get_resolution_cache),
    current_user: AuthenticatedUser = Depends(require_jwt_token),
) -> Response:
    _ensure_admin(current_user)
    service = PermissionGatewayService(db, cache=cache)
    try:
        service.revoke_role(user_id, role_id, workspace_id, company_id)
    except RBACError as exc:
        raise rbac_http_error(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/rbac/users/{user_id}/permissions",
    response_model=list[DirectGrantResponse],
)
def list_direct_grants_endpoint(
    user_id: UUID,
    workspace_id: UUID | None = Query(default=None),
    db: Session = Depends(get_db),
    current_user: AuthenticatedUser = Depends(require_jwt_token),
) -> list[DirectGrantResponse]:
    """列出用户的直挂授权（含显式拒绝）。"""

    _ensure_self_or_admin(current_user, user_id)
    service = PermissionGatewayService(db)
    grants = service.list_direct_grants(user_id, workspace_id)
    return [DirectGrantResponse.model_validate(grant) for grant in grants]


@router.put(
    "/rbac/users/{user_id}/permissions/{permission_id}",
    response_model=DirectGrantResponse,
)
def set_direct_grant_endpoint(
    user_id: UUID,
    permission_id: UUID,
    payload: DirectGrantRequest,
    db: Session = Depends(get_db),
    cache: ResolutionCache = Depends(get_resolution_cache),
    current_user: AuthenticatedUser = Depends(require_jwt_token),
) -> DirectGrantResponse:
    """直接为用户授予（或显式拒绝）某个权限。"""

    _ensure_admin(current_user)
    service = PermissionGatewayService(db, cache=cache)
    try:
        grant = service.set_direct_grant(
            user_id,
            permission_id,
            payload.workspace_id,
            payload.company_id,
            is_granted=payload.is_granted,
            expires_at=payload.expires_at,
            conditions=payload.conditions,
            granted_by=current_user.id,
        )
    except RBACError as exc:
        raise rbac_http_error(exc) from exc
    return DirectGrantResponse.model_validate(grant)


@router.delete(
    "/rbac/users/{user_id}/permissions/{permission_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
def clear_direct_grant_endpoint(
    user_id: UUID,
    permission_id: UUID,
    workspace_id: UUID = Query(...),
    company_id: UUID | None = Query(default=None),
    db: Session = Depends(get_db),
    cache: ResolutionCache = Depends(get_resolution_cache),
    current_user: AuthenticatedUser = Depends(require_jwt_token),
) -> Response:
    _ensure_admin(current_user)
    service = PermissionGatewayService(db, cache=cache)
    service.clear_direct_grant(user_id, permission_id, workspace_id, company_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.patch(
    "/rbac/users/{user_id}/permissions/bulk",
    response_model=BulkDirectGrantResponse,
)
def bulk_set_direct_grants_endpoint(
    user_id: UUID,
    payload: BulkDirectGrantRequest,
    db: Session = Depends(get_db),
    cache: ResolutionCache = Depends(get_resolution_cache),
    current_user: AuthenticatedUser = Depends(require_jwt_token),
) -> BulkDirectGrantResponse:
    """批量保存直挂权限：任何一条校验失败则整批不生效。"""

    _ensure_admin(current_user)
    service = PermissionGatewayService(db, cache=cache)
    try:
        updated = service.bulk_set_direct_grants(
            user_id,
            payload.workspace_id,
            payload.company_id,
            [(change.permission_id, change.is_granted) for change in payload.grants],
            granted_by=current_user.id,
        )
    except RBACError as exc:
        raise rbac_http_error(exc) from exc
    return BulkDirectGrantResponse(updated=updated)


__all__ = ["router"]
