from __future__ import annotations

from typing import Any

from fastapi import HTTPException, status
from fastapi.encoders import jsonable_encoder

from scoped_rbac.exceptions import ConfigurationError, InvariantViolation, RBACError


def http_error(status_code: int, *, error: str, message: str, **extra: Any) -> HTTPException:
    detail: dict[str, Any] = {"error": error, "message": message}
    if extra:
        detail.update(jsonable_encoder(extra))
    return HTTPException(status_code=status_code, detail=detail)


def bad_request(message: str, **extra: Any) -> HTTPException:
    return http_error(status.HTTP_400_BAD_REQUEST, error="bad_request", message=message, **extra)


def forbidden(message: str, **extra: Any) -> HTTPException:
    return http_error(status.HTTP_403_FORBIDDEN, error="forbidden", message=message, **extra)


def not_found(message: str, **extra: Any) -> HTTPException:
    return http_error(status.HTTP_404_NOT_FOUND, error="not_found", message=message, **extra)


def conflict(message: str, **extra: Any) -> HTTPException:
    return http_error(status.HTTP_409_CONFLICT, error="conflict", message=message, **extra)


def rbac_http_error(exc: RBACError) -> HTTPException:
    """
    将领域异常映射为 HTTP 错误。

    配置错误（未知权限/角色）与不变量冲突使用各自的 error code，
    绝不与普通的 403 拒绝混为一谈。
    """

    if isinstance(exc, ConfigurationError):
        return http_error(
            status.HTTP_404_NOT_FOUND,
            error=exc.code,
            message=exc.message,
            **exc.details,
        )
    if isinstance(exc, InvariantViolation):
        return http_error(
            status.HTTP_409_CONFLICT,
            error=exc.code,
            message=exc.message,
            **exc.details,
        )
    return http_error(
        status.HTTP_400_BAD_REQUEST,
        error=exc.code,
        message=exc.message,
        **exc.details,
    )


__all__ = [
    "bad_request",
    "conflict",
    "forbidden",
    "http_error",
    "not_found",
    "rbac_http_error",
]
