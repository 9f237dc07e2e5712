from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from scoped_rbac.api.v1.admin_catalogue_routes import router as admin_catalogue_router
from scoped_rbac.api.v1.admin_role_routes import router as admin_role_router
from scoped_rbac.api.v1.rbac_routes import router as rbac_router
from scoped_rbac.errors import rbac_http_error
from scoped_rbac.exceptions import RBACError
from scoped_rbac.logging_config import logger
from scoped_rbac.redis_client import close_redis_client
from scoped_rbac.settings import settings


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info("scoped_rbac starting (environment=%s)", settings.environment)
    try:
        yield
    finally:
        close_redis_client()
        logger.info("scoped_rbac stopped")


async def _rbac_error_handler(request: Request, exc: RBACError) -> JSONResponse:
    # 路由未显式捕获的领域异常统一在这里映射，避免退化成 500
    http_exc = rbac_http_error(exc)
    return JSONResponse(status_code=http_exc.status_code, content={"detail": http_exc.detail})


def create_app() -> FastAPI:
    app = FastAPI(title="Scoped RBAC", version="0.1.0", lifespan=lifespan)
    app.add_exception_handler(RBACError, _rbac_error_handler)

    app.include_router(rbac_router)
    app.include_router(admin_catalogue_router)
    app.include_router(admin_role_router)

    @app.get("/health", tags=["system"])
    def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()


__all__ = ["app", "create_app"]
