"""
FastAPI 应用配置

配置 CORS、异常处理、静态文件托管、路由注册。
"""

import logging
from pathlib import Path

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from .. import __version__
from ..config import get_config
from ..errors import NotFoundOrUnauthorized, ValidationError, WriteError
from .routers import agents, vouches

logger = logging.getLogger(__name__)


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def register_exception_handlers(app: FastAPI):
    """业务异常统一转换为 {"error": ...} 响应"""

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return _error_response(status.HTTP_400_BAD_REQUEST, str(exc))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
        return _error_response(status.HTTP_400_BAD_REQUEST, message)

    @app.exception_handler(NotFoundOrUnauthorized)
    async def not_found_handler(request: Request, exc: NotFoundOrUnauthorized):
        return _error_response(status.HTTP_404_NOT_FOUND, str(exc))

    @app.exception_handler(WriteError)
    async def write_error_handler(request: Request, exc: WriteError):
        logger.error(f"Storage write failed: {exc}")
        return _error_response(status.HTTP_503_SERVICE_UNAVAILABLE, "Storage unavailable")


def create_app() -> FastAPI:
    """
    创建 FastAPI 应用实例

    配置：
    - CORS 中间件
    - 异常处理
    - API 路由
    - 静态文件托管（前端，可选）
    """
    config = get_config()

    app = FastAPI(
        title="MoltCities Analytics",
        description="MoltCities 快照、趋势与担保排行 API",
        version=__version__,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json"
    )

    # CORS 中间件
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    # 注册路由
    app.include_router(agents.router)
    app.include_router(vouches.router)

    # 静态文件托管（前端）
    if config.api.frontend_enabled:
        frontend_path = Path(config.api.frontend_path)
        if frontend_path.exists():
            app.mount("/", StaticFiles(directory=str(frontend_path), html=True), name="frontend")
            logger.info(f"Serving frontend from {frontend_path}")
        else:
            logger.warning(f"Frontend path not found: {frontend_path}")

    return app
