# 异常 -> HTTP 错误响应
import logging
from datetime import datetime, timezone
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..database.repositories import RepositoryError
from ..exceptions import (
    GradingError, ValidationError, NotFoundError, ConfigurationError, MalformedInputError
)

logger = logging.getLogger(__name__)

STATUS_CODES = {
    ValidationError: 422,
    NotFoundError: 404,
    ConfigurationError: 500,
    MalformedInputError: 400,
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def error_body(code: str, message: str) -> dict:
    return {"error": {"code": code, "message": message}, "generated_at": _now_iso()}


def status_for(exc: GradingError) -> int:
    for error_type, status_code in STATUS_CODES.items():
        if isinstance(exc, error_type):
            return status_code
    return 400


def request_error_message(exc: RequestValidationError) -> str:
    """把请求校验错误压缩为一行：字段位置: 原因"""
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()))
        parts.append(f"{location}: {error.get('msg', 'invalid value')}")
    return "; ".join(parts) or "Invalid request"


def add_error_handlers(app: FastAPI):
    @app.exception_handler(GradingError)
    async def grading_error_handler(request: Request, exc: GradingError):
        status_code = status_for(exc)
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} 配置错误: {exc.message}")
        return JSONResponse(status_code=status_code, content=error_body(exc.code, exc.message))

    @app.exception_handler(RepositoryError)
    async def repository_error_handler(request: Request, exc: RepositoryError):
        logger.error(f"{request.method} {request.url.path} 存储错误: {exc}")
        return JSONResponse(status_code=500, content=error_body("STORAGE_ERROR", str(exc)))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content=error_body("REQUEST_VALIDATION_ERROR", request_error_message(exc))
        )
