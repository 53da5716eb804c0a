import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ...domain.errors import AuthError

logger = structlog.get_logger(__name__)


def error_response(exc: AuthError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.error_code, "detail": exc.message},
    )


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError):
        log = logger.error if exc.status_code >= 500 else logger.warning
        log("auth_error", path=request.url.path, error=exc.error_code, status_code=exc.status_code)
        return error_response(exc)

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        # текст исключения только в лог, клиенту фиксированное сообщение
        logger.warning("invalid_request", path=request.url.path, error=str(exc))
        return JSONResponse(
            status_code=400,
            content={"error": "invalid_request", "detail": "Invalid request"},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("unhandled_error", path=request.url.path)
        return JSONResponse(
            status_code=500,
            content={"error": "internal_error", "detail": "Internal server error"},
        )
