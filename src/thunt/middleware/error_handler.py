"""Exception handlers: every error leaves the API as ``{"detail": ...}`` JSON."""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from thunt.hunts.errors import HuntError

logger = structlog.get_logger()

# Seconds a client should wait before repeating a request that lost a race.
RETRY_AFTER_SECONDS = 1


def _hunt_error_response(request: Request, exc: HuntError) -> JSONResponse:
    headers: dict[str, str] = {}
    if exc.retryable:
        headers["Retry-After"] = str(RETRY_AFTER_SECONDS)
        logger.warning(
            "hunt_request_retryable",
            path=request.url.path,
            error_type=type(exc).__name__,
            error=exc.message,
        )
    elif exc.status_code >= 500:
        logger.error("hunt_request_failed", path=request.url.path, error=exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message}, headers=headers or None)


def setup_error_handlers(app: FastAPI) -> None:
    """Register exception handlers on ``app``."""

    @app.exception_handler(HuntError)
    async def hunt_error_handler(request: Request, exc: HuntError) -> JSONResponse:
        return _hunt_error_response(request, exc)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        """Body or query failed schema validation (e.g. hint level 0, answer too long)."""
        return JSONResponse(
            status_code=422,
            content={"detail": "Validation error", "errors": jsonable_errors(exc)},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    """Field errors without the raw ``input``/``ctx`` values (answers are not echoed back)."""
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]
