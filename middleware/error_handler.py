"""
Error envelopes and correlation IDs for the status API
"""

import logging
import time
import uuid
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from errors.exceptions import MinterError

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"

# MinterError.code -> HTTP status; anything unlisted is a 500
STATUS_CODE_MAP = {
    "SOURCE_ERROR": 502,
    "COMMAND_ERROR": 502,
    "DELEGATION_ERROR": 502,
    "INSUFFICIENT_FUNDS": 409,
    "ALREADY_PROCESSED": 409,
    "NOT_READY": 503,
}


def _correlation_id(request: Request) -> Optional[str]:
    return getattr(request.state, "correlation_id", None)


async def add_correlation_id_middleware(request: Request, call_next):
    """Reuse the caller's correlation ID or mint one, and echo it back"""
    correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
    request.state.correlation_id = correlation_id
    response = await call_next(request)
    response.headers[CORRELATION_HEADER] = correlation_id
    return response


def error_response(code: str, message: str, status_code: int,
                   correlation_id: Optional[str] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "code": code,
                "message": message,
                "correlation_id": correlation_id,
                "timestamp": int(time.time() * 1000),
            }
        },
    )


async def minter_error_handler(request: Request, exc: MinterError) -> JSONResponse:
    status_code = STATUS_CODE_MAP.get(exc.code, 500)
    level = logging.ERROR if status_code >= 500 and status_code != 503 else logging.WARNING
    logger.log(
        level,
        f"{request.url.path} -> {status_code}: {exc.message}",
        extra={"error_code": exc.code, "correlation_id": _correlation_id(request)},
    )
    return error_response(exc.code, exc.message, status_code, _correlation_id(request))


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return error_response("HTTP_ERROR", str(exc.detail), exc.status_code, _correlation_id(request))


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        f"Unhandled {type(exc).__name__} on {request.url.path}: {exc}",
        exc_info=exc,
        extra={"correlation_id": _correlation_id(request)},
    )
    return error_response("INTERNAL_ERROR", "Internal server error", 500, _correlation_id(request))


def setup_error_handlers(app):
    app.middleware("http")(add_correlation_id_middleware)
    app.add_exception_handler(MinterError, minter_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
