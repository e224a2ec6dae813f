"""Global exception handlers for the FastAPI application.

Domain errors map to the status code they declare; anything unhandled
is logged with its stack trace and answered with a generic 500.  Stack
traces are never sent to the client.
"""

import logging
import uuid

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.errors import format_error_response
from phase_forge.errors import PhaseForgeError

logger = logging.getLogger(__name__)


def _get_request_id(request: Request) -> str:
    """Client-supplied ``X-Request-ID`` header, else a fresh UUID-4."""
    return request.headers.get("x-request-id") or str(uuid.uuid4())


# ------------------------------------------------------------------
# Individual exception handlers
# ------------------------------------------------------------------

async def global_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """Catch-all for any unhandled exception — returns 500."""
    request_id = _get_request_id(request)
    logger.error(
        "Unhandled exception on %s %s [request_id=%s]",
        request.method,
        request.url.path,
        request_id,
        exc_info=exc,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=format_error_response(
            error="Internal Server Error",
            detail="Internal server error",
            request_id=request_id,
        ),
    )


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """Handle Starlette/FastAPI ``HTTPException`` — preserves status code."""
    request_id = _get_request_id(request)
    return JSONResponse(
        status_code=exc.status_code,
        content=format_error_response(
            error=str(exc.detail) if exc.detail else "Error",
            detail=str(exc.detail) if exc.detail else None,
            request_id=request_id,
        ),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Request-body validation errors — returns 422 with the error list."""
    request_id = _get_request_id(request)
    errors = exc.errors()
    logger.warning(
        "Validation error on %s %s [request_id=%s]: %d error(s)",
        request.method,
        request.url.path,
        request_id,
        len(errors),
    )
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=format_error_response(
            error="Validation failed",
            detail=jsonable_errors(errors),
            request_id=request_id,
        ),
    )


def jsonable_errors(errors: list) -> list[dict]:
    """Strip non-serialisable context (e.g. exception objects) from pydantic errors."""
    return [
        {k: v for k, v in err.items() if k in ("type", "loc", "msg")}
        for err in errors
    ]


async def phase_forge_error_handler(
    request: Request, exc: PhaseForgeError
) -> JSONResponse:
    """Domain :class:`PhaseForgeError` subclasses — status from the error class."""
    request_id = _get_request_id(request)
    if exc.status_code >= 500:
        logger.warning("%s on %s [request_id=%s]", exc, request.url.path, request_id)
    return JSONResponse(
        status_code=exc.status_code,
        content=format_error_response(
            error=type(exc).__name__,
            detail=exc.to_dict(),
            request_id=request_id,
        ),
    )


async def value_error_handler(
    request: Request, exc: ValueError
) -> JSONResponse:
    """Bad argument values raised below the router (e.g. unknown app type) — 400."""
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=format_error_response(
            error="Bad Request", detail=str(exc), request_id=_get_request_id(request),
        ),
    )


# ------------------------------------------------------------------
# Registration helper
# ------------------------------------------------------------------

def setup_exception_handlers(app: FastAPI) -> None:
    """Register all global exception handlers on *app*."""
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(PhaseForgeError, phase_forge_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(ValueError, value_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, global_exception_handler)  # type: ignore[arg-type]
