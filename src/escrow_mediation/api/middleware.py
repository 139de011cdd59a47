"""HTTP plumbing shared by every route: request tracing, error bodies, CORS.

Every failure leaves the API as {"error": <code>, "message": ..., "params": {...}}
so clients can branch on the code and localize from the params. The socket
endpoint reuses the same codes through MediationError.to_payload().
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import structlog
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from escrow_mediation.domain.exceptions import (
    ForbiddenError,
    InsufficientFundsError,
    InvalidStateTransitionError,
    MediationError,
    MediationValidationError,
    NotFoundError,
    UnauthorizedError,
)

if TYPE_CHECKING:
    from fastapi import FastAPI, Request, Response

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# Checked in order; subclasses must come before their bases.
STATUS_CODES: tuple[tuple[type[MediationError], int], ...] = (
    (UnauthorizedError, 401),
    (InsufficientFundsError, 402),
    (ForbiddenError, 403),
    (NotFoundError, 404),
    (InvalidStateTransitionError, 409),
    (MediationValidationError, 422),
)


def status_code_for(exc: MediationError) -> int:
    return next((code for exc_type, code in STATUS_CODES if isinstance(exc, exc_type)), 400)


def error_body(code: str, message: str, params: dict | None = None) -> dict:
    return {"error": code, "message": message, "params": params or {}}


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Tag the request, its log entries and its response with one request id.

    A client-supplied X-Request-ID is kept so traces can span services.
    Unexpected exceptions are turned into a 500 here, inside the bound
    context, so the traceback is logged with the request id attached.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id, method=request.method, path=request.url.path
        )
        try:
            response = await call_next(request)
        except Exception:
            logger.exception("http.unhandled_error")
            response = JSONResponse(
                status_code=500,
                content=error_body("INTERNAL_ERROR", "An unexpected error occurred"),
            )
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


async def handle_mediation_error(request: Request, exc: MediationError) -> JSONResponse:
    status_code = status_code_for(exc)
    logger.warning("http.domain_error", status=status_code, code=exc.code, params=exc.params)
    return JSONResponse(
        status_code=status_code, content=error_body(exc.code, exc.message, exc.params)
    )


def _describe(error: dict) -> dict:
    return {"loc": [str(part) for part in error.get("loc", ())], "msg": error.get("msg")}


async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies and path parameters get the same shape as domain validation."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ())[1:]) or None
    logger.info("http.request_invalid", field=field, count=len(errors))
    return JSONResponse(
        status_code=422,
        content=error_body(
            "VALIDATION_ERROR",
            first.get("msg", "Invalid request"),
            {"field": field, "errors": [_describe(e) for e in errors]},
        ),
    )


def setup_middleware(app: FastAPI) -> None:
    """Register handlers and middleware. The last middleware added runs outermost."""
    app.add_exception_handler(MediationError, handle_mediation_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER],
    )
    app.add_middleware(RequestIDMiddleware)
