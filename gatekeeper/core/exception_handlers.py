"""Centralized exception handlers for the FastAPI app.

Register with register_exception_handlers(app). Every body has the stable
shape {error, code}; internal detail is logged, never returned.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import Response

from gatekeeper.core.policy_gate import GateShortCircuit
from gatekeeper.domain.enums import ErrorCode
from gatekeeper.domain.exceptions import GatekeeperException, public_message

logger = logging.getLogger(__name__)

_HTTP_STATUS_CODES: dict[int, ErrorCode] = {
    400: ErrorCode.VALIDATION_ERROR,
    401: ErrorCode.INVALID_AUTH_TOKEN,
    403: ErrorCode.INSUFFICIENT_PRIVILEGES,
    405: ErrorCode.METHOD_NOT_ALLOWED,
    429: ErrorCode.RATE_LIMIT_EXCEEDED,
}


def _error_body(code: ErrorCode) -> dict[str, str]:
    return {"error": public_message(code), "code": code.value}


def _gatekeeper_exception_handler(request: Request, exc: GatekeeperException) -> JSONResponse:
    """Return JSON from GatekeeperException.to_dict() with the code's status."""
    if exc.status_code >= 500:
        logger.error("%s: %s", exc.error_code, exc.message)
    else:
        logger.info("%s: %s", exc.error_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def _gate_short_circuit_handler(request: Request, exc: GateShortCircuit) -> Response:
    """Return the response the policy gate already built."""
    return exc.response


def _validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 VALIDATION_ERROR; field errors are logged, not echoed."""
    logger.info("Request validation failed on %s: %s", request.url.path, exc.errors())
    return JSONResponse(status_code=400, content=_error_body(ErrorCode.VALIDATION_ERROR))


def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Return the stable error shape for framework HTTP errors (404, 405 on unknown routes)."""
    code = _HTTP_STATUS_CODES.get(exc.status_code)
    if code is None:
        message = "Not found" if exc.status_code == 404 else "Request failed"
        content = {"error": message, "code": "HTTP_ERROR"}
    else:
        content = _error_body(code)
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


def _generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Return 500 SYSTEM_UNAVAILABLE with generic text."""
    logger.exception("Unhandled exception: %s", exc)
    return JSONResponse(status_code=500, content=_error_body(ErrorCode.SYSTEM_UNAVAILABLE))


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the FastAPI app.

    Call once after creating the app. Handlers: GateShortCircuit,
    GatekeeperException (and subclasses), RequestValidationError,
    StarletteHTTPException, generic Exception.
    """
    app.add_exception_handler(GateShortCircuit, _gate_short_circuit_handler)
    app.add_exception_handler(GatekeeperException, _gatekeeper_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(Exception, _generic_exception_handler)
