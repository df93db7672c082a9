"""Exception handlers mapping domain errors to the JSON error envelope.

Every error response has the shape ``{"success": false, "message": ...}``
plus ``code`` and, where the error carries one, ``data``.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse

from src.services.errors import SafelineError

logger = structlog.get_logger(__name__)


def error_body(message: str, *, code: str | None = None, data: dict[str, Any] | None = None) -> dict[str, Any]:
    body: dict[str, Any] = {"success": False, "message": message}
    if code is not None:
        body["code"] = code
    if data is not None:
        body["data"] = data
    return body


def error_response(exc: SafelineError, *, status_code: int | None = None) -> ORJSONResponse:
    return ORJSONResponse(
        status_code=status_code or exc.status_code,
        content=error_body(exc.message, code=exc.code, data=exc.data),
    )


def _describe_validation(exc: RequestValidationError) -> str:
    missing: list[str] = []
    invalid: list[str] = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        name = ".".join(loc) or "body"
        if err.get("type") == "missing":
            missing.append(name)
        else:
            invalid.append(name)
    if missing:
        return f"Missing required fields: {', '.join(missing)}"
    return f"Invalid fields: {', '.join(invalid)}"


async def _safeline_error_handler(request: Request, exc: SafelineError) -> ORJSONResponse:
    logger.info(
        "api.request_rejected",
        path=request.url.path,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
    )
    return error_response(exc)


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    message = _describe_validation(exc)
    logger.info("api.validation_failed", path=request.url.path, message=message)
    return ORJSONResponse(status_code=400, content=error_body(message, code="validation_error"))


async def _unhandled_error_handler(request: Request, exc: Exception) -> ORJSONResponse:
    logger.error("api.unhandled_error", path=request.url.path, exc_info=exc)
    return ORJSONResponse(
        status_code=500,
        content=error_body("Internal server error", code="internal_error"),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(SafelineError, _safeline_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _unhandled_error_handler)
