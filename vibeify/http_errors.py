from __future__ import annotations

import logging
from collections.abc import Mapping

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .errors import UpstreamRateLimited, VibeifyError

log = logging.getLogger(__name__)


def error_response(
    code: str,
    message: str,
    *,
    status: int,
    headers: Mapping[str, str] | None = None,
) -> JSONResponse:
    """Standard error body: ``{"error": message, "code": code}``."""
    hdrs = {"X-Error-Code": code}
    if headers:
        hdrs.update(dict(headers))
    return JSONResponse({"error": message, "code": code}, status_code=status, headers=hdrs)


async def handle_vibeify_error(request: Request, exc: VibeifyError) -> JSONResponse:
    headers = {}
    if isinstance(exc, UpstreamRateLimited) and exc.retry_after is not None:
        headers["Retry-After"] = str(exc.retry_after)
    level = logging.ERROR if exc.status_code >= 500 else logging.INFO
    log.log(
        level,
        "request failed",
        extra={
            "meta": {
                "path": request.url.path,
                "code": exc.code,
                "status_code": exc.status_code,
                "upstream_status": getattr(exc, "upstream_status", None),
            }
        },
    )
    return error_response(exc.code, exc.message, status=exc.status_code, headers=headers)


async def handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    detail = exc.detail if isinstance(exc.detail, str) else "Request failed"
    code = {404: "not_found", 405: "method_not_allowed"}.get(exc.status_code, "http_error")
    return error_response(code, detail, status=exc.status_code, headers=getattr(exc, "headers", None))


async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p not in ("query", "path", "body"))
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return error_response("invalid_request", "; ".join(parts) or "Invalid request", status=400)


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    log.exception("unhandled error", extra={"meta": {"path": request.url.path}})
    return error_response("internal_error", "Internal Server Error", status=500)


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(VibeifyError, handle_vibeify_error)
    app.add_exception_handler(StarletteHTTPException, handle_http_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)
