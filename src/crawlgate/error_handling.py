"""FastAPI error handling and request correlation utilities."""

from __future__ import annotations

import logging
import uuid
from typing import Any

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from crawlgate.errors import CrawlgateError

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


def _get_or_create_request_id(request: Request) -> str:
    existing = request.headers.get(REQUEST_ID_HEADER)
    if existing:
        return existing
    return str(uuid.uuid4())


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or _get_or_create_request_id(request)


def _http_status_to_code(status_code: int) -> str:
    # Keep this mapping small and stable; clients can branch on it.
    return {
        400: "BAD_REQUEST",
        401: "UNAUTHORIZED",
        403: "FORBIDDEN",
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
        409: "CONFLICT",
        422: "VALIDATION_ERROR",
        429: "RATE_LIMITED",
        500: "INTERNAL_ERROR",
        503: "SERVICE_UNAVAILABLE",
    }.get(status_code, "HTTP_ERROR")


def _build_error_body(
    *,
    detail: str,
    code: str,
    request_id: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    body: dict[str, Any] = {"detail": detail, "error": {"code": code, "request_id": request_id}}
    if details:
        body["error"]["details"] = jsonable_encoder(details)
    return body


def _error_response(
    request: Request,
    *,
    status_code: int,
    detail: str,
    code: str,
    details: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    request_id = _request_id(request)
    return JSONResponse(
        status_code=status_code,
        content=_build_error_body(detail=detail, code=code, request_id=request_id, details=details),
        headers={**(headers or {}), REQUEST_ID_HEADER: request_id},
    )


def install_error_handling(app: FastAPI) -> None:
    """Install request-id middleware and global exception handlers."""

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
        request_id = _get_or_create_request_id(request)
        request.state.request_id = request_id
        structlog.contextvars.bind_contextvars(request_id=request_id)
        try:
            response = await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars("request_id")
        response.headers[REQUEST_ID_HEADER] = request_id
        return response

    @app.exception_handler(CrawlgateError)
    async def crawlgate_error_handler(request: Request, exc: CrawlgateError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s (request_id=%s): %s", exc.code, _request_id(request), exc.message)
        return _error_response(
            request,
            status_code=exc.status_code,
            detail=exc.message,
            code=exc.code,
            details=exc.details,
            headers=exc.headers,
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        return _error_response(
            request, status_code=400, detail=str(exc), code="VALIDATION_ERROR"
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        detail_str = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
        return _error_response(
            request,
            status_code=exc.status_code,
            detail=detail_str,
            code=_http_status_to_code(exc.status_code),
            headers=exc.headers,
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return _error_response(
            request,
            status_code=422,
            detail="Validation error",
            code="VALIDATION_ERROR",
            details={"errors": exc.errors()},
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled exception (request_id=%s): %s", _request_id(request), exc)
        return _error_response(
            request, status_code=500, detail="Internal server error", code="INTERNAL_ERROR"
        )
