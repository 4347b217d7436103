# auctionhouse/api/errors.py
"""
에러 → HTTP 응답 변환 경계

- DomainError: ErrorKind 기준 상태 코드 한 번에 매핑
- RequestValidationError: 400 VALIDATION_FAILED + 필드별 메시지
- Starlette HTTPException (404 라우트 없음, 405 등): 공통 형식으로
- 그 외 예외: 500 INTERNAL_ERROR, 내부 정보 없이 correlation_id 만 노출
"""
from __future__ import annotations

import logging
import uuid
from http import HTTPStatus
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from auctionhouse.core.errors import DomainError, ErrorCode, ErrorKind
from auctionhouse.core.logging import correlation_id_var, get_logger
from auctionhouse.db.types import utcnow
from auctionhouse.schemas.common import ErrorResponse

logger: logging.Logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

STATUS_BY_KIND: Dict[ErrorKind, int] = {
    ErrorKind.not_found: 404,
    ErrorKind.business_rule: 409,
    ErrorKind.unauthorized: 401,
    ErrorKind.forbidden: 403,
    ErrorKind.validation: 400,
    ErrorKind.transient_conflict: 409,
    ErrorKind.internal: 500,
}

INTERNAL_MESSAGE = "An unexpected error occurred. Please contact support with the correlation id."


def _correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", None) or correlation_id_var.get()


def error_response(
    request: Request,
    status: int,
    code: str,
    message: str,
    *,
    details: Optional[Dict[str, str]] = None,
    context: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    cid = _correlation_id(request)
    body = ErrorResponse(
        timestamp=utcnow(),
        status=status,
        error=HTTPStatus(status).phrase,
        message=message,
        error_code=code,
        path=request.url.path,
        details=details,
        context=context or None,
        correlation_id=cid,
    )
    return JSONResponse(
        status_code=status,
        content=body.model_dump(mode="json", exclude_none=True),
        headers={REQUEST_ID_HEADER: cid, **(headers or {})},
    )


# ---------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------
async def handle_domain_error(request: Request, exc: DomainError) -> JSONResponse:
    status = STATUS_BY_KIND[exc.kind]
    headers = None
    if exc.kind is ErrorKind.transient_conflict:
        headers = {"Retry-After": "1"}
        logger.warning("Transient conflict on %s: %s %s", request.url.path, exc.message, exc.context)
    elif exc.kind is ErrorKind.internal:
        logger.error("Internal error on %s: %s", request.url.path, exc.message)
    else:
        logger.warning("%s on %s: %s", exc.code.value, request.url.path, exc.message)
    return error_response(request, status, exc.code.value, exc.message,
                          details=exc.details, context=exc.context, headers=headers)


async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    details: Dict[str, str] = {}
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path", "header")]
        details[".".join(loc) or "request"] = err.get("msg", "invalid value")
    logger.warning("Request validation failed on %s: %s", request.url.path, details)
    return error_response(request, 400, ErrorCode.VALIDATION_FAILED.value, "Request validation failed",
                          details=details)


async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == 404:
        code = "RESOURCE_NOT_FOUND"
    elif exc.status_code == 405:
        code = "METHOD_NOT_ALLOWED"
    else:
        code = "HTTP_ERROR"
    return error_response(request, exc.status_code, code, str(exc.detail), headers=getattr(exc, "headers", None))


async def correlation_middleware(request: Request, call_next):
    """
    요청마다 correlation id 부여 (X-Request-ID 가 있으면 그대로 사용).
    처리되지 않은 예외는 여기서 500 으로 바꾼다.
    """
    cid = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
    request.state.correlation_id = cid
    token = correlation_id_var.set(cid)
    try:
        response = await call_next(request)
    except Exception:
        logger.exception("Unexpected error on %s %s", request.method, request.url.path)
        response = error_response(request, 500, ErrorCode.INTERNAL_ERROR.value, INTERNAL_MESSAGE)
    finally:
        correlation_id_var.reset(token)
    response.headers[REQUEST_ID_HEADER] = cid
    return response


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DomainError, handle_domain_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)
    app.middleware("http")(correlation_middleware)
