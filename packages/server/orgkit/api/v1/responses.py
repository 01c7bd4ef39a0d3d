"""
Response envelopes and error-to-status mapping.

Success:   {"data": ..., "meta": {"request_id", "timestamp", "version"}}
Paginated: meta also carries {"pagination": {..., "has_more"}}
Error:     {"error": {"code", "message", "details", "request_id", "timestamp"}}
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from starlette.responses import Response

from orgkit.core.errors import (
    AbortedError,
    BusinessRuleError,
    ConflictError,
    DomainError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from orgkit.core.middleware import REQUEST_ID_HEADER
from orgkit.core.result import Result
from orgkit.core.system import utcnow
from orgkit_shared.schemas.common import ErrorBody, Pagination, ResponseMeta

API_VERSION = "1.0"
INTERNAL_ERROR_MESSAGE = "An unexpected error occurred."


def _timestamp() -> str:
    return utcnow().isoformat()


def status_for(error: DomainError) -> int:
    match error:
        case ValidationError() | AbortedError():
            return 400
        case UnauthorizedError():
            return 401
        case NotFoundError():
            return 404
        case ConflictError():
            return 409
        case BusinessRuleError():
            return 422
        case _:
            return 500


def error_response(error: DomainError, request_id: str) -> JSONResponse:
    status_code = status_for(error)
    if status_code == 500:
        body = ErrorBody(
            code="INTERNAL_SERVER_ERROR",
            message=INTERNAL_ERROR_MESSAGE,
            request_id=request_id,
            timestamp=_timestamp(),
        )
    else:
        body = ErrorBody(
            code=error.code,
            message=error.message,
            details=jsonable_encoder(error.details),
            request_id=request_id,
            timestamp=_timestamp(),
        )
    return JSONResponse(
        status_code=status_code,
        content={"error": body.model_dump()},
        headers={REQUEST_ID_HEADER: request_id},
    )


def internal_error_response(request_id: str) -> JSONResponse:
    body = ErrorBody(
        code="INTERNAL_SERVER_ERROR",
        message=INTERNAL_ERROR_MESSAGE,
        request_id=request_id,
        timestamp=_timestamp(),
    )
    return JSONResponse(
        status_code=500,
        content={"error": body.model_dump()},
        headers={REQUEST_ID_HEADER: request_id},
    )


def success_response(
    data: Any,
    request_id: str,
    *,
    status_code: int = 200,
    location: Optional[str] = None,
    pagination: Optional[Pagination] = None,
) -> JSONResponse:
    meta = ResponseMeta(request_id=request_id, timestamp=_timestamp(), version=API_VERSION)
    if pagination is not None:
        meta.pagination = {
            **pagination.model_dump(),
            "has_more": pagination.page < pagination.total_pages,
        }
    headers = {REQUEST_ID_HEADER: request_id}
    if location:
        headers["Location"] = location
    return JSONResponse(
        status_code=status_code,
        content={"data": jsonable_encoder(data), "meta": meta.model_dump(exclude_none=True)},
        headers=headers,
    )


def respond(
    result: Result,
    request_id: str,
    *,
    status_code: int = 200,
    location: Optional[str] = None,
) -> Response:
    """Render a use-case ``Result``; failures go through ``error_response``."""
    if result.is_failure:
        return error_response(result.error, request_id)
    if status_code == 204:
        return Response(status_code=204, headers={REQUEST_ID_HEADER: request_id})
    return success_response(result.value, request_id, status_code=status_code, location=location)
