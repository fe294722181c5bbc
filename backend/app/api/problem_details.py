"""RFC 7807 problem responses.

Every error body carries ``request_id`` and, for rule violations, a stable
machine-readable ``code`` so clients can branch without parsing ``detail``.
"""

import uuid
from http import HTTPStatus
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from app.domain.errors import DomainError

PROBLEM_BASE = "https://work-orders.example.com/problems"
PROBLEM_TYPE_VALIDATION = f"{PROBLEM_BASE}/validation-error"
PROBLEM_TYPE_UNAUTHORIZED = f"{PROBLEM_BASE}/unauthorized"
PROBLEM_TYPE_FORBIDDEN = f"{PROBLEM_BASE}/forbidden"
PROBLEM_TYPE_NOT_FOUND = f"{PROBLEM_BASE}/not-found"
PROBLEM_TYPE_CONFLICT = f"{PROBLEM_BASE}/conflict"
PROBLEM_TYPE_DOMAIN = f"{PROBLEM_BASE}/domain-error"
PROBLEM_TYPE_SERVER = f"{PROBLEM_BASE}/server-error"

_TYPE_BY_STATUS = {
    401: PROBLEM_TYPE_UNAUTHORIZED,
    403: PROBLEM_TYPE_FORBIDDEN,
    404: PROBLEM_TYPE_NOT_FOUND,
    409: PROBLEM_TYPE_CONFLICT,
    422: PROBLEM_TYPE_VALIDATION,
}


def _resolve_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID")
    if not request_id:
        request_id = str(uuid.uuid4())
    request.state.request_id = request_id
    return request_id


def problem_type_for(status_code: int) -> str:
    if status_code >= 500:
        return PROBLEM_TYPE_SERVER
    return _TYPE_BY_STATUS.get(status_code, PROBLEM_TYPE_DOMAIN)


def _resolve_title(status_code: int, fallback: str | None) -> str:
    if fallback:
        return fallback
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Error"


def problem_details(
    request: Request,
    *,
    status: int,
    title: str | None,
    detail: str,
    errors: list[dict[str, Any]] | None = None,
    type_: str | None = None,
    code: str | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    request_id = _resolve_request_id(request)
    content: dict[str, Any] = {
        "type": type_ or problem_type_for(status),
        "title": _resolve_title(status, title),
        "status": status,
        "detail": detail,
        "request_id": request_id,
        "errors": errors or [],
    }
    if code:
        content["code"] = code
    response = JSONResponse(
        status_code=status,
        content=content,
        headers=headers,
        media_type="application/problem+json",
    )
    response.headers.setdefault("X-Request-ID", request_id)
    return response


def domain_problem(request: Request, exc: DomainError) -> JSONResponse:
    return problem_details(
        request,
        status=exc.status,
        title=exc.title,
        detail=exc.detail,
        errors=exc.errors,
        code=exc.code,
    )
