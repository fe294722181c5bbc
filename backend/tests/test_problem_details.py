import json

from starlette.requests import Request

from app.api.problem_details import (
    PROBLEM_TYPE_CONFLICT,
    PROBLEM_TYPE_DOMAIN,
    PROBLEM_TYPE_SERVER,
    PROBLEM_TYPE_VALIDATION,
    domain_problem,
    problem_details,
)
from app.domain.errors import ConflictError, NotFoundError


def _build_request(headers: list[tuple[bytes, bytes]] | None = None) -> Request:
    scope = {"type": "http", "headers": headers or [], "path": "/test", "method": "GET"}
    return Request(scope)


def test_problem_details_422_maps_to_validation_type():
    response = problem_details(request=_build_request(), status=422, title=None, detail="Validation failed")
    payload = json.loads(response.body)

    assert payload["type"] == PROBLEM_TYPE_VALIDATION
    assert payload["status"] == 422
    assert payload["title"] == "Unprocessable Entity"
    assert payload["request_id"]
    assert "code" not in payload


def test_problem_details_unmapped_status_uses_domain_type():
    response = problem_details(request=_build_request(), status=400, title=None, detail="Bad request")
    payload = json.loads(response.body)

    assert payload["type"] == PROBLEM_TYPE_DOMAIN
    assert payload["errors"] == []
    assert response.media_type == "application/problem+json"


def test_domain_problem_carries_code_and_errors():
    exc = NotFoundError(
        detail="Unknown workers",
        code="workers_not_found",
        errors=[{"worker_id": 9, "message": "not found"}],
    )
    payload = json.loads(domain_problem(_build_request(), exc).body)

    assert payload["status"] == 404
    assert payload["title"] == "Not Found"
    assert payload["code"] == "workers_not_found"
    assert payload["errors"] == [{"worker_id": 9, "message": "not found"}]

    conflict = json.loads(domain_problem(_build_request(), ConflictError(detail="x", code="order_terminal")).body)
    assert conflict["type"] == PROBLEM_TYPE_CONFLICT


def test_problem_details_server_errors_and_request_id_header():
    request = _build_request([(b"x-request-id", b"req-abc")])
    response = problem_details(request=request, status=503, title="Unavailable", detail="Down")
    payload = json.loads(response.body)

    assert payload["type"] == PROBLEM_TYPE_SERVER
    assert payload["request_id"] == "req-abc"
    assert response.headers["X-Request-ID"] == "req-abc"
