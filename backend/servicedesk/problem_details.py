"""RFC 7807 Problem Details helpers."""
from __future__ import annotations

from http import HTTPStatus

from fastapi.responses import JSONResponse

from .domain_errors import DomainError


def build_problem_details_response(exc: DomainError, *, include_internal: bool = False) -> JSONResponse:
    """Render DomainError as RFC 7807 payload with stable domain code.

    ``include_internal`` adds the failed predicate for audit (admin callers).
    """
    try:
        title = HTTPStatus(exc.http_status).phrase
    except ValueError:
        title = "Domain Error"

    payload: dict[str, object] = {
        "type": f"https://api.servicedesk.local/problems/{exc.code.lower()}",
        "title": title,
        "status": exc.http_status,
        "detail": exc.message,
        "code": exc.code,
        "kind": exc.kind,
    }
    if exc.details is not None:
        payload["details"] = exc.details
    if include_internal and exc.predicate:
        payload["predicate"] = exc.predicate

    return JSONResponse(
        status_code=exc.http_status,
        content=payload,
        media_type="application/problem+json",
    )
