"""Error kind to HTTP status mapping and the JSON error shape."""

from __future__ import annotations

from fastapi.responses import JSONResponse

_STATUS_BY_KIND = {
    "not_found": 404,
    "conflict": 409,
    "invalid_transition": 409,
    "validation_error": 422,
    "render_error": 422,
    "syntax_error": 422,
    "reload_error": 502,
    "issuer_error": 502,
    "store_error": 503,
    "status_unavailable": 503,
    "activation_error": 500,
    "internal_error": 500,
}


def status_for(kind: str | None) -> int:
    return _STATUS_BY_KIND.get(kind or "", 500)


def error_response(kind: str, message: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_for(kind),
        content={"error": kind, "message": message, **extra},
    )
