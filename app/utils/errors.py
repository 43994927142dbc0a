"""Standardised API error responses for the DMAIC workflow API.

Body shape: ``{"error": <message>, "code": <E.*>, "details": {...}}``

    from app.utils.errors import api_error, exception_response, E

    return api_error(E.VALIDATION_REQUIRED, "status is required")
    return exception_response(exc)   # any app.core.exceptions error
"""

from __future__ import annotations

from flask import jsonify


class E:
    """Machine-readable error codes.

     • ERR_    generic application errors
     • DMAIC_  workflow-engine errors
    """

    # 400 / 422
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    INVALID_FIELD_RANGE = "DMAIC_INVALID_FIELD_RANGE"

    # 404
    NOT_FOUND = "ERR_NOT_FOUND"
    PROJECT_NOT_FOUND = "DMAIC_PROJECT_NOT_FOUND"

    # 409
    CONFLICT_STATE = "ERR_CONFLICT_STATE"
    PHASE_MISMATCH = "DMAIC_PHASE_MISMATCH"
    GATE_NOT_SATISFIED = "DMAIC_GATE_NOT_SATISFIED"
    PROJECT_COMPLETED = "DMAIC_PROJECT_COMPLETED"
    CONCURRENT_TRANSITION = "DMAIC_CONCURRENT_TRANSITION"

    # 500 / 503
    INTERNAL = "ERR_INTERNAL"
    REPOSITORY_UNAVAILABLE = "DMAIC_REPOSITORY_UNAVAILABLE"


_STATUS_BY_CODE: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 422,
    E.INVALID_FIELD_RANGE: 422,
    E.NOT_FOUND: 404,
    E.PROJECT_NOT_FOUND: 404,
    E.CONFLICT_STATE: 409,
    E.PHASE_MISMATCH: 409,
    E.GATE_NOT_SATISFIED: 409,
    E.PROJECT_COMPLETED: 409,
    E.CONCURRENT_TRANSITION: 409,
    E.INTERNAL: 500,
    E.REPOSITORY_UNAVAILABLE: 503,
}


def status_for(code: str) -> int:
    """HTTP status for an error code; 400 when the code is unknown."""
    return _STATUS_BY_CODE.get(code, 400)


def api_error(code: str, message: str, *, status: int | None = None, details: dict | None = None):
    """``(jsonify(body), status)`` for a Flask view; ``details`` omitted when empty."""
    body: dict = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or status_for(code)


def exception_response(exc: Exception):
    """Render a service-layer exception through its ``code`` and ``details``."""
    return api_error(getattr(exc, "code", E.INTERNAL), str(exc),
                     details=getattr(exc, "details", None))
