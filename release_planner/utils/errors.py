"""JSON error bodies for the REST layer.

Every error response has the shape ``{"error": str, "code": str, "details"?: dict}``.
Codes are stable strings clients can branch on; the HTTP status is derived
from the code unless overridden.

    return api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
"""

from __future__ import annotations

from flask import jsonify


class E:
    """Error codes."""

    # 400: request body is malformed before it reaches a service
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # 422: service rejected well-formed input (dates, versions, phase ids)
    VALIDATION_CONSTRAINT = "ERR_VALIDATION_CONSTRAINT"

    NOT_FOUND = "ERR_NOT_FOUND"

    # 409: duplicate plan name / stale updated_at token
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"

    INTERNAL = "ERR_INTERNAL"


_STATUS_BY_CODE: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_CONSTRAINT: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.INTERNAL: 500,
}


def api_error(code: str, message: str, *, status: int | None = None, details: dict | None = None):
    """Return ``(response, status)`` for *code*; unknown codes map to 400."""
    body: dict = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or _STATUS_BY_CODE.get(code, 400)
