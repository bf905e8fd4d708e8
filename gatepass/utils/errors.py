"""Standardised API error responses.

Usage
-----
    from gatepass.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Pass not found")
    return api_error(E.VALIDATION_INVALID, "purpose is required",
                     details={"purpose": "required"})
"""

from __future__ import annotations

from flask import jsonify

from gatepass.core.exceptions import (
    ConflictError,
    GatePassError,
    InvalidStateError,
    NotFoundError,
    StoreUnavailableError,
    ValidationError,
)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants."""

    # Validation – HTTP 400
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_OPEN_PASS = "ERR_CONFLICT_OPEN_PASS"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"

    # Server – HTTP 5xx
    STORE_UNAVAILABLE = "ERR_STORE_UNAVAILABLE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_INVALID: 400,
    E.NOT_FOUND: 404,
    E.CONFLICT_OPEN_PASS: 409,
    E.CONFLICT_STATE: 409,
    E.STORE_UNAVAILABLE: 503,
    E.INTERNAL: 500,
}

_CODE_BY_EXCEPTION: list[tuple[type[GatePassError], str]] = [
    (ValidationError, E.VALIDATION_INVALID),
    (NotFoundError, E.NOT_FOUND),
    (ConflictError, E.CONFLICT_OPEN_PASS),
    (InvalidStateError, E.CONFLICT_STATE),
    (StoreUnavailableError, E.STORE_UNAVAILABLE),
]


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for operators / UI.
    status : int, optional
        HTTP status override. Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Field-level breakdown for validation failures.

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """
    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def error_from_exception(error: GatePassError):
    """Render a service exception with its code and HTTP status."""
    code = next((c for cls, c in _CODE_BY_EXCEPTION if isinstance(error, cls)), E.INTERNAL)
    return api_error(
        code,
        str(error),
        status=error.http_status,
        details=getattr(error, "details", None),
    )
