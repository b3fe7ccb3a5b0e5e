"""Standardised API error responses.

Usage
-----
    from onboarding_hub.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Partner not found")
    return api_error(E.VALIDATION, "partnerName is required", details={"partnerName": "required"})
    return api_error(E.CONFLICT, "Template changed", extra={"retryable": True})
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants."""

    # Validation – HTTP 400
    VALIDATION = "VALIDATION_ERROR"

    # Authentication – HTTP 401
    UNAUTHORIZED = "UNAUTHORIZED"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    SESSION_CORRUPTED = "SESSION_CORRUPTED"

    # Permissions – HTTP 403
    FORBIDDEN = "FORBIDDEN"

    # Not-found – HTTP 404
    NOT_FOUND = "NOT_FOUND"

    # Version race – HTTP 409
    CONFLICT = "CONFLICT"

    # Throttling – HTTP 429
    RATE_LIMITED = "RATE_LIMITED"

    # Server – HTTP 500
    STORAGE = "STORAGE_ERROR"
    INTERNAL = "INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION: 400,
    E.UNAUTHORIZED: 401,
    E.SESSION_EXPIRED: 401,
    E.SESSION_CORRUPTED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.CONFLICT: 409,
    E.RATE_LIMITED: 429,
    E.STORAGE: 500,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
    extra: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation, safe to show to end users.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Field-level breakdown (validation errors, conflicting version...).
    extra : dict, optional
        Additional top-level flags such as ``retryable`` or ``reauthenticate``.

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
    if extra:
        body.update(extra)

    return jsonify(body), http_status
