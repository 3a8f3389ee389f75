"""Standardised API error responses.

Usage
-----
    from leanflow.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Future state not found")
    return api_error(E.VALIDATION_REQUIRED, "future_state_id is required")
    return api_error(E.CONFLICT_REVISION, str(exc), details={"current_revision": 4})
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants (``ERR_`` prefix)."""

    # Malformed request – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Business-rule violation – HTTP 422
    VALIDATION_CONSTRAINT = "ERR_VALIDATION_CONSTRAINT"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_REVISION = "ERR_CONFLICT_REVISION"
    CONFLICT_LOCKED = "ERR_CONFLICT_LOCKED"

    # Auth / quota
    UNAUTHORIZED = "ERR_UNAUTHORIZED"
    RATE_LIMITED = "ERR_RATE_LIMITED"

    # Upstream generation capability – HTTP 502
    UPSTREAM = "ERR_UPSTREAM"

    # Server – HTTP 500
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_CONSTRAINT: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_REVISION: 409,
    E.CONFLICT_LOCKED: 409,
    E.UNAUTHORIZED: 401,
    E.RATE_LIMITED: 429,
    E.UPSTREAM: 502,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """JSON error body ``{"error", "code", "details"?}`` with its HTTP status.

    ``status`` overrides the code's default status (400 for unmapped
    codes). ``details`` carries structured context such as the current
    revision of a stale node or the id of a failed agent run.
    """
    body: dict = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or _DEFAULT_STATUS.get(code, 400)


def register_error_handlers(bp) -> None:
    """Attach the shared service-exception → HTTP mapping to a blueprint."""
    import logging

    from flask import request
    from werkzeug.exceptions import HTTPException

    from leanflow.core.exceptions import (
        ConflictError, LockedError, NotFoundError,
        StaleRevisionError, UpstreamError, ValidationError,
    )

    logger = logging.getLogger(bp.import_name)

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_CONSTRAINT, str(error), details=error.details)

    @bp.errorhandler(StaleRevisionError)
    def _handle_stale(error: StaleRevisionError):
        return api_error(
            E.CONFLICT_REVISION, str(error),
            details={"expected_revision": error.expected, "current_revision": error.current},
        )

    @bp.errorhandler(LockedError)
    def _handle_locked(error: LockedError):
        return api_error(E.CONFLICT_LOCKED, str(error))

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(E.CONFLICT_DUPLICATE, str(error))

    @bp.errorhandler(UpstreamError)
    def _handle_upstream(error: UpstreamError):
        return api_error(E.UPSTREAM, str(error), details={"run_id": error.run_id})

    @bp.errorhandler(429)
    def _handle_limiter(error):
        return api_error(E.RATE_LIMITED, "Too many requests",
                         details={"retry_after": getattr(error, "description", None)})

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return api_error(E.VALIDATION_INVALID, error.description or error.name, status=error.code)
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")
