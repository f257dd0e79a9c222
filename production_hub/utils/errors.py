"""Standardised API error responses.

Usage
-----
    from production_hub.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Project not found")
    return api_error(E.VALIDATION_REQUIRED, "name is required")
    return api_error(E.CONFLICT_STATE, "Invalid transition", details={"current": "pending"})
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Convention:
     • ERR_  prefix for standard application errors
    """

    # Validation – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Business rule – HTTP 422
    VALIDATION_RULE = "ERR_VALIDATION_RULE"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict / duplicate – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"
    CONFLICT_LAST_ASSIGNEE = "ERR_CONFLICT_LAST_ASSIGNEE"

    # Server – HTTP 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_RULE: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.CONFLICT_LAST_ASSIGNEE: 409,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}


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
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (field errors, current status, etc.).

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


def register_error_handlers(bp) -> None:
    """Translate service-layer exceptions into ``api_error`` bodies for *bp*.

    Every blueprint that calls into the workflow services registers these
    once, so views only deal with the happy path and malformed input.
    """
    import logging

    from production_hub.core.exceptions import (
        ConflictError,
        InvalidTransitionError,
        LastAssigneeError,
        NotFoundError,
        ValidationError,
    )
    from production_hub.models import db

    logger = logging.getLogger(bp.import_name)

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        db.session.rollback()
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        db.session.rollback()
        return api_error(E.VALIDATION_RULE, str(error), details=error.details)

    @bp.errorhandler(InvalidTransitionError)
    def _handle_transition(error: InvalidTransitionError):
        db.session.rollback()
        return api_error(
            E.CONFLICT_STATE,
            str(error),
            details={
                "current_status": error.current_status,
                "requested_status": error.requested_status,
            },
        )

    @bp.errorhandler(LastAssigneeError)
    def _handle_last_assignee(error: LastAssigneeError):
        db.session.rollback()
        return api_error(E.CONFLICT_LAST_ASSIGNEE, str(error))

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        db.session.rollback()
        return api_error(E.CONFLICT_DUPLICATE, str(error))

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        from werkzeug.exceptions import HTTPException

        if isinstance(error, HTTPException):
            return error
        db.session.rollback()
        logger.exception("Unexpected error in %s endpoint", bp.name)
        return api_error(E.INTERNAL, "Internal server error")
