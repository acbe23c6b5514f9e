"""Standardised API error responses.

Usage
-----
    from stageflow.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Task not found")
    return api_error(E.VALIDATION_REQUIRED, "group_id is required")
    return api_error(E.DEPENDENCY_UNSATISFIED, reason, details={"blocking_group_id": 4})

Engine exceptions (``stageflow.core.exceptions``) never reach blueprints as
try/except ladders: ``register_error_handlers`` maps each type to one
envelope ``{"error", "code", "details"}`` and a fixed HTTP status.
"""

from __future__ import annotations

import logging

from flask import jsonify
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from stageflow.core.exceptions import (
    ConfigurationError,
    ConflictError,
    DependencyUnsatisfiedError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    StageflowError,
    ValidationError,
)
from stageflow.models import db

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants (``ERR_`` prefix)."""

    # Validation – HTTP 400 / 422
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Authentication / permissions – HTTP 401 / 403
    UNAUTHORIZED = "ERR_UNAUTHORIZED"
    FORBIDDEN = "ERR_FORBIDDEN"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"
    DEPENDENCY_UNSATISFIED = "ERR_DEPENDENCY_UNSATISFIED"

    # Workflow misconfiguration – HTTP 422
    CONFIGURATION = "ERR_CONFIGURATION"

    # Server – HTTP 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 422,
    E.UNAUTHORIZED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.DEPENDENCY_UNSATISFIED: 409,
    E.CONFIGURATION: 422,
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
        Extra structured payload (blocking group, field name, etc.).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
        "details": details or {},
    }

    return jsonify(body), http_status


# ── Exception → response mapping ──────────────────────────────────────
_EXCEPTION_STATUS: tuple[tuple[type[StageflowError], int], ...] = (
    (ForbiddenError, 403),
    (NotFoundError, 404),
    (DependencyUnsatisfiedError, 409),
    (InvalidStateError, 409),
    (ConflictError, 409),
    (ConfigurationError, 422),
    (ValidationError, 422),
)


def _make_handler(status: int):
    def _handle(exc: StageflowError):
        level = logging.INFO if status < 500 else logging.ERROR
        logger.log(level, "%s: %s", type(exc).__name__, exc)
        return api_error(exc.code, str(exc), status=status, details=exc.details)

    return _handle


def register_error_handlers(app) -> None:
    """Register one handler per engine exception type on ``app``."""
    for exc_type, status in _EXCEPTION_STATUS:
        app.register_error_handler(exc_type, _make_handler(status))

    @app.errorhandler(IntegrityError)
    def integrity_error(e):
        db.session.rollback()
        logger.warning("Integrity error: %s", e.orig)
        return api_error(E.CONFLICT_DUPLICATE, "Conflicts with an existing record")

    @app.errorhandler(SQLAlchemyError)
    def database_error(e):
        db.session.rollback()
        logger.error("Database error: %s", e, exc_info=True)
        return api_error(E.DATABASE, "Database error")

    @app.errorhandler(404)
    def not_found(e):
        return api_error(E.NOT_FOUND, "Not found")

    @app.errorhandler(405)
    def method_not_allowed(e):
        return api_error(E.VALIDATION_INVALID, "Method not allowed", status=405)

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")
