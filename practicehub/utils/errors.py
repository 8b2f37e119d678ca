"""Standardised API error responses.

Usage
-----
    from practicehub.utils.errors import api_error, E

    return api_error(E.VALIDATION_REQUIRED, "tenant_id is required")
    return api_error(E.INVALID_TRANSITION, "Cannot move PROSPECT -> ACTIVE")

Blueprints call ``register_error_handlers(bp)`` once so that every
service exception in ``practicehub.core.exceptions`` maps to the same
JSON shape: ``{"error": <message>, "code": <code>, "details": {...}}``.
"""

from __future__ import annotations

import logging

from flask import jsonify, request
from werkzeug.exceptions import HTTPException

from practicehub.core.exceptions import (
    ConflictError,
    NotFoundError,
    ReconciliationError,
    ValidationError,
)

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Convention:
     • ERR_  prefix for every application error
    """

    # Malformed input – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Business rule – HTTP 422
    VALIDATION_CONSTRAINT = "ERR_VALIDATION_CONSTRAINT"
    NO_OP_TRANSITION = "ERR_NO_OP_TRANSITION"
    INVALID_TRANSITION = "ERR_INVALID_TRANSITION"
    CHECKLIST_INCOMPLETE = "ERR_CHECKLIST_INCOMPLETE"
    DOCUMENT_REQUIRED = "ERR_DOCUMENT_REQUIRED"
    DEPENDENCY_NOT_MET = "ERR_DEPENDENCY_NOT_MET"
    REQUIRED_ITEM_NOT_SKIPPABLE = "ERR_REQUIRED_ITEM_NOT_SKIPPABLE"
    INVALID_ITEM_STATE = "ERR_INVALID_ITEM_STATE"
    PREREQUISITE_UNMET = "ERR_PREREQUISITE_UNMET"
    PERIOD_NOT_READY = "ERR_PERIOD_NOT_READY"
    RETAINER_STATE = "ERR_RETAINER_STATE"
    BILLING_RATE_MISSING = "ERR_BILLING_RATE_MISSING"
    CURRENCY_MISMATCH = "ERR_CURRENCY_MISMATCH"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"
    STALE_VERSION = "ERR_STALE_VERSION"
    PERIOD_ALREADY_CLOSED = "ERR_PERIOD_ALREADY_CLOSED"
    DUPLICATE_RETAINER = "ERR_DUPLICATE_RETAINER"

    # Server – HTTP 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.STALE_VERSION: 409,
    E.PERIOD_ALREADY_CLOSED: 409,
    E.DUPLICATE_RETAINER: 409,
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
        then to ``422`` (business rule violation).
    details : dict, optional
        Extra structured payload (violations, blocking items, etc.).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 422)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def register_error_handlers(bp) -> None:
    """Attach the domain exception → JSON mapping to a blueprint."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error), status=404)

    # Raised by services after input parsed: a business rule, always 422.
    # Malformed input is answered by the blueprint itself via _DEFAULT_STATUS (400).
    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(error.code, str(error), status=422, details=error.details)

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(error.code, str(error), status=409, details=error.details)

    @bp.errorhandler(ReconciliationError)
    def _handle_reconciliation(error: ReconciliationError):
        return api_error(E.DATABASE, str(error), status=500)

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return error
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error", status=500)
