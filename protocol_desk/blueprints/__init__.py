"""
Protocol Desk
Blueprint registry helpers.
"""

import logging

from flask import jsonify, request
from werkzeug.exceptions import HTTPException

from protocol_desk.core.exceptions import (
    ConflictError,
    IdentityRequiredError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from protocol_desk.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def paginate_list(items: list, default_limit=200, max_limit=1000):
    """Apply limit/offset pagination to an in-memory list.

    Query params:
        limit:  max items (default 200, capped at max_limit)
        offset: starting position (default 0)

    Returns:
        (items_page, total_count)
    """
    total = len(items)
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    return items[offset:offset + limit], total


def register_error_handlers(bp):
    """Map service exceptions to standard API errors on ``bp``."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        code = E.VALIDATION_REQUIRED if "required" in error.details.values() else E.VALIDATION_INVALID
        return api_error(code, str(error), details=error.details)

    @bp.errorhandler(IdentityRequiredError)
    def _handle_identity(error: IdentityRequiredError):
        return api_error(E.IDENTITY_REQUIRED, "Identify yourself before making changes")

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(E.CONFLICT_DUPLICATE, str(error))

    @bp.errorhandler(PersistenceError)
    def _handle_persistence(error: PersistenceError):
        logger.error("Persistence failure endpoint=%s backend=%s: %s",
                     request.endpoint, error.backend, error)
        return api_error(E.PERSISTENCE, "Could not save changes. Please try again.")

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return jsonify({"error": error.description}), error.code
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")
