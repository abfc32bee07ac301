"""
Action Log Tracker
Blueprint registry and the helpers every API blueprint shares.
"""

import logging

from flask import g, jsonify, request
from werkzeug.exceptions import HTTPException

from actionlog.core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from actionlog.models import db
from actionlog.models.auth import User
from actionlog.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def current_user():
    """Return (user, None) for the bearer of the request's token, or (None, error).

    The JWT middleware has already rejected requests without a valid token;
    this catches tokens whose user was deleted or deactivated since issue.
    """
    user_id = getattr(g, "jwt_user_id", None)
    user = db.session.get(User, user_id) if user_id else None
    if user is None or not user.is_active:
        return None, api_error(E.UNAUTHENTICATED, "User not found or inactive")
    return user, None


def json_body():
    """Request JSON as a dict; non-object bodies count as empty."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def register_error_handlers(bp):
    """Map service-layer exceptions to JSON responses on ``bp``."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_RULE, str(error), details=error.details)

    @bp.errorhandler(AuthorizationError)
    def _handle_forbidden(error: AuthorizationError):
        return api_error(error.code, str(error), status=403)

    @bp.errorhandler(StateConflictError)
    def _handle_state_conflict(error: StateConflictError):
        return api_error(E.CONFLICT_STATE, str(error), current_state=error.current_state)

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(E.CONFLICT_DUPLICATE, str(error), details={error.field: error.value})

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return error
        db.session.rollback()
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return jsonify({"error": "Internal server error", "code": E.INTERNAL}), 500
