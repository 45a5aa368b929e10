from flask import Blueprint, current_app, jsonify
from flask_wtf.csrf import CSRFError

from .errors import (
    AppError,
    ConsistencyViolationError,
    NotFoundError,
    ValidationError,
)

error_handlers_bp = Blueprint("error_handlers", __name__)


@error_handlers_bp.app_errorhandler(ValidationError)
def handle_validation_error(error):
    """Handles validation errors, including invalid and tied scores."""
    current_app.logger.warning(f"Validation Error: {error.message}")
    return jsonify({"error": error.message}), error.status_code


@error_handlers_bp.app_errorhandler(NotFoundError)
def handle_not_found_error(error):
    """Handles not found errors."""
    current_app.logger.warning(f"Not Found Error: {error.message}")
    return jsonify({"error": error.message}), error.status_code


@error_handlers_bp.app_errorhandler(ConsistencyViolationError)
def handle_consistency_violation(error):
    """Handles bracket states that need an organizer to fix by hand."""
    current_app.logger.error(
        f"Consistency Violation: {error.message} "
        f"(match={error.match_id} target={error.target_match_id} slot={error.slot})"
    )
    return (
        jsonify({"error": error.message, "violation": error.to_dict()}),
        error.status_code,
    )


@error_handlers_bp.app_errorhandler(AppError)
def handle_app_error(error):
    """Handles permission and state errors from the match lifecycle."""
    current_app.logger.warning(
        f"{type(error).__name__}: {error.message}"
    )
    return (
        jsonify({"error": error.message, "code": type(error).__name__}),
        error.status_code,
    )


@error_handlers_bp.app_errorhandler(404)
def handle_404(e):
    """Handles generic 404 errors for routes that don't exist."""
    return jsonify({"error": "Page Not Found"}), 404


@error_handlers_bp.app_errorhandler(500)
def handle_500(e):
    """Handles unexpected server errors."""
    current_app.logger.error(f"Internal Server Error: {e}")
    return jsonify({"error": "An unexpected error occurred."}), 500


@error_handlers_bp.app_errorhandler(CSRFError)
def handle_csrf_error(e):
    """
    Handles CSRF errors, which usually indicate a session timeout or a missing token.
    """
    current_app.logger.warning(f"CSRF Error: {e.description}")
    return (
        jsonify({"error": "Your session may have expired. Please try again."}),
        400,
    )
