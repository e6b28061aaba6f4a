# Overview: Shared helpers for the API blueprints; JSON error bodies and request parsing.

from flask import current_app, jsonify, request

from ..errors import ApiError, InternalError, ValidationError


def error_response(exc: ApiError):
    """{"error": {"code", "message", "details"?}} with the mapped status."""
    return jsonify({"error": exc.to_dict()}), exc.status_code


def internal_error_response(log_message: str):
    """Log the active exception with traceback and return a generic 500."""
    current_app.logger.exception(log_message)
    return error_response(InternalError("Internal server error"))


def get_json_body() -> dict:
    """Request JSON object or ValidationError."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data
