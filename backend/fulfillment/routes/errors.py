# Overview: Maps service exceptions to JSON error responses for every blueprint.

from flask import jsonify, current_app

from ..services.packaging_service import IncompletePackagingError
from ..services.permission_service import PermissionDeniedError
from ..validation import ConflictError, NotFoundError, ValidationError


def json_error(exc: Exception, log_message: str = "Request failed"):
    if isinstance(exc, IncompletePackagingError):
        return jsonify({
            "error": str(exc),
            "verified_items": exc.verified_items,
            "total_items": exc.total_items,
        }), 400
    if isinstance(exc, ValidationError):
        return jsonify({"error": str(exc)}), 400
    if isinstance(exc, PermissionDeniedError):
        return jsonify({"error": str(exc)}), 403
    if isinstance(exc, NotFoundError):
        return jsonify({"error": str(exc)}), 404
    if isinstance(exc, ConflictError):
        return jsonify({"error": str(exc)}), 409
    current_app.logger.exception(log_message)
    return jsonify({"error": "Internal server error"}), 500
