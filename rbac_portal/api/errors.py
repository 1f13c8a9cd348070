"""Error handlers for the application."""
from flask import jsonify
from werkzeug.exceptions import HTTPException

from rbac_portal.core.exceptions import RbacError


def register_error_handlers(app):
    """Register error handlers with the Flask app."""

    @app.errorhandler(RbacError)
    def handle_rbac_error(error: RbacError):
        """Map domain errors to their JSON shape and status."""
        if error.status >= 500:
            app.logger.error("%s: %s", error.kind, error.message)
        return jsonify(error.to_dict()), error.status

    @app.errorhandler(400)
    def bad_request(error):
        """Handle 400 Bad Request errors."""
        message = getattr(error, "description", None) or "Bad request"
        return _error("BadRequest", message, 400)

    @app.errorhandler(401)
    def unauthorized(error):
        """Handle 401 Unauthorized errors."""
        return _error("Unauthorized", "Authentication required", 401)

    @app.errorhandler(403)
    def forbidden(error):
        """Handle 403 Forbidden errors."""
        return _error("Forbidden", "Insufficient permissions", 403)

    @app.errorhandler(404)
    def not_found(error):
        """Handle 404 Not Found errors."""
        return _error("NotFound", "Resource not found", 404)

    @app.errorhandler(405)
    def method_not_allowed(error):
        return _error("MethodNotAllowed", "Method not allowed", 405)

    @app.errorhandler(500)
    def internal_error(error):
        """Handle 500 Internal Server Error."""
        app.logger.error(f"Internal error: {error}", exc_info=True)
        return _error("InternalError", "An unexpected error occurred", 500)

    @app.errorhandler(Exception)
    def handle_exception(error):
        """Handle uncaught exceptions."""
        # Pass through HTTP errors
        if isinstance(error, HTTPException):
            return error

        # ALWAYS log the error (even in production) - logs are secure
        app.logger.error(f"Unhandled exception: {error}", exc_info=True)
        return _error("InternalError", "An unexpected error occurred", 500)


def _error(kind: str, message: str, status: int):
    return jsonify({"ok": False, "error": kind, "message": message}), status
