"""Error handlers for the application."""
from flask import jsonify
from werkzeug.exceptions import HTTPException

from admin_console.core.errors import ConsoleError


def register_error_handlers(app):
    """Register error handlers with the Flask app."""

    @app.errorhandler(ConsoleError)
    def console_error(error):
        """Handle role engine errors (not found, conflict, unavailable)."""
        app.logger.info("Request failed with %s: %s", error.code, error.detail)
        return jsonify(error.to_dict()), error.status

    @app.errorhandler(400)
    def bad_request(error):
        return jsonify({"error": "Bad Request", "message": _description(error, "Invalid request")}), 400

    @app.errorhandler(401)
    def unauthorized(error):
        return jsonify({"error": "Unauthorized", "message": "Authentication required"}), 401

    @app.errorhandler(403)
    def forbidden(error):
        """Handle 403 Forbidden errors."""
        # Format: "Required role: role1, role2" or the werkzeug default
        desc = _description(error, "")
        if desc.startswith("Required role:"):
            message = desc
        else:
            message = "Insufficient permissions"
        return jsonify({"error": "Forbidden", "message": message}), 403

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({"error": "Not Found", "message": "Resource not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({"error": "Method Not Allowed", "message": str(error.description)}), 405

    @app.errorhandler(500)
    def internal_error(error):
        """Handle 500 Internal Server Error."""
        # ALWAYS log the full error (even in production) - logs are secure
        app.logger.error("Internal error: %s", error, exc_info=True)
        return jsonify({"error": "Internal Server Error", "message": "An unexpected error occurred"}), 500

    @app.errorhandler(Exception)
    def handle_exception(error):
        """Handle uncaught exceptions."""
        # Pass through HTTP errors
        if isinstance(error, HTTPException):
            return error

        app.logger.error("Unhandled exception: %s", error, exc_info=True)
        body = {"error": "Internal Server Error", "message": "An unexpected error occurred"}
        # SECURITY: expose the exception text ONLY in demo mode, never in production
        if app.config.get("DEMO_MODE", False):
            body["detail"] = repr(error)
        return jsonify(body), 500


def _description(error, default: str) -> str:
    description = getattr(error, "description", None)
    return str(description) if description else default
