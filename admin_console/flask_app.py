"""Flask application factory and bootstrap.

This module provides the create_app() factory function for initializing
the Flask application with the role management blueprints, error handlers
and the role engine service graph.
"""
from __future__ import annotations
import ipaddress
import logging
from typing import Optional

from flask import Flask, abort, request
from werkzeug.middleware.proxy_fix import ProxyFix

from admin_console.config import AppConfig, load_settings
from admin_console.services import ConsoleServices, build_services


# ─────────────────────────────────────────────────────────────────────────────
# Application Factory
# ─────────────────────────────────────────────────────────────────────────────
def create_app(cfg: Optional[AppConfig] = None, services: Optional[ConsoleServices] = None) -> Flask:
    """Create and configure Flask application."""
    cfg = cfg or load_settings()

    app = Flask(__name__)

    # Store config for easy access in routes
    app.config["APP_CONFIG"] = cfg
    app.config["SECRET_KEY"] = cfg.secret_key
    app.config["DEMO_MODE"] = cfg.demo_mode

    _configure_logging(app, cfg)

    # Trust X-Forwarded-* headers from proxy (nginx)
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)  # type: ignore

    app.extensions["admin_console"] = services or build_services(cfg)

    # Register blueprints
    from admin_console.api import errors, health, roles

    app.register_blueprint(health.bp)
    app.register_blueprint(roles.bp, url_prefix="/api")

    # Register error handlers
    errors.register_error_handlers(app)

    _register_middleware(app)

    # Log startup info
    mode_label = "DEMO" if cfg.demo_mode else "PRODUCTION"
    app.logger.info("Mode=%s directory=%s", mode_label, cfg.directory_backend)
    if cfg.demo_mode:
        app.logger.warning("Demo mode active - do not deploy with demo credentials")

    return app


def _configure_logging(app: Flask, cfg: AppConfig) -> None:
    level = logging.DEBUG if cfg.demo_mode else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    logging.getLogger("admin_console").setLevel(level)
    app.logger.setLevel(level)


def _register_middleware(app: Flask):
    """Register before_request middleware."""

    @app.before_request
    def enforce_proxy_headers() -> None:
        """Reject spoofed or chained forwarding headers."""
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for and "," in forwarded_for:
            abort(400, description="Multiple forwarded clients not permitted")
        if forwarded_for:
            try:
                ipaddress.ip_address(forwarded_for.strip())
            except ValueError:
                abort(400, description="Invalid forwarded address")

        forwarded_proto = request.headers.get("X-Forwarded-Proto")
        if forwarded_proto and forwarded_proto not in {"http", "https"}:
            abort(400, description="Invalid forwarded protocol")


# ─────────────────────────────────────────────────────────────────────────────
# Application Instance (for Gunicorn)
# ─────────────────────────────────────────────────────────────────────────────
def wsgi_app() -> Flask:
    """Gunicorn entry point: ``gunicorn 'admin_console.flask_app:wsgi_app()'``."""
    return create_app()


if __name__ == "__main__":
    create_app().run(host="0.0.0.0", port=5000, debug=True)
