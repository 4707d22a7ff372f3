"""Tenant Admin Console package.

To use the Flask app:
    from admin_console.flask_app import create_app

To use the role engine without Flask:
    from admin_console.config import load_settings
    from admin_console.services import build_services
"""
# Note: We don't import flask_app by default to avoid Flask dependency
# for CLI scripts that only use the role engine
