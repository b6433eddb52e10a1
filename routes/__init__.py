"""
Flask route blueprints for the gangsheet engine.

- gangsheets: JSON API for jobs, previews and tenant settings
- api: Service endpoints (health check)

Each blueprint is registered with the Flask app in create_app().
"""

from .gangsheets import gangsheets_bp
from .api import api_bp

__all__ = [
    "gangsheets_bp",
    "api_bp",
]


def register_blueprints(app):
    """
    Register all blueprints with the Flask app.

    Args:
        app: Flask application instance
    """
    app.register_blueprint(gangsheets_bp)
    app.register_blueprint(api_bp)
