"""
Service-level API routes.

Handles:
- /health - Health check endpoint
"""

from flask import Blueprint, current_app

from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

api_bp = Blueprint("api", __name__)


@api_bp.route("/health", methods=["GET"])
def health():
    """Health check endpoint with service status."""
    health_status = {
        "status": "ok",
        "environment": current_app.config.get("ENVIRONMENT", "unknown"),
        "checks": {}
    }

    service = current_app.config.get("GANGSHEET_SERVICE")
    if service:
        health_status["checks"]["gangsheet_service"] = "ok"
        health_status["checks"]["render_workers"] = service.render_workers
    else:
        health_status["checks"]["gangsheet_service"] = "not_available"
        health_status["status"] = "degraded"

    artifact_store = current_app.config.get("ARTIFACT_STORE")
    if artifact_store and artifact_store.root_dir.is_dir():
        health_status["checks"]["artifact_storage"] = "ok"
    else:
        health_status["checks"]["artifact_storage"] = "unavailable"
        health_status["status"] = "degraded"

    status_code = 200 if health_status["status"] == "ok" else 503
    return health_status, status_code
