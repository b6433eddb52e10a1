"""
Gangsheet engine - Flask application entry point.

A slim app factory that:
1. Configures thread-aware logging
2. Builds the collaborators (order gateway, design store, artifact store)
3. Creates the gangsheet service (job threads + render pool)
4. Registers route blueprints and error handlers

ARCHITECTURE:
    Main Thread
    ├── Flask request handling (reads JobSnapshots only)
    └── Cleanup on shutdown (waits for job threads)

    Job Threads (one per submitted job)
    └── fetch -> pack -> fan out renders -> package -> store

    Render Pool (bounded, shared)
    └── One task per roll, no shared mutable state
"""

from __future__ import annotations

import atexit
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from flask import Flask
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

from logging_config import setup_logging, get_logger
from core.design_store import DesignStore
from core.order_gateway import InMemoryOrderGateway
from models.settings import RollSettings
from services import ArtifactStore, GangsheetService, SettingsStore
from routes import register_blueprints


# Module logger (configured after setup_logging)
logger = get_logger(__name__)


def create_app(
    config_object: str = "config.Config",
    test_config: Optional[Dict[str, Any]] = None
) -> Flask:
    """
    Application factory - creates and configures the Flask app.

    Args:
        config_object: Import path of the config class
        test_config: Values applied on top of the config class. An
            "ORDER_GATEWAY" entry replaces the in-memory gateway.

    Returns:
        Configured Flask application

    Raises:
        InvalidInputError: If the configured default roll settings are invalid
    """
    app = Flask(__name__)
    app.config.from_object(config_object)
    if test_config:
        app.config.update(test_config)

    # Configure logging
    log_level = logging.DEBUG if app.config.get("DEBUG") else logging.INFO
    enable_file_logging = app.config.get("ENVIRONMENT") == "production"

    root_logger = setup_logging(
        log_level=log_level,
        log_dir=app.config.get("LOG_DIR") or None,
        enable_file_logging=enable_file_logging
    )
    app.logger.handlers = root_logger.handlers
    app.logger.setLevel(log_level)

    logger.info(f"Starting gangsheet engine in {app.config.get('ENVIRONMENT')} mode")

    # =========================================================================
    # COLLABORATORS
    # =========================================================================

    order_gateway = app.config.get("ORDER_GATEWAY")
    if order_gateway is None:
        order_gateway = InMemoryOrderGateway()
        orders_file = app.config.get("ORDERS_FILE")
        if orders_file:
            count = order_gateway.load_file(orders_file)
            logger.info(f"Loaded {count} orders from {orders_file}")

    storage_dir = Path(app.config["STORAGE_DIR"])
    storage_dir.mkdir(parents=True, exist_ok=True)
    design_store = DesignStore(storage_dir, timeout_seconds=app.config.get("FETCH_TIMEOUT", 15.0))

    artifact_store = ArtifactStore(app.config["ARTIFACT_DIR"])

    defaults = RollSettings.from_dict(app.config.get("DEFAULT_ROLL_SETTINGS", {})).validate()
    settings_store = SettingsStore(defaults)

    # =========================================================================
    # SERVICES
    # =========================================================================

    gangsheet_service = GangsheetService(
        order_gateway=order_gateway,
        design_store=design_store,
        artifact_store=artifact_store,
        settings_store=settings_store,
        render_workers=app.config.get("RENDER_WORKERS") or None,
    )

    app.config["ORDER_GATEWAY"] = order_gateway
    app.config["DESIGN_STORE"] = design_store
    app.config["ARTIFACT_STORE"] = artifact_store
    app.config["GANGSHEET_SERVICE"] = gangsheet_service

    # =========================================================================
    # CLEANUP REGISTRATION
    # =========================================================================

    def cleanup():
        """Cleanup on application shutdown."""
        logger.info("Shutting down...")
        gangsheet_service.shutdown()
        logger.info("Shutdown complete")

    atexit.register(cleanup)

    # =========================================================================
    # REGISTER BLUEPRINTS
    # =========================================================================

    register_blueprints(app)

    # =========================================================================
    # ERROR HANDLERS
    # =========================================================================

    @app.errorhandler(RequestEntityTooLarge)
    def handle_too_large(e):
        max_mb = app.config.get("MAX_CONTENT_LENGTH", 0) / (1024 * 1024)
        return {"error": f"Request too large. Maximum size is {max_mb:.0f} MB."}, 413

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return {"error": e.description or e.name}, e.code

    @app.errorhandler(500)
    def handle_server_error(e):
        logger.error(f"500 error: {e}", exc_info=True)
        return {"error": "An unexpected error occurred."}, 500

    logger.info("Application initialized successfully")
    return app


if __name__ == "__main__":
    app = create_app()
    debug_mode = os.environ.get("FLASK_DEBUG", "1") == "1"
    app.run(debug=debug_mode)
