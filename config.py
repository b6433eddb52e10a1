"""
Configuration for the gangsheet engine.

All values come from environment variables (a .env file is loaded first).
Default roll settings here are the library defaults a tenant starts with
until it saves its own.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env file early so environment variables are available for Config class
load_dotenv(override=True)

# Base directory (where this file lives)
BASE_DIR = Path(__file__).resolve().parent


def _env_int(name: str, default: int = 0) -> int:
    value = os.environ.get(name, "").strip()
    return int(value) if value else default


class Config:
    """Default configuration for the Flask application."""

    # Flask settings
    SECRET_KEY = os.environ.get("FLASK_SECRET_KEY", "dev-secret-key")
    MAX_CONTENT_LENGTH = 2 * 1024 * 1024  # JSON bodies only
    ENVIRONMENT = os.environ.get("FLASK_ENV", "development")

    # Debug mode
    DEBUG = os.environ.get("FLASK_DEBUG", "1") == "1"

    # ==========================================================================
    # Storage
    # ==========================================================================
    # GANGSHEET_STORAGE_DIR: root for design storage keys
    # GANGSHEET_ARTIFACT_DIR: where finished ZIP archives are written
    # GANGSHEET_ORDERS_FILE: optional JSON fixture loaded into the in-memory
    #   order gateway (development and demos)
    # ==========================================================================
    STORAGE_DIR = os.environ.get("GANGSHEET_STORAGE_DIR", str(BASE_DIR / "storage" / "designs"))
    ARTIFACT_DIR = os.environ.get("GANGSHEET_ARTIFACT_DIR", str(BASE_DIR / "storage" / "artifacts"))
    ORDERS_FILE = os.environ.get("GANGSHEET_ORDERS_FILE", "")

    # Rotating log files (production only); empty means ./logs
    LOG_DIR = os.environ.get("GANGSHEET_LOG_DIR", "")

    # ==========================================================================
    # Rendering
    # ==========================================================================
    # GANGSHEET_RENDER_WORKERS: render pool size (0 = one per CPU core)
    # GANGSHEET_FETCH_TIMEOUT: seconds to wait for a design download
    # ==========================================================================
    RENDER_WORKERS = _env_int("GANGSHEET_RENDER_WORKERS", 0)
    FETCH_TIMEOUT = float(os.environ.get("GANGSHEET_FETCH_TIMEOUT", "15"))

    # ==========================================================================
    # Default roll settings (inches unless noted)
    # ==========================================================================
    DEFAULT_ROLL_SETTINGS = {
        "rollWidth": os.environ.get("GANGSHEET_DEFAULT_ROLL_WIDTH", "22"),
        "maxRollHeight": os.environ.get("GANGSHEET_DEFAULT_MAX_ROLL_HEIGHT", "60"),
        "dpi": os.environ.get("GANGSHEET_DEFAULT_DPI", "300"),
        "gap": os.environ.get("GANGSHEET_DEFAULT_GAP", "0.3"),
        "border": os.environ.get("GANGSHEET_DEFAULT_BORDER", "true"),
        "borderSize": os.environ.get("GANGSHEET_DEFAULT_BORDER_SIZE", "0.1"),
        "borderColor": os.environ.get("GANGSHEET_DEFAULT_BORDER_COLOR", "red"),
        "footerHeight": os.environ.get("GANGSHEET_DEFAULT_FOOTER_HEIGHT", "1.5"),
    }


class ProductionConfig(Config):
    """Production configuration."""
    DEBUG = False
    TESTING = False


class DevelopmentConfig(Config):
    """Development configuration."""
    DEBUG = True
    TESTING = False


class TestingConfig(Config):
    """Testing configuration."""
    DEBUG = False
    TESTING = True
    RENDER_WORKERS = 2
    FETCH_TIMEOUT = 2.0
