"""
Centralized logging configuration for the gangsheet engine.

Every log line carries the name of the thread that wrote it. Generation
runs on job threads and roll rendering on pool workers, so the thread
name is what ties a line to a job and a roll.

Features:
    - Thread name in every message
    - Console output (always enabled)
    - Rotating file logs (optional, for production)
    - Separate error log for ERROR/CRITICAL messages
    - Logger factories under one "gangsheet_engine" namespace

Log Format:
    2026-03-02 09:12:40 [INFO    ] [MainThread] gangsheet_engine.app - Starting
    2026-03-02 09:12:41 [INFO    ] [Job-5f0c2a91] gangsheet_engine.job.5f0c2a91 - Packed 3 rolls
    2026-03-02 09:12:43 [DEBUG   ] [Job-5f0c2a91] gangsheet_engine.job.5f0c2a91 - Roll 2 rendered (6600x18450px)

Usage:
    from logging_config import setup_logging, get_logger

    setup_logging(log_level=logging.INFO, enable_file_logging=True)

    logger = get_logger(__name__)
    job_logger = get_job_logger(job_id)
"""

import logging
import sys
import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional


LOGGER_NAMESPACE = "gangsheet_engine"

LOG_FORMAT = "%(asctime)s [%(levelname)-8s] [%(thread_name)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5


# =============================================================================
# THREAD CONTEXT FILTER
# =============================================================================

class ThreadContextFilter(logging.Filter):
    """
    Adds thread_name and thread_id attributes to every record.

    Used by the format string to show which job or render worker wrote a
    message. Never drops records.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        current_thread = threading.current_thread()
        record.thread_name = current_thread.name
        record.thread_id = threading.get_ident()
        return True


# =============================================================================
# LOGGING SETUP
# =============================================================================

def _attach(
    logger: logging.Logger,
    handler: logging.Handler,
    level: int,
    formatter: logging.Formatter,
    thread_filter: logging.Filter,
) -> None:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.addFilter(thread_filter)
    logger.addHandler(handler)


def _rotating_file(path: Path) -> RotatingFileHandler:
    return RotatingFileHandler(
        filename=path,
        maxBytes=LOG_FILE_MAX_BYTES,
        backupCount=LOG_FILE_BACKUPS,
        encoding="utf-8"
    )


def setup_logging(
    app_name: str = LOGGER_NAMESPACE,
    log_level: int = logging.INFO,
    log_dir: Optional[Path] = None,
    enable_file_logging: bool = True,
) -> logging.Logger:
    """
    Configure application logging with thread context.

    Sets up:
    1. Console handler (always enabled)
    2. Rotating file handler (optional)
    3. Error file handler (optional) - ERROR/CRITICAL only

    Args:
        app_name: Name of the namespace logger (default: "gangsheet_engine")
        log_level: Minimum log level (default: INFO)
        log_dir: Directory for log files (default: ./logs next to this file)
        enable_file_logging: Whether to write to log files

    Returns:
        Configured namespace logger

    Safe to call more than once; existing handlers are replaced.
    """
    logger = logging.getLogger(app_name)
    logger.setLevel(log_level)
    logger.propagate = False
    logger.handlers.clear()

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    thread_filter = ThreadContextFilter()

    _attach(logger, logging.StreamHandler(sys.stdout), log_level, formatter, thread_filter)

    if enable_file_logging:
        log_dir = Path(log_dir) if log_dir else Path(__file__).parent / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)

        app_log_file = log_dir / f"{app_name}.log"
        _attach(logger, _rotating_file(app_log_file), log_level, formatter, thread_filter)
        _attach(logger, _rotating_file(log_dir / f"{app_name}_error.log"), logging.ERROR, formatter, thread_filter)

        logger.info(f"File logging enabled: {app_log_file}")

    logger.info(f"Logging configured at level {logging.getLevelName(log_level)}")
    return logger


# =============================================================================
# LOGGER FACTORY FUNCTIONS
# =============================================================================

def get_logger(name: str) -> logging.Logger:
    """
    Get a logger under the application namespace.

    Example:
        logger = get_logger(__name__)   # in modules/packer.py
        # Logger name: "gangsheet_engine.modules.packer"
    """
    if not name.startswith(LOGGER_NAMESPACE):
        name = f"{LOGGER_NAMESPACE}.{name}"
    return logging.getLogger(name)


def get_job_logger(job_id: str) -> logging.Logger:
    """
    Get the logger for one generation job.

    Only the first 8 characters of the job id go into the logger name,
    e.g. "gangsheet_engine.job.5f0c2a91".
    """
    short_id = job_id[:8] if len(job_id) >= 8 else job_id
    return logging.getLogger(f"{LOGGER_NAMESPACE}.job.{short_id}")


def set_thread_name(name: str) -> None:
    """
    Rename the current thread (shown in the [thread_name] log field).

    Example:
        set_thread_name(f"Job-{job_id[:8]}")
    """
    threading.current_thread().name = name
