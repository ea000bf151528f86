"""
Careline - Central Logging Configuration
"""
import logging
import logging.handlers
import os
import sys
from pathlib import Path
from .config import BASE_DIR, DEBUG, ENGINE_LOG_FILE, ENGINE_LOG_LEVEL, LOG_FILE, LOG_LEVEL

ENGINE_LOGGER = "careline.services.clinical_engine"

DETAILED_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'


def _rotating_handler(relative_path: str, level: int) -> logging.Handler:
    """10MB files, 5 backups, detailed format."""
    log_path = Path(BASE_DIR) / relative_path
    os.makedirs(log_path.parent, exist_ok=True)

    handler = logging.handlers.RotatingFileHandler(
        filename=log_path,
        maxBytes=10 * 1024 * 1024,  # 10 MB
        backupCount=5,
        encoding='utf-8'
    )
    handler.setFormatter(logging.Formatter(fmt=DETAILED_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
    handler.setLevel(level)
    return handler


def configure_logging():
    """
    Setup logging for the API and the clinical engine
    - LOG_FILE gets everything at LOG_LEVEL
    - ENGINE_LOG_FILE gets clinical engine warnings only (skipped
      evaluations, rejected catalogs) so sweeps can be audited
    - console shows INFO, or DEBUG when DEBUG is set
    """
    file_handler = _rotating_handler(LOG_FILE, getattr(logging, LOG_LEVEL))

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(logging.Formatter(fmt='%(levelname)s: %(message)s'))
    console_handler.setLevel(logging.DEBUG if DEBUG else logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if DEBUG else getattr(logging, LOG_LEVEL))

    # Remove existing handlers to avoid duplicates during reloads
    if root_logger.hasHandlers():
        root_logger.handlers.clear()

    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)

    # Clinical engine: own level, plus an audit file; records still reach the root handlers
    engine_logger = logging.getLogger(ENGINE_LOGGER)
    engine_logger.setLevel(getattr(logging, ENGINE_LOG_LEVEL))
    engine_logger.handlers.clear()
    engine_logger.addHandler(_rotating_handler(ENGINE_LOG_FILE, logging.WARNING))

    # Third-party loggers
    logging.getLogger("uvicorn.access").handlers = []  # request logging is done by our middleware
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    logging.info(f"✅ Logging initialized. Writing to: {Path(BASE_DIR) / LOG_FILE} (engine audit: {ENGINE_LOG_FILE})")
