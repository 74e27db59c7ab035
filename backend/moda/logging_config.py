"""
Logging configuration for the MODA Drawings Service

Rotating log files under LOG_DIR:
- app.log: everything at LOG_LEVEL and above
- error.log: ERROR and above
- uploads.log: upload queue and remote store activity only, so a failed
  or orphaned upload can be traced without the HTTP noise
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from .config import settings

MAX_LOG_BYTES = 10 * 1024 * 1024  # 10 MB
BACKUP_COUNT = 5

# Loggers whose records also go to uploads.log
UPLOAD_LOGGERS = (
    "moda.services.upload_queue",
    "moda.services.version_reconciler",
    "moda.services.sharepoint_store",
    "moda.services.local_store",
    "moda.services.metadata_store",
)

# Third-party loggers that are too chatty at INFO
QUIET_LOGGERS = (
    "sqlalchemy.engine",
    "sqlalchemy.pool",
    "sqlalchemy.orm",
    "httpx",  # one line per Graph request, and chunked uploads make many
    "uvicorn.access",
)


def _rotating_handler(path: Path, level: int, formatter: logging.Formatter) -> RotatingFileHandler:
    handler = RotatingFileHandler(path, maxBytes=MAX_LOG_BYTES, backupCount=BACKUP_COUNT, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(log_dir: Optional[str] = None, level: Optional[str] = None) -> logging.Logger:
    """
    Configure application-wide logging.

    Safe to call more than once (handlers are replaced, not stacked).
    Console output shows WARNING and above only.
    """
    log_path = Path(log_dir or settings.LOG_DIR)
    log_path.mkdir(parents=True, exist_ok=True)
    log_level = getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO)

    detailed = logging.Formatter(
        "[%(asctime)s] %(levelname)-8s [%(name)s:%(lineno)d] - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    brief = logging.Formatter("[%(asctime)s] %(levelname)-8s - %(message)s", datefmt="%H:%M:%S")

    root = logging.getLogger()
    root.setLevel(log_level)
    root.handlers.clear()
    root.addHandler(_rotating_handler(log_path / "app.log", log_level, detailed))
    root.addHandler(_rotating_handler(log_path / "error.log", logging.ERROR, detailed))

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(logging.WARNING)
    console.setFormatter(brief)
    root.addHandler(console)

    upload_handler = _rotating_handler(log_path / "uploads.log", log_level, detailed)
    upload_handler._moda_uploads = True
    for name in UPLOAD_LOGGERS:
        upload_logger = logging.getLogger(name)
        for old in [h for h in upload_logger.handlers if getattr(h, "_moda_uploads", False)]:
            upload_logger.removeHandler(old)
            old.close()
        upload_logger.addHandler(upload_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info("=" * 60)
    logger.info(f"{settings.APP_NAME} - logging initialized ({logging.getLevelName(log_level)})")
    logger.info(f"Log directory: {log_path.resolve()}")
    logger.info("=" * 60)

    return logger
