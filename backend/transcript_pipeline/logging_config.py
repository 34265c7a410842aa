import logging
import os
import sys
from logging.handlers import RotatingFileHandler

from transcript_pipeline.config import settings

LOG_DIR = settings.LOG_DIR
LOG_FILE = os.path.join(LOG_DIR, "transcript_pipeline.log")

# Third-party loggers that are chatty at INFO (httpx logs every request line).
LIBRARY_LOG_LEVELS = {
    "uvicorn": logging.INFO,
    "uvicorn.error": logging.INFO,
    "uvicorn.access": logging.WARNING,
    "celery": logging.INFO,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
}


def _level(name: str) -> int:
    return getattr(logging, (name or "INFO").upper(), logging.INFO)


def setup_logging():
    """
    Configures logging for the API, the Celery worker and the CLI.
    Outputs to console and a rotating file with a detailed format.
    """
    os.makedirs(LOG_DIR, exist_ok=True)

    log_formatter = logging.Formatter(
        "%(asctime)s - %(levelname)s - %(name)s - %(module)s - %(funcName)s - %(lineno)d - %(message)s"
    )
    level = _level(settings.LOG_LEVEL)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Each entry point calls this; only install what is missing.
    if not any(isinstance(h, RotatingFileHandler) for h in root_logger.handlers):
        file_handler = RotatingFileHandler(LOG_FILE, maxBytes=1024*1024*5, backupCount=2) # 5MB per file, 2 backups
        file_handler.setFormatter(log_formatter)
        root_logger.addHandler(file_handler)

    has_console_handler = any(
        isinstance(h, logging.StreamHandler) and getattr(h, "stream", None) is sys.stdout
        for h in root_logger.handlers
    )
    if not has_console_handler:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(log_formatter)
        root_logger.addHandler(console_handler)

    logging.getLogger("transcript_pipeline").setLevel(level)
    for name, library_level in LIBRARY_LOG_LEVELS.items():
        logging.getLogger(name).setLevel(library_level)

    logging.info("Logging configured at %s (console and %s).", logging.getLevelName(level), LOG_FILE)
