"""
Logging configuration for StudyForge.
Implements rotating file logs with 10 MB max size.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

# Default log directory (overridable through LOG_DIR)
DEFAULT_LOG_DIR = Path(__file__).parent.parent.parent / "logs"

# Log file settings
MAX_LOG_SIZE = 10 * 1024 * 1024  # 10 MB
BACKUP_COUNT = 5  # Keep 5 backup files

# Log format
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(filename)s:%(lineno)d | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Third-party loggers and the level they are held to
NOISY_LOGGERS = {
    "uvicorn": logging.INFO,
    "uvicorn.access": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "anthropic": logging.WARNING,
    "apscheduler": logging.WARNING,
    # pdfminer (under pdfplumber) warns about every odd font or colour space
    "pdfminer": logging.ERROR,
    "PyPDF2": logging.ERROR,
}


def get_file_handler(filename: str, level: int = logging.DEBUG, log_dir: Path | None = None) -> RotatingFileHandler:
    """Create a rotating file handler inside ``log_dir``."""
    directory = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
    directory.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        directory / filename,
        maxBytes=MAX_LOG_SIZE,
        backupCount=BACKUP_COUNT,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
    return handler


def get_console_handler(level: int = logging.INFO) -> logging.StreamHandler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
    return handler


def setup_logging(
    app_name: str = "studyforge",
    log_level: str = "",
    environment: str = "development",
    enable_console: bool = True,
    enable_file: bool = True,
    log_dir: str = "",
) -> logging.Logger:
    """
    Configure logging for the application.

    Args:
        app_name: Name of the application (used for log file naming)
        log_level: Minimum console level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
                   If empty, DEBUG in development and WARNING in production
        environment: Application environment (development, production)
        enable_console: Whether to log to console
        enable_file: Whether to write ``<app_name>.log`` and ``<app_name>_error.log``
        log_dir: Directory for the log files (empty = ``logs/`` beside the package)

    Returns:
        Configured root logger
    """
    # Auto-determine log level based on environment if not specified
    if not log_level:
        log_level = "WARNING" if environment == "production" else "DEBUG"
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # Capture all levels, handlers will filter

    # Clear any existing handlers
    root_logger.handlers.clear()

    if enable_console:
        root_logger.addHandler(get_console_handler(numeric_level))

    if enable_file:
        directory = Path(log_dir) if log_dir else None
        root_logger.addHandler(get_file_handler(f"{app_name}.log", logging.DEBUG, directory))
        # Error-only log
        root_logger.addHandler(get_file_handler(f"{app_name}_error.log", logging.ERROR, directory))

    for name, level in NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(level)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger for a specific module (typically ``__name__``)."""
    return logging.getLogger(name)


# Request logging middleware helper
class RequestLogger:
    """Logs one line per HTTP request; the level follows the response status."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def log_request(
        self,
        method: str,
        path: str,
        status_code: int,
        duration_ms: float,
        client_ip: str = None,
        user_id: int = None,
    ):
        extra_info = []
        if client_ip:
            extra_info.append(f"ip={client_ip}")
        if user_id:
            extra_info.append(f"user={user_id}")

        line = f"{method} {path} -> {status_code} ({duration_ms:.2f}ms)"
        if extra_info:
            line = f"{line} | {' | '.join(extra_info)}"

        # 5xx are errors, 4xx are client mistakes worth a warning
        if status_code >= 500:
            self.logger.error(line)
        elif status_code >= 400:
            self.logger.warning(line)
        else:
            self.logger.info(line)
