"""
Logging configuration for AI Visibility Checkup.
Provides structured logging with rotation for a long-running API process.
"""

import logging
import logging.handlers
import sys
import time
import uuid

from .config import LOG_DIR


def setup_logging(
    name: str = "checkup",
    level: int = logging.INFO,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
) -> logging.Logger:
    """
    Configure logging with both file and console output.

    File logs rotate at max_bytes, keeping backup_count old files.
    Console output goes to stderr so the process manager captures it.
    """
    LOG_DIR.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Avoid duplicate handlers on repeated calls
    if logger.handlers:
        return logger

    formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s.%(funcName)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    log_file = LOG_DIR / "checkup.log"
    file_handler = logging.handlers.RotatingFileHandler(
        filename=log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8"
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


def get_logger(module_name: str) -> logging.Logger:
    """Get a child logger for a specific module."""
    return logging.getLogger(f"checkup.{module_name}")


class AnalysisContext:
    """
    Context manager for tracking a single analysis.
    Logs start/end and provides an analysis_id for correlation.
    """

    def __init__(self, logger: logging.Logger, url: str):
        self.logger = logger
        self.url = url
        self.analysis_id = uuid.uuid4().hex[:8]
        self.start_time = None
        self.stats = {
            "redirects": 0,
            "page_status": None,
            "score": None,
            "confidence": None,
        }

    def __enter__(self):
        self.start_time = time.monotonic()
        self.logger.info(f"Analysis {self.analysis_id} started: {self.url}")
        return self

    def outcome(self, exc_type=None) -> str:
        if exc_type:
            return "error"
        status = self.stats["page_status"]
        if status is not None and 200 <= status < 300:
            return "ok"
        return "degraded"

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration_ms = int((time.monotonic() - self.start_time) * 1000)
        self.logger.info(
            f"Analysis {self.analysis_id} completed in {duration_ms}ms "
            f"outcome={self.outcome(exc_type)} | Stats: {self.stats}"
        )
        if exc_type:
            self.logger.error(
                f"Analysis {self.analysis_id} failed with exception: {exc_type.__name__}: {exc_val}"
            )
        return False  # Don't suppress exceptions

    def record(self, stat: str, value) -> None:
        """Record a stat value."""
        if stat in self.stats:
            self.stats[stat] = value
