"""
Structured logging configuration.
Sets up JSON-formatted file logs and console output with feed URL redaction.
"""

import logging
from pathlib import Path
from datetime import datetime
from typing import Optional
from pythonjsonlogger import jsonlogger
import sys

from .utils import redact_url


class RedactingFilter(logging.Filter):
    """Filter that hides credentials embedded in feed URLs."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Redact URL userinfo and secret query parameters in the message."""
        if isinstance(record.msg, str):
            message = record.getMessage()
            redacted = redact_url(message)
            if redacted != message:
                record.msg = redacted
                record.args = None
        return True


def setup_logging(
    log_dir: Optional[Path] = None,
    log_level: str = "INFO",
    json_format: bool = True,
    console_output: bool = True,
) -> Optional[Path]:
    """
    Configure structured logging.

    Args:
        log_dir: Directory to write log files (no file log if None)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON-formatted file logs if True
        console_output: Also output to console if True

    Returns:
        Path of the log file, or None when only console logging is set up
    """
    level = getattr(logging, log_level.upper())

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove any existing handlers
    root_logger.handlers.clear()

    redact_filter = RedactingFilter()
    log_file = None

    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_file = log_dir / f"market_feed_{timestamp}.log"

        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setLevel(level)
        file_handler.addFilter(redact_filter)

        if json_format:
            formatter = jsonlogger.JsonFormatter(
                '%(timestamp)s %(levelname)s %(name)s %(message)s',
                timestamp=True
            )
        else:
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )

        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.addFilter(redact_filter)

        console_formatter = logging.Formatter(
            '%(levelname)s - %(name)s - %(message)s'
        )
        console_handler.setFormatter(console_formatter)
        root_logger.addHandler(console_handler)

    root_logger.info(f"Logging initialized: {log_file or 'console only'}")
    return log_file


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with a given name."""
    return logging.getLogger(name)
