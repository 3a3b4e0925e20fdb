"""
Logging utilities with personal-information filtering.

Provides a logging setup that:
- Redacts e-mail addresses, phone numbers and IP addresses from logs
- Supports both console and file output
- Configurable log levels
- Includes timestamps and module names
"""

from __future__ import annotations

import logging
import re
import sys
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from chatguard.config import Config


LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

# Moderation logs quote chat content, so anything that looks like contact
# details is masked before it reaches a handler.
_REDACTIONS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"), "[EMAIL]"),
    (re.compile(r"\b(?:\d{1,3}\.){3}\d{1,3}\b"), "[IP]"),
    (re.compile(r"(?:\+?\d{1,3}[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}\b"), "[PHONE]"),
]


class PersonalInfoFilter(logging.Filter):
    """
    Logging filter that redacts personal information.

    Replaces e-mail addresses, IP addresses and phone numbers in the
    message and in string arguments.
    """

    def __init__(self, enabled: bool = True) -> None:
        super().__init__()
        self.enabled = enabled

    @staticmethod
    def redact(text: str) -> str:
        """Return text with every personal-information match masked."""
        for pattern, replacement in _REDACTIONS:
            text = pattern.sub(replacement, text)
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        """
        Filter a log record, redacting personal information.

        Args:
            record: The log record to filter

        Returns:
            bool: Always True (we modify, not filter out)
        """
        if not self.enabled:
            return True

        if isinstance(record.msg, str):
            record.msg = self.redact(record.msg)

        if record.args:
            if isinstance(record.args, dict):
                record.args = {
                    k: self.redact(v) if isinstance(v, str) else v
                    for k, v in record.args.items()
                }
            elif isinstance(record.args, tuple):
                record.args = tuple(
                    self.redact(arg) if isinstance(arg, str) else arg
                    for arg in record.args
                )

        return True


class ColoredFormatter(logging.Formatter):
    """Console formatter that colours the line by level when attached to a TTY."""

    COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[41m",
    }
    RESET = "\033[0m"

    def __init__(self, fmt: str | None = None, use_colors: bool = True) -> None:
        super().__init__(fmt)
        self.use_colors = use_colors and sys.stderr.isatty()

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        if self.use_colors:
            color = self.COLORS.get(record.levelno, "")
            if color:
                message = f"{color}{message}{self.RESET}"
        return message


def setup_logging(config: Config) -> None:
    """
    Set up logging for the moderation engine.

    Configures:
    - Console handler with colored output
    - Optional file handler
    - Personal-information redaction on all handlers

    Args:
        config: Configuration with log settings
    """
    logger = logging.getLogger("chatguard")
    logger.setLevel(getattr(logging, config.log_level, logging.INFO))
    logger.handlers.clear()

    redactor = PersonalInfoFilter(config.redact_logs)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.DEBUG)
    console_handler.setFormatter(ColoredFormatter(LOG_FORMAT))
    console_handler.addFilter(redactor)
    logger.addHandler(console_handler)

    if config.log_file:
        log_path = Path(config.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        file_handler.addFilter(redactor)
        logger.addHandler(file_handler)

    logger.debug("Logging initialized with level %s", config.log_level)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for a module.

    Args:
        name: Module name (usually __name__)

    Returns:
        logging.Logger: Logger under the chatguard namespace
    """
    if not name.startswith("chatguard"):
        name = f"chatguard.{name}"
    return logging.getLogger(name)
