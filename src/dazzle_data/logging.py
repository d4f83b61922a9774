"""
Logging infrastructure for the data-access layer.

Provides:
- Console output in a short human-readable format
- File output to .dazzle/logs/data.log as JSON Lines, one object per record
- Component loggers under the ``dazzle.data`` hierarchy
- ``log_with_context`` for attaching structured context to a record

Libraries only emit records; nothing is configured until the application
calls ``setup_logging()``.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

# =============================================================================
# Terminal Colors (respects NO_COLOR)
# =============================================================================

_NO_COLOR = os.environ.get("NO_COLOR") or not sys.stdout.isatty()


class Colors:
    """ANSI color codes for terminal output."""

    RESET = "" if _NO_COLOR else "\033[0m"
    DIM = "" if _NO_COLOR else "\033[2m"

    # Log levels
    DEBUG = "" if _NO_COLOR else "\033[36m"  # Cyan
    INFO = "" if _NO_COLOR else "\033[32m"  # Green
    WARNING = "" if _NO_COLOR else "\033[33m"  # Yellow
    ERROR = "" if _NO_COLOR else "\033[31m"  # Red
    CRITICAL = "" if _NO_COLOR else "\033[35m"  # Magenta

    # Components
    REPOSITORY = "" if _NO_COLOR else "\033[34m"  # Blue
    STORE = "" if _NO_COLOR else "\033[35m"  # Magenta


# =============================================================================
# Formatters
# =============================================================================


class JSONLFormatter(logging.Formatter):
    """
    Formats log records as JSON Lines.

    Each entry carries timestamp, level, component and message, plus the
    structured ``context`` passed through ``log_with_context`` and the
    source location for warnings and errors.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "component": getattr(record, "component", "DATA"),
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = getattr(record, "context", None)
        if context:
            entry["context"] = context

        if record.levelno >= logging.WARNING:
            entry["source"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info and record.exc_info[0]:
            entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
            }

        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Human-readable formatter for console output."""

    LEVEL_COLORS = {
        logging.DEBUG: Colors.DEBUG,
        logging.INFO: Colors.INFO,
        logging.WARNING: Colors.WARNING,
        logging.ERROR: Colors.ERROR,
        logging.CRITICAL: Colors.CRITICAL,
    }

    def format(self, record: logging.LogRecord) -> str:
        component = getattr(record, "component", "DATA")
        component_color = getattr(record, "component_color", Colors.REPOSITORY)
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")

        if _NO_COLOR:
            prefix = f"[{timestamp}] [{component}]"
        else:
            prefix = (
                f"{Colors.DIM}{timestamp}{Colors.RESET} "
                f"{component_color}[{component}]{Colors.RESET}"
            )

        if record.levelno != logging.INFO:
            level_name = record.levelname
            if not _NO_COLOR:
                level_name = f"{self.LEVEL_COLORS.get(record.levelno, '')}{level_name}{Colors.RESET}"
            prefix = f"{prefix} {level_name}:"

        context = getattr(record, "context", None)
        suffix = ""
        if context:
            suffix = " " + " ".join(f"{k}={v}" for k, v in context.items())

        return f"{prefix} {record.getMessage()}{suffix}"


# =============================================================================
# Logger Setup
# =============================================================================

ROOT_LOGGER_NAME = "dazzle.data"
LOG_FILE_NAME = "data.log"

_loggers: dict[str, logging.Logger] = {}
_log_dir: Path | None = None


def setup_logging(
    log_dir: Path | str | None = None,
    level: int | str | None = None,
    max_bytes: int = 5 * 1024 * 1024,  # 5MB
    backup_count: int = 3,
) -> Path:
    """
    Initialize logging for the data layer.

    Creates a console handler and a rotating JSONL file handler on the
    ``dazzle.data`` logger. Missing arguments fall back to ``DataSettings``.

    Args:
        log_dir: Directory for log files
        level: Minimum log level (name or number)
        max_bytes: Max size per log file before rotation
        backup_count: Number of backup files to keep

    Returns:
        Path to the log directory
    """
    global _log_dir

    from dazzle_data.config import get_settings

    settings = get_settings()
    _log_dir = Path(log_dir) if log_dir is not None else settings.log_dir
    _log_dir.mkdir(parents=True, exist_ok=True)
    if level is None:
        level = settings.log_level
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    log_file = _log_dir / LOG_FILE_NAME
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setFormatter(JSONLFormatter())
    file_handler.setLevel(level)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(ConsoleFormatter())
    console_handler.setLevel(level)

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(level)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()
    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    log_with_context(
        root_logger,
        logging.INFO,
        "Data layer logging initialized",
        log_format="jsonl",
        log_file=str(log_file),
    )

    return _log_dir


class _ComponentFilter(logging.Filter):
    """Stamps component name and color onto records that lack them."""

    def __init__(self, component: str, color: str):
        super().__init__()
        self.component = component
        self.color = color

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "component"):
            record.component = self.component
        if not hasattr(record, "component_color"):
            record.component_color = self.color
        return True


def get_logger(component: str, color: str = Colors.REPOSITORY) -> logging.Logger:
    """
    Get a logger for a specific component.

    Args:
        component: Component name (e.g., "Repository", "Store")
        color: ANSI color code for the component tag

    Returns:
        Logger named ``dazzle.data.<component>``
    """
    if component in _loggers:
        return _loggers[component]

    logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{component.lower().replace(' ', '_')}")
    logger.addFilter(_ComponentFilter(component.upper(), color))
    _loggers[component] = logger
    return logger


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    context: dict[str, Any] | None = None,
    **kwargs: Any,
) -> None:
    """
    Log a message with structured context data.

    Args:
        logger: Logger instance
        level: Logging level (logging.INFO, logging.ERROR, etc.)
        message: Human-readable message
        context: Structured context data (included in JSONL output)
        **kwargs: Additional context items
    """
    extra = {"context": {**(context or {}), **kwargs}} if (context or kwargs) else {}
    logger.log(level, message, extra=extra)


def get_repository_logger() -> logging.Logger:
    """Get logger for repository operations."""
    return get_logger("Repository", Colors.REPOSITORY)


def get_store_logger() -> logging.Logger:
    """Get logger for store operations."""
    return get_logger("Store", Colors.STORE)


# =============================================================================
# Utility Functions
# =============================================================================


def get_log_file() -> Path | None:
    """Get the path to the main log file."""
    if _log_dir:
        return _log_dir / LOG_FILE_NAME
    return None


def get_recent_logs(count: int = 50, level: str | None = None) -> list[dict[str, Any]]:
    """
    Get recent log entries as parsed JSON.

    Args:
        count: Number of recent entries to return
        level: Optional filter by level (ERROR, WARNING, etc.)

    Returns:
        List of log entries (most recent last)
    """
    log_file = get_log_file()
    if not log_file or not log_file.exists():
        return []

    entries: list[dict[str, Any]] = []
    with open(log_file, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                continue
            if level and entry.get("level") != level.upper():
                continue
            entries.append(entry)

    return entries[-count:]
