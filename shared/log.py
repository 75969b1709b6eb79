#!/usr/bin/env python3
"""
twitchbot Logging Configuration

Centralized logging setup for consistent formatting across the project.
Supports both development (console) and production (file) modes.

Usage:
    from shared.log import get_logger

    logger = get_logger(__name__)
    logger.info("Connecting to chat...")
    logger.error("Read failed", extra={"channel": "somechannel", "direction": "in"})
"""

from __future__ import annotations
import logging
import sys
from pathlib import Path
from typing import Optional, Any
import os


# ========================================
#           LOGGING FORMATTERS
# ========================================

class ColoredFormatter(logging.Formatter):
    """Colored formatter for console output"""

    # ANSI Color codes
    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
        'RESET': '\033[0m'       # Reset
    }

    def format(self, record: logging.LogRecord) -> str:
        levelname = record.levelname
        if levelname in self.COLORS:
            record.levelname = f"{self.COLORS[levelname]}{levelname}{self.COLORS['RESET']}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


class GenericFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        # IRC context passed through `extra`
        irc_context = []

        if hasattr(record, 'channel'):
            irc_context.append(f"#{record.channel}")
        if hasattr(record, 'direction'):
            irc_context.append(record.direction)
        if hasattr(record, 'msg_type'):
            irc_context.append(f"type={record.msg_type}")

        message = super().format(record)
        if irc_context:
            return f"[{' '.join(irc_context)}] {message}"
        return message


# ========================================
#           LOGGING CONFIGURATION
# ========================================

_loggers_configured = set()

def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """
    Get a configured logger for the given module.

    Args:
        name: Usually __name__ from the calling module
        level: Override log level ("DEBUG", "INFO", "WARNING", "ERROR")

    Returns:
        Configured logger instance

    Examples:
        logger = get_logger(__name__)
        logger.info("Joined channel")

        # With context
        logger.debug("PRIVMSG received", extra={
            "channel": "somechannel",
            "direction": "in",
            "msg_type": "PRIVMSG"
        })
    """
    logger = logging.getLogger(name)

    # Only configure each logger once
    if name not in _loggers_configured:
        _configure_logger(logger, level)
        _loggers_configured.add(name)
    elif level:
        logger.setLevel(_get_log_level(level))

    return logger


def _configure_logger(logger: logging.Logger, level: Optional[str] = None) -> None:
    """Configure a logger with appropriate handlers and formatters"""

    log_level = _get_log_level(level)
    logger.setLevel(log_level)

    # Clear existing handlers to avoid duplicates
    logger.handlers.clear()

    if _is_development():
        _add_file_handler(logger)
        _add_console_handler(logger, colored=True)
    else:
        # Production: Clean console + file logging
        _add_console_handler(logger, colored=False)
        _add_file_handler(logger)

    # Prevent duplicate messages from parent loggers
    logger.propagate = False


def _get_log_level(level: Optional[str] = None) -> int:
    """Determine appropriate log level"""

    if level:
        return getattr(logging, level.upper(), logging.INFO)

    return logging.DEBUG if _is_development() else logging.INFO


def _is_development() -> bool:
    """Detect if we're in development mode"""
    return (
        os.getenv('PYTHON_ENV', '').lower() in ['dev', 'development'] or
        'pytest' in sys.modules or
        __debug__  # Python -O flag not used
    )


def _add_console_handler(logger: logging.Logger, colored: bool = True) -> None:
    """Add console handler with appropriate formatter"""

    fmt = '[%(levelname)-8s][%(asctime)s][%(name)-5s]: %(message)s'
    handler = logging.StreamHandler(sys.stdout)

    if colored and _supports_color():
        formatter = ColoredFormatter(
            fmt=fmt,
            datefmt='%H:%M:%S'
        )
    else:
        formatter = GenericFormatter(
            fmt=fmt,
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    handler.setFormatter(formatter)
    logger.addHandler(handler)


def _add_file_handler(logger: logging.Logger) -> None:
    """Add file handler for production logging"""

    log_dir = Path(os.getenv('TWITCHBOT_LOG_DIR', 'logs'))
    log_dir.mkdir(parents=True, exist_ok=True)

    log_file = log_dir / "twitchbot.log"
    handler = logging.FileHandler(log_file, encoding="utf-8")

    formatter = GenericFormatter(
        fmt='%(asctime)s | %(name)-30s | %(levelname)-8s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    handler.setFormatter(formatter)
    logger.addHandler(handler)


def _supports_color() -> bool:
    """Check if terminal supports color output"""

    # stdout must be a terminal
    if not (hasattr(sys.stdout, "isatty") and sys.stdout.isatty()):
        return False

    # TERM should not be dumb
    if os.getenv("TERM", "") == "dumb":
        return False

    if sys.platform == "win32":
        # On modern Windows terminals, ANSI colors are supported
        return os.getenv("ANSICON") is not None or os.getenv("WT_SESSION") is not None or os.getenv("TERM_PROGRAM") == "vscode" or "WindowsTerminal" in os.getenv("TERM", "")

    return True

# ========================================
#           CONVENIENCE FUNCTIONS
# ========================================

def configure_root_logging(level: str = "INFO") -> None:
    """
    Configure root logging for the entire application.
    Call this once at application startup.

    Args:
        level: Root log level ("DEBUG", "INFO", "WARNING", "ERROR")
    """
    root_logger = logging.getLogger()
    _configure_logger(root_logger, level)
    # Module loggers created by get_logger follow the requested level too
    for name in _loggers_configured:
        logging.getLogger(name).setLevel(_get_log_level(level))


def mask_secret_line(line: str) -> str:
    """Hide the secret carried by a PASS line."""
    if line.startswith("PASS "):
        return "PASS ********"
    return line


def log_irc_line(logger: logging.Logger, direction: str, line: str,
                 channel: Optional[str] = None, msg_type: Optional[str] = None,
                 level: str = "debug", **context: Any) -> None:
    """
    Log one IRC protocol line with structured context.

    Args:
        logger: Logger instance
        direction: "in" for received lines, "out" for sent lines
        line: The raw protocol line, without CRLF
        channel: Channel the session is bound to
        msg_type: IRC command of the line when known (PRIVMSG, PING, ...)
        level: Log level ("debug", "info", "warning", "error")
        **context: Additional context fields

    Example:
        log_irc_line(logger, "out", "JOIN #somechannel", channel="somechannel")
    """

    extra_context = {'direction': direction}
    if channel:
        extra_context['channel'] = channel
    if msg_type:
        extra_context['msg_type'] = msg_type
    extra_context.update(context)

    arrow = "<<" if direction == "in" else ">>"
    log_func = getattr(logger, level.lower())
    log_func("%s %s", arrow, mask_secret_line(line), extra=extra_context)
