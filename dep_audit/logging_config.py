"""
Logging setup for dep-audit.

Every module logs through the single ``dep_audit`` logger. Progress lines go
to stdout so they interleave with the package manager output, and an optional
log file always receives the full DEBUG stream.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, TextIO


LOGGER_NAME = "dep_audit"

_logger: Optional[logging.Logger] = None


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    verbose: bool = False,
    quiet: bool = False,
    propagate: bool = False,
    stream: Optional[TextIO] = None,
) -> logging.Logger:
    """
    Configure the ``dep_audit`` logger.

    Args:
        level: Log level name used when neither verbose nor quiet is set
        log_file: Optional path that receives every record at DEBUG level
        verbose: Force DEBUG on the console
        quiet: Drop the console handler entirely (file only)
        propagate: Let records reach the root logger (pytest caplog needs this)
        stream: Console stream, defaults to sys.stdout

    Returns:
        The configured logger
    """
    global _logger

    if verbose:
        effective_level = "DEBUG"
    elif quiet:
        effective_level = "WARNING"
    else:
        effective_level = level.upper()

    logger = logging.getLogger(LOGGER_NAME)
    # The console handler filters on its own level; the file wants everything.
    logger.setLevel(logging.DEBUG if log_file else getattr(logging, effective_level))
    logger.handlers.clear()

    if not quiet:
        console_stream = stream if stream is not None else sys.stdout
        console_handler = logging.StreamHandler(console_stream)
        console_handler.setLevel(getattr(logging, effective_level))
        console_handler.setFormatter(ColoredFormatter(
            "%(levelname_colored)s %(message)s",
            use_colors=hasattr(console_stream, "isatty") and console_stream.isatty(),
        ))
        logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
        logger.addHandler(file_handler)

    logger.propagate = propagate

    _logger = logger
    return logger


def get_logger() -> logging.Logger:
    """Return the configured logger, setting up defaults on first use."""
    global _logger
    if _logger is None:
        _logger = setup_logging()
    return _logger


class ColoredFormatter(logging.Formatter):
    """
    Prefix each record with a colored level marker.

    Without colors the plain level name is used so log files and pipes stay
    free of escape sequences.
    """

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[1;31m",
    }
    RESET = "\033[0m"

    SYMBOLS = {
        "DEBUG": "·",
        "INFO": "✓",
        "WARNING": "⚠️",
        "ERROR": "✗",
        "CRITICAL": "🚨",
    }

    def __init__(self, fmt: str, use_colors: bool = True):
        super().__init__(fmt)
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        if self.use_colors:
            color = self.COLORS.get(record.levelname, "")
            symbol = self.SYMBOLS.get(record.levelname, "")
            record.levelname_colored = f"{color}{symbol} {record.levelname}{self.RESET}"
        else:
            record.levelname_colored = record.levelname
        return super().format(record)


def debug(msg: str, verbose: bool = True) -> None:
    """Log a debug message when verbose."""
    if verbose:
        get_logger().debug(msg)


def info(msg: str, verbose: bool = True) -> None:
    """Log a progress message."""
    if verbose:
        get_logger().info(msg)


def warning(msg: str, verbose: bool = True) -> None:
    """Log a warning."""
    if verbose:
        get_logger().warning(msg)


def error(msg: str, verbose: bool = True) -> None:
    """Log an error."""
    if verbose:
        get_logger().error(msg)
