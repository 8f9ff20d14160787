"""
Centralized logging for voxkey.

Errors go to logs/voxkey_errors.log, everything at the configured level goes to
a size-rotated logs/debug.log, and the console only gets output when
misc.print_to_terminal is enabled.
"""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

LOGGER_NAME = "voxkey"

# Default logs directory (project root, next to run.py)
LOGS_DIR = Path(__file__).parent.parent.parent / "logs"

ERROR_LOG_NAME = "voxkey_errors.log"
DEBUG_LOG_NAME = "debug.log"
_MAX_LOG_SIZE = 1 * 1024 * 1024  # 1MB

# Format: [2024-01-15 14:30:25] ERROR - message
_FORMATTER = logging.Formatter(
    '[%(asctime)s] %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)

_logs_dir: Path = LOGS_DIR


def setup_logging(
    logs_dir: Optional[Union[str, Path]] = None,
    level: str = "INFO",
    print_to_terminal: bool = False,
) -> logging.Logger:
    """
    Configure the ``voxkey`` logger. Safe to call again (handlers are replaced).

    Args:
        logs_dir: Directory for log files (defaults to ./logs)
        level: Level for the debug file and console
        print_to_terminal: Also log to stderr

    Returns:
        The configured package logger
    """
    global _logs_dir
    _logs_dir = Path(logs_dir) if logs_dir else LOGS_DIR
    _logs_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    # Remove any existing handlers
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    error_handler = logging.FileHandler(_logs_dir / ERROR_LOG_NAME, mode='a', encoding='utf-8')
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(_FORMATTER)
    logger.addHandler(error_handler)

    debug_handler = RotatingFileHandler(
        _logs_dir / DEBUG_LOG_NAME, maxBytes=_MAX_LOG_SIZE, backupCount=1, encoding='utf-8'
    )
    debug_handler.setLevel(level.upper())
    debug_handler.setFormatter(_FORMATTER)
    logger.addHandler(debug_handler)

    if print_to_terminal:
        console = logging.StreamHandler()
        console.setLevel(level.upper())
        console.setFormatter(_FORMATTER)
        logger.addHandler(console)

    return logger


def get_logs_dir() -> Path:
    """Directory the log files (and failed-audio dumps) are written to."""
    return _logs_dir


# Convenience functions for logging
def log_error(message, exception=None):
    """
    Log an error message.

    Args:
        message: Error message string
        exception: Optional exception object to include traceback
    """
    logger = logging.getLogger(LOGGER_NAME)
    if exception:
        logger.error(f"{message}: {str(exception)}", exc_info=exception)
    else:
        logger.error(message)


def log_exception(exception, context=""):
    """
    Log an exception with full traceback.

    Args:
        exception: Exception object
        context: Optional context string (e.g., "in transcription")
    """
    logger = logging.getLogger(LOGGER_NAME)
    if context:
        logger.error(f"Exception {context}", exc_info=exception)
    else:
        logger.error("Exception occurred", exc_info=exception)
