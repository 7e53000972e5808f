"""
Simple logging module for the workflow code generator.

Compiler loggers write colored, structured lines to stdout. The level defaults
to `config.log_level` so operators can turn on per-node DEBUG tracing without
touching code.

Usage:
    from shared.logger import get_logger

    logger = get_logger(__name__)  # Use module name
    logger.info("Message here")
"""

import logging
import sys

from shared.config import config

# Global cache of loggers
_loggers = {}


class ColoredFormatter(logging.Formatter):
    """Formatter that adds colors to console output"""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
        'RESET': '\033[0m'       # Reset
    }

    def format(self, record):
        levelname = record.levelname
        if levelname in self.COLORS:
            record.levelname = f"{self.COLORS[levelname]}{levelname}{self.COLORS['RESET']}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


def _resolve_level(level) -> int:
    if level is None:
        level = config.log_level
    if isinstance(level, str):
        return getattr(logging, level.upper(), logging.INFO)
    return level


def get_logger(name: str, level=None) -> logging.Logger:
    """
    Get a logger that outputs colored, structured logs to console.

    Args:
        name: Logger name (typically __name__ or component name)
        level: Logging level name or number (default: config.log_level)

    Returns:
        Configured logger instance
    """
    if name in _loggers:
        return _loggers[name]

    resolved = _resolve_level(level)

    logger = logging.getLogger(name)
    logger.setLevel(resolved)
    logger.propagate = False

    # Clear any existing handlers
    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(resolved)

    formatter = ColoredFormatter(
        fmt='%(asctime)s | %(name)s | %(levelname)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    console_handler.setFormatter(formatter)

    logger.addHandler(console_handler)

    _loggers[name] = logger
    return logger


def set_log_level(level) -> None:
    """Change the level of every logger handed out so far (e.g. to quiet CLI stdout)."""
    resolved = _resolve_level(level)
    for logger in _loggers.values():
        logger.setLevel(resolved)
        for handler in logger.handlers:
            handler.setLevel(resolved)
