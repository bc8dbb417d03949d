"""
Logging Configuration for the hybrid search engine
Provides consistent JSON logging across all modules for production observability.
Log lines go to stderr so CLI output on stdout stays machine-readable.
"""

import logging
import os
import sys

from pythonjsonlogger import jsonlogger


def setup_logger(
    name: str = "hybrid_search",
    level: str | None = None,
) -> logging.Logger:
    """
    Create and configure a logger instance with JSON output.

    Args:
        name: Logger name (usually __name__ of calling module)
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
               Defaults to LOG_LEVEL env var or INFO

    Returns:
        Configured logger instance
    """
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO").upper()

    numeric_level = getattr(logging, level, logging.INFO)

    logger = logging.getLogger(name)

    # Only add handler if not already configured
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        formatter = jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.setLevel(numeric_level)
    # each module logger has its own handler; do not repeat lines on the parent
    logger.propagate = False

    return logger


# Default application logger
logger = setup_logger("hybrid_search")
