"""Logging setup for the MedQueue client."""
import os
import sys
import logging
from typing import Optional

from .path_config import get_logs_dir

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str = "INFO",
                  log_file: Optional[str] = None,
                  fmt: str = DEFAULT_FORMAT) -> logging.Logger:
    """Configure the ``medqueue`` logger hierarchy.

    Args:
        level: Log level name.
        log_file: File name inside the logs directory. No file handler when None.
        fmt: Formatter string.

    Returns:
        The package logger.
    """
    logger = logging.getLogger("medqueue")
    logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))

    formatter = logging.Formatter(fmt)
    logger.handlers = []  # Remove any existing handlers

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if log_file:
        file_handler = logging.FileHandler(os.path.join(get_logs_dir(), log_file))
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger
