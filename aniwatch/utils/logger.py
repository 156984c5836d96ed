import logging
import sys
from pathlib import Path
from typing import Optional

from ..config import LOG_PATH


def setup_logging(level=logging.INFO, log_to_file=True, log_file: Optional[Path] = None, console_level=None):
    """
    Sets up a centralized logging system for AniWatch.
    Logs to console and optionally to a file in the data directory.
    """
    log_file = Path(log_file or LOG_PATH)

    # Define formatting
    log_format = '%(asctime)s [%(levelname)s] %(name)s (%(filename)s:%(lineno)d) - %(message)s'
    formatter = logging.Formatter(log_format)

    # Root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Clear existing handlers to avoid duplicates
    if root_logger.hasHandlers():
        root_logger.handlers.clear()

    # Console Handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    if console_level is not None:
        # Keep the prompt readable; the file still gets everything.
        console_handler.setLevel(console_level)
    root_logger.addHandler(console_handler)

    # File Handler
    if log_to_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # Silence noisy third-party loggers
    logging.getLogger("asyncio").setLevel(logging.INFO)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("pypresence").setLevel(logging.WARNING)

    logging.info(f"Logging initialized. Level: {logging.getLevelName(level)}, File: {log_file if log_to_file else '-'}")


def get_logger(name):
    """Returns a logger with the given name."""
    return logging.getLogger(name)
