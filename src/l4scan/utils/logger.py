"""
Logging configuration for l4scan.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Union

from rich.console import Console
from rich.logging import RichHandler


LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


def setup_logger(
    name: str,
    log_level: Optional[int] = None,
    log_file: Optional[Path] = None,
    console: bool = False,
) -> logging.Logger:
    """
    Set up and configure a logger with the given name.

    Args:
        name: Name of the logger
        log_level: Logging level (e.g., logging.INFO); None defers to the root logger
        log_file: Optional file to log to
        console: Whether to log to the console (stderr). Scan results own stdout.

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    if log_level is not None:
        logger.setLevel(log_level)

    # Clear any existing handlers to avoid duplicate logs
    logger.handlers.clear()

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger with the given name, configured with default settings.

    Args:
        name: Name of the logger

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)


def resolve_level(level: Union[int, str]) -> int:
    """Translate a configured level name into a logging constant."""
    if isinstance(level, int):
        return level
    return LEVELS.get(level.upper(), logging.WARNING)


def configure_root_logging(
    level: Union[int, str] = logging.WARNING, log_file: Optional[Path] = None
) -> None:
    """Route all l4scan logging through rich on stderr (and optionally a file)."""
    handlers = [RichHandler(console=Console(stderr=True), show_path=False)]
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        handlers.append(file_handler)

    logging.basicConfig(
        level=resolve_level(level),
        format="%(message)s",
        handlers=handlers,
        force=True,
    )
