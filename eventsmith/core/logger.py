"""
Loguru sinks for Eventsmith.

stderr always gets a colored sink. With ``general.log_to_file`` set, two
daily files are written under ``<data_dir>/logs``: everything from DEBUG
up, and errors only, kept longer.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from loguru import logger

from .config import DATA_DIR

if TYPE_CHECKING:
    from .config import EventsmithConfig

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> <level>{level: <7}</level> "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> {message}"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} {level: <7} {name}:{function}:{line} {message}"

# (file stem, minimum level, retention)
FILE_SINKS = (
    ("eventsmith", "DEBUG", "7 days"),
    ("eventsmith_errors", "ERROR", "30 days"),
)


def log_directory(config: Optional[EventsmithConfig] = None) -> Path:
    """Where log files go; a relative ``data_dir`` is taken from the project root."""
    if config is None:
        return DATA_DIR / "logs"
    return DATA_DIR.parent / config.general.data_dir / "logs"


def _level(config: Optional[EventsmithConfig]) -> str:
    if config is None:
        return "INFO"
    return "DEBUG" if config.general.debug else config.general.log_level


def setup_logging(config: Optional[EventsmithConfig] = None) -> None:
    """Replace every loguru sink with the ones ``config`` asks for."""
    logger.remove()
    logger.add(sys.stderr, format=CONSOLE_FORMAT, level=_level(config), colorize=True, diagnose=False)

    if config is None or not config.general.log_to_file:
        return

    log_dir = log_directory(config)
    log_dir.mkdir(parents=True, exist_ok=True)
    for stem, level, retention in FILE_SINKS:
        logger.add(
            log_dir / f"{stem}_{{time:YYYY-MM-DD}}.log",
            format=FILE_FORMAT,
            level=level,
            rotation="00:00",
            retention=retention,
            compression="zip",
            diagnose=False,
        )
    logger.info(f"Writing logs to {log_dir}")


def get_logger(name: str):
    """A logger whose records carry ``name`` in their extra fields."""
    return logger.bind(name=name)


__all__ = ["logger", "setup_logging", "get_logger", "log_directory"]
