"""Logging setup

All modules log through loguru's shared ``logger``; this module only
decides where the records go (console and/or a rotating file).

Usage:
    from voskkit.utils.logger import setup_logging

    setup_logging(level="DEBUG", console_output=True)
"""

import sys
from pathlib import Path
from typing import Optional, Union

from loguru import logger

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)

_LEVELS = ("TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL")


def normalize_level(level: str) -> str:
    """Map a config string to a loguru level name, defaulting to INFO"""
    level = (level or "").strip().upper()
    return level if level in _LEVELS else "INFO"


def setup_logging(
    level: str = "INFO",
    console_output: bool = True,
    log_file: Optional[Union[str, Path]] = None,
) -> None:
    """Replace loguru's default sink with the configured ones

    Args:
        level: Minimum level name (DEBUG, INFO, ...)
        console_output: Write records to stderr
        log_file: Optional path of a rotating log file
    """
    level = normalize_level(level)
    logger.remove()

    if console_output:
        logger.add(sys.stderr, level=level, format=LOG_FORMAT, enqueue=False)

    if log_file:
        log_path = Path(log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(log_path),
            level=level,
            rotation="5 MB",
            retention=3,
            encoding="utf-8",
            enqueue=True,
        )

    logger.debug(f"Logging configured (level={level}, console={console_output}, file={log_file})")


def configure_from_config(config) -> None:
    """Apply the ``logging.*`` settings of a config reader"""
    setup_logging(
        level=config.get_setting("logging.level", "INFO"),
        console_output=config.get_setting("logging.console_output", True),
        log_file=config.get_setting("logging.file", None),
    )


__all__ = ["setup_logging", "configure_from_config", "normalize_level", "logger"]
