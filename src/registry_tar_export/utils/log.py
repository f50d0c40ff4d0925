"""Logging setup for the command-line tool."""

import logging
import sys

LOG_FORMAT = "[%(asctime)s] %(levelname)s [%(filename)s:%(lineno)d] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "FATAL": logging.CRITICAL,
    "CRITICAL": logging.CRITICAL,
}


def parse_log_level(level: str | int) -> int:
    """Map a level name to a logging level; unknown names mean INFO."""
    if isinstance(level, int):
        return level
    return LEVELS.get(level.strip().upper(), logging.INFO)


def setup_logging(level: str | int = "INFO") -> None:
    """Configure the root logger to write to stdout."""
    logging.basicConfig(
        level=parse_log_level(level),
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
