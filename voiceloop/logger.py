"""
Logging Configuration Module

Log records go to stderr so they never interleave with the state labels and
banner the CLI prints on stdout. Console timestamps carry milliseconds, which
is the resolution barge-in timing is read at. An optional log file gets the
full record with function and line.

Usage:
    from voiceloop.logger import get_logger

    logger = get_logger(__name__)
    logger.info("Listening for your command...")
"""

import logging
import sys
from pathlib import Path
from typing import Iterable, Optional, TextIO

# Libraries that log every connection or task at DEBUG
NOISY_LOGGERS = ("asyncio", "aiohttp", "urllib3")

CONSOLE_FORMAT = "%(asctime)s.%(msecs)03d {sep} %(levelname)s {sep} %(name)s {sep} %(message)s"
FILE_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(funcName)s:%(lineno)d | %(message)s"


class ColoredFormatter(logging.Formatter):
    """
    Formatter that colours the level name for terminal output.

    Colors:
    - DEBUG: Cyan
    - INFO: Green
    - WARNING: Yellow
    - ERROR: Red
    - CRITICAL: Bold Red
    """

    COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[1;31m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        original = record.levelname
        color = self.COLORS.get(record.levelno, self.RESET)
        record.levelname = f"{color}{original:<7}{self.RESET}"
        try:
            return super().format(record)
        finally:
            # The log file handler must see the plain level name
            record.levelname = original


def _console_handler(stream: TextIO, level: int, use_colors: bool) -> logging.Handler:
    handler = logging.StreamHandler(stream)
    handler.setLevel(level)
    if use_colors and stream.isatty():
        handler.setFormatter(ColoredFormatter(CONSOLE_FORMAT.format(sep="│"), datefmt="%H:%M:%S"))
    else:
        handler.setFormatter(logging.Formatter(CONSOLE_FORMAT.format(sep="|"), datefmt="%H:%M:%S"))
    return handler


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    use_colors: bool = True,
    quiet_loggers: Iterable[str] = NOISY_LOGGERS,
    stream: Optional[TextIO] = None,
) -> None:
    """
    Configure the root logger.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to log file
        use_colors: Colour the level name when the console is a terminal
        quiet_loggers: Third-party loggers capped at WARNING
        stream: Console stream (default stderr)
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()
    root_logger.addHandler(_console_handler(stream or sys.stderr, numeric_level, use_colors))

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        root_logger.addHandler(file_handler)

    for name in quiet_loggers:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))


def get_logger(name: str) -> logging.Logger:
    """Get a logger for a module (usually __name__)."""
    return logging.getLogger(name)


_initialized = False


def init_logging(level: Optional[str] = None) -> None:
    """
    Initialize logging from settings. Call once at application startup.

    Args:
        level: Overrides LOG_LEVEL (used by the CLI --verbose flag)
    """
    global _initialized
    if _initialized:
        return

    from voiceloop.config import settings
    setup_logging(
        level=level or settings.logging.level,
        log_file=settings.logging.file
    )

    _initialized = True
