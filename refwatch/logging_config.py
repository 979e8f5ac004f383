"""
Logging setup for refwatch.

The library only logs through module loggers under "refwatch". Nothing
is printed unless the host application configures logging or calls
setup_logging().
"""

import logging
import sys
from typing import Optional, Union

LOGGER_NAME = "refwatch"


class ColoredFormatter(logging.Formatter):
    """Formatter that colors the level name on a terminal."""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname)
        if color is None:
            return super().format(record)

        # Copy so other handlers see the plain level name
        record = logging.makeLogRecord(record.__dict__)
        record.levelname = f"{color}{record.levelname:8s}{self.RESET}"
        return super().format(record)


def setup_logging(level: Union[int, str] = logging.WARNING, colored: Optional[bool] = None) -> logging.Logger:
    """
    Attach a console handler to the refwatch logger.

    Calling it again replaces the handler instead of adding another.

    Args:
        level: Log level name or number
        colored: Force colors on/off; defaults to stderr being a tty

    Returns:
        The configured "refwatch" logger
    """
    if isinstance(level, str):
        level = level.upper()

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    for handler in list(logger.handlers):
        if getattr(handler, "_refwatch_console", False):
            logger.removeHandler(handler)

    if colored is None:
        colored = sys.stderr.isatty()

    fmt = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(ColoredFormatter(fmt) if colored else logging.Formatter(fmt))
    handler._refwatch_console = True
    logger.addHandler(handler)

    return logger
