"""
=============================================================================
LOGGER SETUP
=============================================================================

Configures the root logger from the `logging` section of the config.

    ┌──────────────────────────────────────────────────────────────────┐
    │  root logger (level from config)                                 │
    │     ├── console handler   colored per level when color = true    │
    │     └── rotating file     when logging.file is set               │
    │                                                                  │
    │  qserv.*          module loggers (server, pipeline, stages)      │
    │  qserv.access     one line per completed request                 │
    └──────────────────────────────────────────────────────────────────┘

Config levels use the short names operators type on the command line
(debug/info/warn/error); they are mapped to stdlib levels here.

=============================================================================
"""

import logging
from logging.handlers import RotatingFileHandler

import colorama
from colorama import Fore, Style

from .config import LoggingSettings


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


class ColoredFormatter(logging.Formatter):
    """Console formatter that colors the whole line by level."""

    COLORS = {
        logging.DEBUG: Fore.CYAN,
        logging.INFO: Fore.GREEN,
        logging.WARNING: Fore.YELLOW,
        logging.ERROR: Fore.RED,
        logging.CRITICAL: Fore.RED + Style.BRIGHT,
    }

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        color = self.COLORS.get(record.levelno, "")
        return f"{color}{message}{Style.RESET_ALL}"


def setup_logging(
    settings: LoggingSettings,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> logging.Logger:
    """
    Configure the root logger.

    Existing root handlers are replaced, so calling this twice (tests,
    restarts in the same process) does not duplicate output.

    Args:
        settings: The logging section of the configuration.
        max_bytes: Rotate the log file at this size.
        backup_count: Number of rotated files to keep.

    Returns:
        The root logger.

    Raises:
        OSError: The log file cannot be opened.
    """
    level = LEVELS.get(settings.level, logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler()
    if settings.color:
        colorama.just_fix_windows_console()
        console.setFormatter(ColoredFormatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    else:
        console.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    root.addHandler(console)

    if settings.file:
        file_handler = RotatingFileHandler(
            settings.file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        root.addHandler(file_handler)

    access = logging.getLogger("qserv.access")
    access.disabled = not settings.access_log

    return root

