# ftrace_collector/utils/logger.py - Logging setup
"""
Logging for the collector.

Console output is short and colored by level, with warnings and errors
colored in full. The optional log file keeps the full record at DEBUG,
including the thread name of concurrent drain workers.
"""

import logging
import sys
from typing import Optional
from colorama import Fore, Style


CONSOLE_FORMAT = '%(asctime)s %(levelname)-8s %(message)s'
FILE_FORMAT = '%(asctime)s [%(threadName)s] %(name)s %(levelname)s: %(message)s'
DATE_FORMAT = '%H:%M:%S'

LEVEL_COLORS = {
    logging.DEBUG: Fore.CYAN,
    logging.INFO: Fore.GREEN,
    logging.WARNING: Fore.YELLOW,
    logging.ERROR: Fore.RED,
    logging.CRITICAL: Fore.RED + Style.BRIGHT,
}


class ColoredFormatter(logging.Formatter):
    """
    Console formatter that colors the level name, and the whole line from
    WARNING up.
    """

    def format(self, record):
        color = LEVEL_COLORS.get(record.levelno)
        if color is None:
            return super().format(record)

        record = logging.makeLogRecord(record.__dict__)
        record.levelname = f"{color}{record.levelname}{Style.RESET_ALL}"
        line = super().format(record)
        if record.levelno >= logging.WARNING:
            line = f"{color}{line}{Style.RESET_ALL}"
        return line


def setup_logging(level: str = 'INFO', log_file: Optional[str] = None,
                  use_colors: bool = True):
    """
    Install console and optional file handlers on the root logger,
    replacing any existing ones.

    Args:
        level: Logging level name
        log_file: Optional log file path; always written at DEBUG
        use_colors: Color console output
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    root_logger = logging.getLogger()
    root_logger.handlers = []

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(numeric_level)
    formatter_class = ColoredFormatter if use_colors else logging.Formatter
    console_handler.setFormatter(formatter_class(CONSOLE_FORMAT, datefmt=DATE_FORMAT))
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        root_logger.addHandler(file_handler)
        root_logger.setLevel(logging.DEBUG)
    else:
        root_logger.setLevel(numeric_level)

    logging.getLogger(__name__).debug(f"Logging initialized at {level} level")


def get_logger(name: str) -> logging.Logger:
    """Return the logger for a module (pass __name__)."""
    return logging.getLogger(name)
