"""
Logging configuration for QuizArena

Console output is colored by level; file output is plain text. Handlers are
installed on the ``quizarena`` namespace logger, so Flask and werkzeug keep
their own output. Modules ask for a named logger through ``get_logger`` and
never configure handlers themselves.
"""

import logging
import os
import sys
from datetime import datetime
from typing import Dict, Optional

LOGGER_NAMESPACE = "quizarena"

LINE_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

LEVEL_COLORS = {
    logging.DEBUG: '\033[32m',
    logging.INFO: '\033[36m',
    logging.WARNING: '\033[33m',
    logging.ERROR: '\033[31m',
    logging.CRITICAL: '\033[41m\033[97m',
}
RESET = '\033[0m'


class ColoredFormatter(logging.Formatter):
    """Level-colored console formatter; ``colored=False`` gives plain lines"""

    def __init__(self, fmt: str = LINE_FORMAT, datefmt: str = DATE_FORMAT, colored: bool = True):
        super().__init__(fmt, datefmt=datefmt)
        self.colored = colored

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        color = LEVEL_COLORS.get(record.levelno)
        if not self.colored or not color:
            return line
        return f"{color}{line}{RESET}"


def _namespace_logger() -> logging.Logger:
    return logging.getLogger(LOGGER_NAMESPACE)


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    enable_colors: bool = True,
    component_levels: Optional[Dict[str, str]] = None
) -> logging.Logger:
    """
    Install console and optional file handlers for QuizArena loggers.

    Args:
        level: Console level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional log file path; the file records every level
        enable_colors: Whether console lines are colored
        component_levels: Per-component overrides, e.g. {"storage": "DEBUG"}

    Returns:
        The configured namespace logger
    """
    root = _namespace_logger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level.upper())
    console_handler.setFormatter(ColoredFormatter(colored=enable_colors))
    root.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(ColoredFormatter(colored=False))
        root.addHandler(file_handler)

    root.setLevel(logging.DEBUG)
    root.propagate = False

    for component, component_level in (component_levels or {}).items():
        get_logger(component).setLevel(component_level.upper())

    return root


def setup_logging_from_config(config, prefix: str = "server") -> Optional[str]:
    """
    Setup logging from the ``logging`` section of a ConfigManager.

    Returns:
        Path of the log file that was opened, if any
    """
    log_config = config.get_section("logging")
    log_dir = log_config.get("directory")

    log_filename = None
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_filename = os.path.join(log_dir, f"{prefix}_{timestamp}.log")

    setup_logging(
        level=log_config.get("level", "INFO"),
        log_file=log_filename,
        enable_colors=log_config.get("enable_colors", True),
        component_levels=log_config.get("components")
    )
    return log_filename


def get_logger(name: str) -> logging.Logger:
    """Logger for a QuizArena component, e.g. ``get_logger("rating")``"""
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")
