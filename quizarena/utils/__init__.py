"""
Utility modules for QuizArena.

This module contains configuration, logging and problem library loading.
"""

from .problem_loader import ProblemLibraryLoader, parse_problem
from .logger_config import setup_logging, get_logger, ColoredFormatter
from .config_manager import ConfigManager, get_config, set_config

__all__ = [
    "ProblemLibraryLoader", "parse_problem", "setup_logging", "get_logger",
    "ColoredFormatter", "ConfigManager", "get_config", "set_config"
]
