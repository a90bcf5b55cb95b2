"""
Configuration management for QuizArena.

Defaults are overridden by a JSON configuration file, which is in turn
overridden by ``QUIZARENA_*`` environment variables. Command-line flags are
applied last through ``ConfigManager.set``.
"""

import copy
import json
import os
from typing import Dict, Any, Optional

from quizarena.utils.logger_config import get_logger

logger = get_logger("config_manager")


DEFAULT_CONFIG: Dict[str, Any] = {
    "logging": {
        "level": "INFO",
        "directory": "logs/quizarena",
        "enable_colors": True,
        "components": {}
    },
    "server": {
        "host": "0.0.0.0",
        "port": 5000
    },
    "database": {
        "path": "data/quizarena.duckdb"
    },
    "rate_limiting": {
        "min_interval": 0.0
    },
    "retry": {
        "max_attempts": 3,
        "initial_delay": 0.5
    },
    "contest": {
        # System-triggered final submissions are accepted this long after end_time
        "auto_submit_grace_seconds": 0
    },
    "rating": {
        "initial_rating": 300,
        "unrated_floor": 1000,
        # Ordered (threshold, value) pairs: value applies from threshold upwards
        "k_factors": [[None, 40], [1200, 32], [2000, 24], [2400, 16]],
        "titles": [[None, "Newbie"], [1000, "Pupil"], [1900, "Expert"], [2100, "Candidate Master"]]
    },
    "auth": {
        "admin_token": ""
    },
    "data_sources": {
        "problem_library": "data/problems.json"
    }
}


class ConfigManager:
    """Centralized configuration management for QuizArena"""

    ENV_MAPPINGS = {
        "QUIZARENA_LOG_LEVEL": ("logging", "level"),
        "QUIZARENA_LOG_DIR": ("logging", "directory"),
        "QUIZARENA_HOST": ("server", "host"),
        "QUIZARENA_PORT": ("server", "port"),
        "QUIZARENA_DB_PATH": ("database", "path"),
        "QUIZARENA_RATE_LIMIT_INTERVAL": ("rate_limiting", "min_interval"),
        "QUIZARENA_AUTO_SUBMIT_GRACE": ("contest", "auto_submit_grace_seconds"),
        "QUIZARENA_UNRATED_FLOOR": ("rating", "unrated_floor"),
        "QUIZARENA_ADMIN_TOKEN": ("auth", "admin_token"),
        "QUIZARENA_PROBLEM_LIBRARY": ("data_sources", "problem_library"),
    }

    # Values read verbatim from the environment, never coerced to numbers or booleans
    STRING_ENV_VARS = {
        "QUIZARENA_LOG_LEVEL", "QUIZARENA_LOG_DIR", "QUIZARENA_HOST", "QUIZARENA_DB_PATH",
        "QUIZARENA_ADMIN_TOKEN", "QUIZARENA_PROBLEM_LIBRARY",
    }

    def __init__(self, config_path: Optional[str] = None, load_env: bool = True):
        """
        Initialize configuration manager

        Args:
            config_path: Path to configuration file (optional)
            load_env: Whether environment variables override file values
        """
        self.config_path = config_path or "config/server_config.json"
        self.load_env = load_env
        self._config: Dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration from file and environment variables"""
        self._config = copy.deepcopy(DEFAULT_CONFIG)

        if os.path.exists(self.config_path):
            try:
                with open(self.config_path, 'r', encoding='utf-8') as f:
                    file_config = json.load(f)
                self._merge_config(file_config)
                logger.info(f"Loaded configuration from {self.config_path}")
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Failed to load config file {self.config_path}: {e}")

        if self.load_env:
            self._load_from_env()

        logger.debug("Configuration loaded successfully")

    def _merge_config(self, new_config: Dict[str, Any]) -> None:
        """Merge new configuration into existing config"""
        def merge_dict(target: Dict[str, Any], source: Dict[str, Any]) -> None:
            for key, value in source.items():
                if key in target and isinstance(target[key], dict) and isinstance(value, dict):
                    merge_dict(target[key], value)
                else:
                    target[key] = value

        merge_dict(self._config, new_config)

    def _load_from_env(self) -> None:
        """Load configuration from environment variables"""
        for env_var, config_path in self.ENV_MAPPINGS.items():
            value = os.getenv(env_var)
            if value is not None:
                if env_var not in self.STRING_ENV_VARS:
                    value = self._parse_env_value(value)
                self._set_nested_value(config_path, value)

    def _set_nested_value(self, path: tuple, value: Any) -> None:
        current = self._config
        for key in path[:-1]:
            current = current.setdefault(key, {})
        current[path[-1]] = value

    def _parse_env_value(self, value: str) -> Any:
        """Parse environment variable value to appropriate type"""
        if value.lower() in ('true', 'yes', 'on'):
            return True
        if value.lower() in ('false', 'no', 'off'):
            return False

        try:
            return int(value)
        except ValueError:
            pass

        try:
            return float(value)
        except ValueError:
            pass

        return value

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation

        Args:
            key: Configuration key (e.g., "rating.unrated_floor")
            default: Default value if key not found
        """
        current: Any = self._config
        for k in key.split('.'):
            if isinstance(current, dict) and k in current:
                current = current[k]
            else:
                return default
        return current

    def set(self, key: str, value: Any) -> None:
        """Set configuration value using dot notation"""
        self._set_nested_value(tuple(key.split('.')), value)

    def get_section(self, section: str) -> Dict[str, Any]:
        """Get entire configuration section"""
        return self._config.get(section, {})

    def to_dict(self) -> Dict[str, Any]:
        """Get complete configuration as dictionary"""
        return copy.deepcopy(self._config)

    def save(self, path: Optional[str] = None) -> None:
        """Save current configuration to file"""
        save_path = path or self.config_path
        directory = os.path.dirname(save_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        with open(save_path, 'w', encoding='utf-8') as f:
            json.dump(self._config, f, indent=2, ensure_ascii=False)

        logger.info(f"Configuration saved to {save_path}")


# Global configuration instance
_global_config: Optional[ConfigManager] = None


def get_config(config_path: Optional[str] = None) -> ConfigManager:
    """Get or create global configuration instance"""
    global _global_config
    if _global_config is None:
        _global_config = ConfigManager(config_path)
    return _global_config


def set_config(config_manager: Optional[ConfigManager]) -> None:
    """Set (or reset with None) the global configuration instance"""
    global _global_config
    _global_config = config_manager
