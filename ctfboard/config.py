"""
Configuration management for the CTF platform.
Supports both JSON file configuration and environment variable overrides.
"""

import copy
import json
import os
from pathlib import Path
from typing import Dict, Any, Optional

import structlog

logger = structlog.get_logger(__name__)


class CTFConfig:
    """Configuration management for the CTF platform."""

    DEFAULT_CONFIG = {
        "ctf_name": "CTF Platform",
        "server": {
            "host": "0.0.0.0",
            "port": 8081,
            "base_url": "http://localhost:8081",
        },
        "database": {
            "path": "ctf.db",
            "busy_timeout": 5.0,  # seconds to wait on a locked database
        },
        "auth": {
            "session_ttl_hours": 24,
            "require_email_verification": False,
            "min_password_length": 8,
        },
        "admin": {
            "username": "admin",
            "email": "admin@example.com",
            "password": None,  # no admin account is seeded without a password
        },
        "scoring": {
            "max_flag_length": 256,
        },
        "leaderboard": {
            "default_limit": 10,
            "max_limit": 100,
        },
        "logging": {
            "level": "INFO",
            "format": "console",  # console or json
        },
        "seed": {
            "demo_challenges": False,
        },
    }

    ENV_MAPPINGS = {
        # Basic configuration
        "CTF_NAME": ("ctf_name",),
        "HOST": ("server", "host"),
        "WEB_PORT": ("server", "port"),
        "BASE_URL": ("server", "base_url"),
        "DB_PATH": ("database", "path"),
        "DB_BUSY_TIMEOUT": ("database", "busy_timeout"),
        # Authentication
        "SESSION_TTL_HOURS": ("auth", "session_ttl_hours"),
        "REQUIRE_EMAIL_VERIFICATION": ("auth", "require_email_verification"),
        "MIN_PASSWORD_LENGTH": ("auth", "min_password_length"),
        "ADMIN_USERNAME": ("admin", "username"),
        "ADMIN_EMAIL": ("admin", "email"),
        "ADMIN_PASSWORD": ("admin", "password"),
        # Scoring and leaderboard
        "MAX_FLAG_LENGTH": ("scoring", "max_flag_length"),
        "LEADERBOARD_DEFAULT_LIMIT": ("leaderboard", "default_limit"),
        "LEADERBOARD_MAX_LIMIT": ("leaderboard", "max_limit"),
        # Logging
        "LOG_LEVEL": ("logging", "level"),
        "LOG_FORMAT": ("logging", "format"),
        # Seeding
        "SEED_DEMO_CHALLENGES": ("seed", "demo_challenges"),
    }

    def __init__(
        self,
        config_path: Optional[str] = "ctf_config.json",
        overrides: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Initialize configuration from file, environment variables, or defaults."""
        self.config_path = Path(config_path) if config_path else None
        self.config = self._load_config()
        self._apply_env_overrides()
        if overrides:
            self._deep_merge(self.config, overrides)
        self._validate_config()

    def _load_config(self) -> Dict[str, Any]:
        """
        Load configuration from JSON file or create default.

        @return: Dictionary containing the loaded configuration
        """
        config = copy.deepcopy(self.DEFAULT_CONFIG)

        if self.config_path is None:
            return config

        if self.config_path.exists():
            try:
                with open(self.config_path, "r", encoding="utf-8") as f:
                    loaded_config = json.load(f)

                # Merge with defaults to ensure all keys exist
                self._deep_merge(config, loaded_config)
                return config

            except (json.JSONDecodeError, IOError) as e:
                logger.warning(
                    "config_load_failed", path=str(self.config_path), error=str(e)
                )
                return config
        else:
            self._create_default_config()
            return config

    def _deep_merge(
        self,
        base_dict: Dict[str, Any],
        update_dict: Dict[str, Any],
    ) -> None:
        """
        Recursively merge dictionaries.

        @param base_dict: Base dictionary to merge into
        @param update_dict: Dictionary with updates to merge
        """
        for key, value in update_dict.items():
            if (
                key in base_dict
                and isinstance(base_dict[key], dict)
                and isinstance(value, dict)
            ):
                self._deep_merge(base_dict[key], value)
            else:
                base_dict[key] = value

    def _apply_env_overrides(self) -> None:
        """
        Apply environment variable overrides to configuration.

        Values are converted to the type of the default they replace.
        """
        for env_var, config_path in self.ENV_MAPPINGS.items():
            env_value = os.getenv(env_var)
            if env_value is not None:
                default = self._get_default(config_path)
                converted_value = self._convert_env_value(env_value, default)
                self._set_nested_config(config_path, converted_value)

    def _get_default(self, path: tuple) -> Any:
        value: Any = self.DEFAULT_CONFIG
        for key in path:
            value = value.get(key) if isinstance(value, dict) else None
        return value

    def _convert_env_value(self, value: str, default: Any) -> Any:
        """
        Convert environment variable string to the type of its default.

        @param value: String value from environment variable
        @param default: Default value the override replaces
        @return: Converted value (bool, int, float, or string)
        """
        if isinstance(default, bool):
            return value.lower() in ("true", "1", "yes", "on")

        if isinstance(default, int):
            try:
                return int(value)
            except ValueError:
                return default

        if isinstance(default, float):
            try:
                return float(value)
            except ValueError:
                return default

        return value

    def _set_nested_config(self, path: tuple, value: Any) -> None:
        """
        Set a nested configuration value using a path tuple.

        @param path: Tuple representing the nested path (e.g., ("auth", "session_ttl_hours"))
        @param value: Value to set
        """
        current = self.config
        for key in path[:-1]:
            if key not in current:
                current[key] = {}
            current = current[key]
        current[path[-1]] = value

    def _create_default_config(self) -> None:
        """
        Create a default configuration file.

        The admin password is never written to disk.
        """
        try:
            with open(self.config_path, "w", encoding="utf-8") as f:
                json.dump(self.DEFAULT_CONFIG, f, indent=2)
            logger.info("config_file_created", path=str(self.config_path))
        except IOError as e:
            logger.warning(
                "config_file_create_failed", path=str(self.config_path), error=str(e)
            )

    def _validate_positive(self, section: str, key: str) -> None:
        value = self.config[section][key]
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
            default = self.DEFAULT_CONFIG[section][key]
            logger.warning(
                "config_value_invalid", key=f"{section}.{key}", fallback=default
            )
            self.config[section][key] = default

    def _validate_config(self) -> None:
        """
        Validate configuration values.

        Checks configuration values for validity and sets defaults for invalid values.
        """
        for section, key in (
            ("database", "busy_timeout"),
            ("auth", "session_ttl_hours"),
            ("auth", "min_password_length"),
            ("scoring", "max_flag_length"),
            ("leaderboard", "default_limit"),
            ("leaderboard", "max_limit"),
        ):
            self._validate_positive(section, key)

        if self.config["leaderboard"]["default_limit"] > self.config["leaderboard"]["max_limit"]:
            logger.warning("config_value_invalid", key="leaderboard.default_limit")
            self.config["leaderboard"]["default_limit"] = self.config["leaderboard"]["max_limit"]

        if self.config["logging"]["format"] not in ["console", "json"]:
            logger.warning("config_value_invalid", key="logging.format", fallback="console")
            self.config["logging"]["format"] = "console"

    def get(
        self,
        *keys: str,
    ) -> Any:
        """
        Get nested configuration value.

        @param keys: Variable arguments representing nested keys to traverse
        @return: Configuration value at the specified path, None if not found
        """
        value = self.config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return None
        return value
