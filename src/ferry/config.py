"""
Ferry - Configuration Management

This module handles loading, merging, and managing configuration from
TOML files and environment variables. Supports default values and
runtime configuration updates.

Author: orpheus497
Version: 1.0.0
"""

import copy
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional

# Python 3.11+ has tomllib built-in, older versions need tomli
if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from .constants import (
    CODE_LENGTH,
    CONFIG_FILENAME,
    CONNECT_TIMEOUT,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_CODE_ALPHABET,
    DEFAULT_DATA_DIR,
    DEFAULT_DIRECTORY_PORT,
    DEFAULT_DIRECTORY_URL,
    DEFAULT_HOST,
    DEFAULT_LISTEN_PORT,
    DEFAULT_PACE_DELAY,
    DEFAULT_SHARE_BASE_URL,
    DIRECTORY_DIRNAME,
    DIRECTORY_REQUEST_TIMEOUT,
    DIRECTORY_TTL,
    FEATURE_NAT_TRAVERSAL,
    FEATURE_QR_CODES,
    MAX_CHUNK_SIZE,
    MAX_FILE_SIZE,
    SENDER_LINGER,
)
from .errors import ConfigError, ErrorCode

# Default configuration dictionary
DEFAULT_CONFIG: Dict[str, Any] = {
    "network": {
        "host": DEFAULT_HOST,
        "port": DEFAULT_LISTEN_PORT,
        "advertise_host": "",
        "connect_timeout": CONNECT_TIMEOUT,
        "nat_traversal": FEATURE_NAT_TRAVERSAL,
    },
    "directory": {
        "backend": "file",
        "url": DEFAULT_DIRECTORY_URL,
        "path": f"{DEFAULT_DATA_DIR}/{DIRECTORY_DIRNAME}",
        "ttl": DIRECTORY_TTL,
        "request_timeout": DIRECTORY_REQUEST_TIMEOUT,
        "server_host": DEFAULT_HOST,
        "server_port": DEFAULT_DIRECTORY_PORT,
    },
    "codes": {
        "alphabet": DEFAULT_CODE_ALPHABET,
        "length": CODE_LENGTH,
    },
    "transfer": {
        "chunk_size": DEFAULT_CHUNK_SIZE,
        "pace_delay": DEFAULT_PACE_DELAY,
        "max_rate": 0,
        "linger": SENDER_LINGER,
        "max_file_size": MAX_FILE_SIZE,
    },
    "share": {
        "base_url": DEFAULT_SHARE_BASE_URL,
        "include_peer": True,
    },
    "logging": {
        "level": "INFO",
        "file_logging": False,
        "console_logging": True,
    },
    "features": {
        "qr_codes": FEATURE_QR_CODES,
    },
}

VALID_BACKENDS = ("memory", "file", "http")


class Config:
    """Configuration manager for Ferry.

    Loads configuration from TOML files, merges with defaults,
    and applies environment variable overrides. Provides a simple
    interface for accessing and updating configuration values.

    Attributes:
        config_path: Path to the configuration file
        data: Configuration dictionary
    """

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize configuration manager.

        Args:
            config_path: Path to configuration file (optional)
                If not provided, uses default location
        """
        if config_path is None:
            data_dir = Path(DEFAULT_DATA_DIR).expanduser()
            config_path = data_dir / CONFIG_FILENAME

        self.config_path = Path(config_path)
        self.data = self._load_config()
        self._validate(self.data)

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from file and merge with defaults.

        Returns:
            Merged configuration dictionary

        Raises:
            ConfigError: If configuration loading or parsing fails
        """
        config = copy.deepcopy(DEFAULT_CONFIG)

        if self.config_path.exists():
            try:
                with open(self.config_path, "rb") as f:
                    file_config = tomllib.load(f)
            except (OSError, tomllib.TOMLDecodeError) as e:
                raise ConfigError(
                    ErrorCode.E704_CONFIG_PARSE_ERROR,
                    f"Failed to parse configuration file: {e}",
                    {"path": str(self.config_path), "error": str(e)},
                )

            config = self._merge_config(config, file_config)

        return self._apply_env_overrides(config)

    def _merge_config(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge override config into base config.

        Args:
            base: Base configuration dictionary
            override: Override configuration dictionary

        Returns:
            Merged configuration dictionary
        """
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value

        return result

    def _apply_env_overrides(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides to configuration.

        Environment variables follow the pattern: FERRY_SECTION_KEY
        For example: FERRY_DIRECTORY_BACKEND=http

        Args:
            config: Base configuration dictionary

        Returns:
            Configuration with environment overrides applied
        """
        for section, settings in config.items():
            if not isinstance(settings, dict):
                continue

            for key in settings:
                env_var = f"FERRY_{section.upper()}_{key.upper()}"
                env_value = os.environ.get(env_var)

                if env_value is None:
                    continue

                original_type = type(settings[key])
                try:
                    if original_type == bool:
                        settings[key] = env_value.lower() in ("true", "1", "yes")
                    elif original_type == int:
                        settings[key] = int(env_value)
                    elif original_type == float:
                        settings[key] = float(env_value)
                    else:
                        settings[key] = env_value
                except ValueError:
                    raise ConfigError(
                        ErrorCode.E703_INVALID_CONFIG,
                        f"Invalid value for {env_var}: {env_value!r}",
                        {"variable": env_var, "expected": original_type.__name__},
                    )

        return config

    def _validate(self, config: Dict[str, Any]) -> None:
        """Reject values the rest of the application cannot work with.

        Raises:
            ConfigError: If a value is out of range
        """
        backend = config["directory"]["backend"]
        if backend not in VALID_BACKENDS:
            raise ConfigError(
                ErrorCode.E703_INVALID_CONFIG,
                f"Unknown directory backend: {backend}",
                {"backend": backend, "valid": list(VALID_BACKENDS)},
            )

        chunk_size = config["transfer"]["chunk_size"]
        if not isinstance(chunk_size, int) or not 0 < chunk_size <= MAX_CHUNK_SIZE:
            raise ConfigError(
                ErrorCode.E703_INVALID_CONFIG,
                f"transfer.chunk_size must be between 1 and {MAX_CHUNK_SIZE}, got {chunk_size!r}",
            )

        if config["network"]["connect_timeout"] <= 0:
            raise ConfigError(
                ErrorCode.E703_INVALID_CONFIG, "network.connect_timeout must be positive"
            )

    def get(self, section: str, key: str, default: Any = None) -> Any:
        """Get a configuration value.

        Args:
            section: Configuration section name
            key: Configuration key name
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        return self.data.get(section, {}).get(key, default)

    def set(self, section: str, key: str, value: Any) -> None:
        """Set a configuration value.

        Args:
            section: Configuration section name
            key: Configuration key name
            value: Value to set
        """
        if section not in self.data:
            self.data[section] = {}

        self.data[section][key] = value

    def save(self) -> None:
        """Save current configuration to file.

        Raises:
            ConfigError: If saving fails
        """
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)

            with open(self.config_path, "w") as f:
                self._write_toml(f, self.data)

        except OSError as e:
            raise ConfigError(
                ErrorCode.E702_CONFIG_SAVE_FAILED,
                f"Failed to save configuration: {e}",
                {"path": str(self.config_path), "error": str(e)},
            )

    @staticmethod
    def _write_toml(file, data: Dict[str, Any]) -> None:
        """Write configuration data as TOML format.

        Args:
            file: File object to write to
            data: Configuration data to write
        """
        for section, settings in data.items():
            if isinstance(settings, dict):
                file.write(f"[{section}]\n")
                for key, value in settings.items():
                    if isinstance(value, bool):
                        file.write(f"{key} = {str(value).lower()}\n")
                    elif isinstance(value, (int, float)):
                        file.write(f"{key} = {value}\n")
                    elif isinstance(value, str):
                        file.write(f'{key} = "{value}"\n')
                file.write("\n")

    def to_dict(self) -> Dict[str, Any]:
        """Get configuration as dictionary.

        Returns:
            Configuration dictionary
        """
        return copy.deepcopy(self.data)

    @classmethod
    def create_example(cls, path: Path) -> None:
        """Create an example configuration file.

        Args:
            path: Path where to create the example config

        Raises:
            ConfigError: If file creation fails
        """
        try:
            path.parent.mkdir(parents=True, exist_ok=True)

            with open(path, "w") as f:
                f.write("# Ferry Configuration File\n")
                f.write("# Generated example configuration\n\n")
                cls._write_toml(f, DEFAULT_CONFIG)

        except OSError as e:
            raise ConfigError(
                ErrorCode.E702_CONFIG_SAVE_FAILED,
                f"Failed to create example configuration: {e}",
                {"path": str(path), "error": str(e)},
            )
