"""Configuration loader for the MedQueue client.

This module provides the configuration consumed by the connection, command and
countdown layers. Nothing in the client computes these values itself: they come from
built-in defaults, an optional JSON file and environment overrides, in that order.

Key Features:
- Default configuration values
- JSON file-based configuration with deep merging
- Environment overrides (a ``.env`` file is honoured through python-dotenv)
- Configuration validation
- Runtime configuration updates
"""
import os
import json
import copy
import logging
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from .path_config import CLIENT_CONFIG_FILENAME, get_client_config_file, get_config_dir

logger = logging.getLogger(__name__)

CONFIG_FILENAME = CLIENT_CONFIG_FILENAME

DEFAULT_CONFIG: Dict[str, Any] = {
    "logging": {
        "level": "INFO",
        "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    },
    "server": {
        "base_url": "http://localhost:3000",
        "socket_url": None
    },
    "socket": {
        "transports": ["websocket", "polling"],
        "timeout": 10.0,
        "reconnection": True,
        "reconnection_attempts": 3,
        "reconnection_delay": 1.0,
        "reconnection_delay_max": 5.0,
        "randomization_factor": 0.5
    },
    "commands": {
        "remove_timeout": 15.0,
        "room_join_timeout": 10.0
    },
    "wait_timer": {
        "interval": 60.0
    }
}

# (environment variable, section, key)
ENV_OVERRIDES = [
    ("MEDQUEUE_BASE_URL", "server", "base_url"),
    ("MEDQUEUE_SOCKET_URL", "server", "socket_url"),
    ("MEDQUEUE_LOG_LEVEL", "logging", "level"),
]

VALID_TRANSPORTS = {"websocket", "polling"}


class ConfigManager:
    def __init__(self,
                 config_dir: Optional[str] = None,
                 overrides: Optional[Dict[str, Any]] = None,
                 load_env: bool = True):
        """Initialize the configuration manager.

        Args:
            config_dir: Directory holding ``client_config.json``. Defaults to the
                application config directory.
            overrides: Dictionary merged last, mostly useful for tests and the CLI.
            load_env: Whether to read environment variables (and ``.env``).
        """
        self._config_dir = config_dir
        self._config: Dict[str, Any] = {}
        self._load_defaults()
        self._load_config_file()
        if load_env:
            self._load_environment()
        if overrides:
            self._merge_config(self._config, overrides)
        self._validate_config(self._config)

    def _load_defaults(self) -> None:
        """Load default configuration values."""
        self._config = copy.deepcopy(DEFAULT_CONFIG)

    def _config_path(self) -> str:
        if self._config_dir is None:
            return get_client_config_file()
        return os.path.join(self._config_dir, CONFIG_FILENAME)

    def _load_config_file(self) -> None:
        """Merge the JSON configuration file over the defaults, if present."""
        filepath = self._config_path()
        if not os.path.exists(filepath):
            logger.debug(f"No config file at {filepath}, using defaults")
            return
        try:
            with open(filepath, 'r') as f:
                file_config = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error loading config file {filepath}: {e}")
            return
        if not isinstance(file_config, dict):
            logger.error(f"Config file {filepath} does not contain an object, ignoring it")
            return
        self._merge_config(self._config, file_config)
        logger.debug(f"Loaded config file {filepath}")

    def _load_environment(self) -> None:
        """Apply environment overrides. NGROK_URL stands in for both URLs."""
        load_dotenv()
        tunnel_url = os.environ.get("NGROK_URL")
        if tunnel_url:
            self._config["server"]["base_url"] = tunnel_url
            self._config["server"]["socket_url"] = tunnel_url
        for env_name, section, key in ENV_OVERRIDES:
            value = os.environ.get(env_name)
            if value:
                self.set(section, key, value)

    def _merge_config(self, base: Dict, update: Dict) -> None:
        """
        Recursively merge two configuration dictionaries.
        Args:
            base: Base configuration dictionary
            update: Dictionary with updates to merge
        """
        for key, value in update.items():
            if (
                key in base and
                isinstance(base[key], dict) and
                isinstance(value, dict)
            ):
                self._merge_config(base[key], value)
            else:
                base[key] = value

    def _validate_config(self, config: Dict[str, Any]) -> None:
        """Validate the merged configuration."""
        self._validate_server_config(config.get("server", {}))
        self._validate_socket_config(config.get("socket", {}))
        self._validate_command_config(config.get("commands", {}))

        interval = config.get("wait_timer", {}).get("interval")
        if not isinstance(interval, (int, float)) or interval <= 0:
            raise ValueError("Wait timer interval must be a positive number of seconds")

    def _validate_server_config(self, config: Dict[str, Any]) -> None:
        base_url = config.get("base_url")
        if not base_url or not isinstance(base_url, str):
            raise ValueError("Server base_url must be a non-empty string")
        if not base_url.startswith(("http://", "https://")):
            raise ValueError(f"Server base_url must be an http(s) URL, got {base_url!r}")

    def _validate_socket_config(self, config: Dict[str, Any]) -> None:
        transports = config.get("transports")
        if not transports or not isinstance(transports, list):
            raise ValueError("Socket transports must be a non-empty list")
        unknown = set(transports) - VALID_TRANSPORTS
        if unknown:
            raise ValueError(f"Unknown socket transports: {sorted(unknown)}")

        attempts = config.get("reconnection_attempts")
        if not isinstance(attempts, int) or attempts < 0:
            raise ValueError("Socket reconnection_attempts must be a non-negative integer")

        for key in ("timeout", "reconnection_delay", "reconnection_delay_max"):
            value = config.get(key)
            if not isinstance(value, (int, float)) or value < 0:
                raise ValueError(f"Socket {key} must be a non-negative number")

        factor = config.get("randomization_factor")
        if not isinstance(factor, (int, float)) or not (0 <= factor <= 1):
            raise ValueError("Socket randomization_factor must be between 0 and 1")

    def _validate_command_config(self, config: Dict[str, Any]) -> None:
        for key in ("remove_timeout", "room_join_timeout"):
            value = config.get(key)
            if not isinstance(value, (int, float)) or value <= 0:
                raise ValueError(f"Command {key} must be a positive number of seconds")

    def get(self, section: str, key: str, default: Any = None) -> Any:
        """
        Get a configuration value.
        Args:
            section: Configuration section
            key: Configuration key
            default: Default value if not found
        Returns:
            Configuration value or default
        """
        try:
            return self._config[section][key]
        except KeyError:
            return default

    def set(self, section: str, key: str, value: Any) -> None:
        """
        Set a configuration value.
        Args:
            section: Configuration section
            key: Configuration key
            value: Value to set
        """
        if section not in self._config:
            self._config[section] = {}
        self._config[section][key] = value

    def save(self, filename: str = CONFIG_FILENAME) -> bool:
        """
        Save current configuration to a file.
        Args:
            filename: Name of the file to save to
        Returns:
            bool: True if save was successful, False otherwise
        """
        try:
            filepath = os.path.join(self._config_dir or get_config_dir(), filename)
            os.makedirs(os.path.dirname(filepath), exist_ok=True)

            with open(filepath, 'w') as f:
                json.dump(self._config, f, indent=2)
            return True
        except OSError as e:
            logger.error(f"Error saving config to {filename}: {e}")
            return False

    @property
    def base_url(self) -> str:
        return self._config["server"]["base_url"].rstrip("/")

    @property
    def socket_url(self) -> str:
        """Event-channel URL; the HTTP base URL when not configured separately."""
        socket_url = self._config["server"].get("socket_url")
        return (socket_url or self._config["server"]["base_url"]).rstrip("/")

    @property
    def transports(self) -> List[str]:
        return list(self._config["socket"]["transports"])

    @property
    def config(self) -> Dict[str, Any]:
        """Get the complete configuration dictionary."""
        return copy.deepcopy(self._config)
