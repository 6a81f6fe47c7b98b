"""Path configuration utilities for the MedQueue client.

Centralizes where the client keeps its configuration and log files. Directories
are created on first use.
"""
import os
from pathlib import Path

CLIENT_CONFIG_FILENAME = "client_config.json"


def get_app_root():
    """Get the root directory of the application."""
    return str(Path(__file__).parent.parent.parent.absolute())


def get_config_dir():
    """Get the configuration directory path."""
    config_dir = os.environ.get("MEDQUEUE_CONFIG_DIR") or os.path.join(get_app_root(), "config")
    os.makedirs(config_dir, exist_ok=True)
    return config_dir


def get_logs_dir():
    """Get the logs directory path."""
    logs_dir = os.path.join(get_app_root(), "logs")
    os.makedirs(logs_dir, exist_ok=True)
    return logs_dir


def get_client_config_file():
    """Get the client configuration file path."""
    return os.path.join(get_config_dir(), CLIENT_CONFIG_FILENAME)
