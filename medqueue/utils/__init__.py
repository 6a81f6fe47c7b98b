"""Utility functions and helpers for the MedQueue client"""
from .path_config import (
    get_app_root,
    get_config_dir,
    get_logs_dir,
    get_client_config_file
)
from .config_loader import ConfigManager, DEFAULT_CONFIG
from .event_utils import ClientEvent, ServerEvent, ConnectionEvent, patient_room, doctor_room
from .logging_utils import setup_logging

__all__ = [
    'get_app_root',
    'get_config_dir',
    'get_logs_dir',
    'get_client_config_file',
    'ConfigManager',
    'DEFAULT_CONFIG',
    'ClientEvent',
    'ServerEvent',
    'ConnectionEvent',
    'patient_room',
    'doctor_room',
    'setup_logging'
]
