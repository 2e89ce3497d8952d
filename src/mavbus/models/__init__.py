"""
Models Package

Device settings and configuration files.
"""

from .device_settings import Parity, SerialSettings, DispatchSettings
from .config_manager import ConfigManager

__all__ = [
    'Parity',
    'SerialSettings',
    'DispatchSettings',
    'ConfigManager',
]
