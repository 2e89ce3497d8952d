"""
Controllers Package

Device lifecycle and bus sessions.
"""

from .device_session import DeviceSession
from .device_controller import DeviceController, active_device_names

__all__ = [
    'DeviceSession',
    'DeviceController',
    'active_device_names',
]
