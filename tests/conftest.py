"""
Pytest configuration for mavbus tests.
"""

import pytest

from mavbus.models.device_settings import SerialSettings
from mavbus.utils.error_handler import ErrorHandler, set_error_handler, reset_error_handler

from .helpers import FakeSerial, FrameFactory


@pytest.fixture(autouse=True)
def error_handler():
    """Fresh global error handler for each test."""
    handler = ErrorHandler()
    set_error_handler(handler)
    yield handler
    reset_error_handler()


@pytest.fixture
def frames():
    """Frame factory for vehicle 1/1."""
    return FrameFactory()


@pytest.fixture
def fake_serial():
    return FakeSerial()


@pytest.fixture
def serial_factory(fake_serial):
    """serial_for_url() replacement returning the fake_serial fixture."""
    def factory(port, **kwargs):
        fake_serial.port = port
        fake_serial.kwargs = kwargs
        fake_serial.timeout = kwargs.get("timeout", fake_serial.timeout)
        return fake_serial
    return factory


@pytest.fixture
def vehicle_settings():
    return SerialSettings(device_name="VEHICLE_A", port="/dev/ttyUSB0", baud_rate=57600)
