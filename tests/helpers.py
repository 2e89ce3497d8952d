"""
Shared helpers for mavbus tests.

Provides a pyserial test double and a MAVLink frame factory.
"""

import threading
import time
from typing import Callable, Optional

import serial
from pymavlink.dialects.v20 import ardupilotmega as mavlink

from mavbus.communication.messages import create_codec


VEHICLE_SYSTEM_ID = 1
VEHICLE_COMPONENT_ID = 1

# Noise bytes between frames; contains no frame marker
NOISE = b"\x00\x13\x37"

# Noise opening a false v1 / v2 frame that runs into the next real frame
NOISE_V1_MARKER = b"\xfe\x13\x37"
NOISE_V2_MARKER = b"\xfd\x13\x00"


class FakeSerial:
    """In-memory stand-in for the pyserial surface used by SerialTransport."""

    def __init__(self, port: Optional[str] = None, **kwargs):
        self.port = port
        self.kwargs = kwargs
        self.timeout = kwargs.get("timeout", 0.05)
        self.is_open = True
        self.cts = False
        self.dsr = False
        self.written = bytearray()
        self.write_error: Optional[Exception] = None
        # Called before each write; may block to hold the writer thread
        self.on_write: Optional[Callable[[bytes], None]] = None
        self.close_error: Optional[Exception] = None
        self.close_calls = 0
        self._rx = bytearray()
        self._rx_lock = threading.Lock()
        self._rx_ready = threading.Event()

    def feed(self, data: bytes) -> None:
        """Make bytes available to read()."""
        with self._rx_lock:
            self._rx += data
            self._rx_ready.set()

    @property
    def in_waiting(self) -> int:
        with self._rx_lock:
            return len(self._rx)

    def read(self, size: int = 1) -> bytes:
        if not self.is_open:
            raise serial.SerialException("Port is closed")
        self._rx_ready.wait(self.timeout)
        with self._rx_lock:
            data = bytes(self._rx[:size])
            del self._rx[:size]
            if not self._rx:
                self._rx_ready.clear()
        return data

    def write(self, data: bytes) -> int:
        if self.on_write is not None:
            self.on_write(data)
        if self.write_error is not None:
            raise self.write_error
        self.written += data
        return len(data)

    def close(self) -> None:
        self.close_calls += 1
        if self.close_error is not None:
            raise self.close_error
        self.is_open = False


class FrameFactory:
    """Builds wire frames as sent by a vehicle."""

    def __init__(self, system_id: int = VEHICLE_SYSTEM_ID,
                 component_id: int = VEHICLE_COMPONENT_ID):
        self.codec = create_codec(system_id, component_id)

    def pack(self, message, mavlink1: bool = False) -> bytes:
        buf = bytes(message.pack(self.codec, force_mavlink1=mavlink1))
        self.codec.seq = (self.codec.seq + 1) % 256
        return buf

    def heartbeat_message(self):
        return self.codec.heartbeat_encode(
            mavlink.MAV_TYPE_QUADROTOR,
            mavlink.MAV_AUTOPILOT_ARDUPILOTMEGA,
            mavlink.MAV_MODE_FLAG_CUSTOM_MODE_ENABLED,
            0,
            mavlink.MAV_STATE_ACTIVE
        )

    def position_message(self):
        return self.codec.global_position_int_encode(
            12345,        # time_boot_ms
            473977420,    # lat (degE7)
            85455940,     # lon (degE7)
            488000,       # alt (mm)
            10000,        # relative_alt (mm)
            120, -35, 0,  # vx, vy, vz (cm/s)
            9000          # hdg (cdeg)
        )

    def attitude_message(self):
        return self.codec.attitude_encode(12345, 0.1, -0.2, 1.5, 0.01, 0.02, 0.03)

    def status_text_message(self, text: str = "PreArm: Check fence"):
        return self.codec.statustext_encode(mavlink.MAV_SEVERITY_WARNING, text.encode())

    def heartbeat(self, mavlink1: bool = False) -> bytes:
        return self.pack(self.heartbeat_message(), mavlink1)

    def position(self, mavlink1: bool = False) -> bytes:
        return self.pack(self.position_message(), mavlink1)

    def attitude(self, mavlink1: bool = False) -> bytes:
        return self.pack(self.attitude_message(), mavlink1)

    def status_text(self, text: str = "PreArm: Check fence") -> bytes:
        return self.pack(self.status_text_message(text))


def wait_for(predicate, timeout: float = 2.0, interval: float = 0.01) -> bool:
    """Poll predicate until it returns True or timeout elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def decode(data: bytes):
    """Unpack one complete frame with a fresh codec."""
    return create_codec().decode(bytearray(data))


def telemetry(data: bytes, device_name: str = "VEHICLE_A"):
    """TelemetryMessage for one complete frame."""
    from mavbus.communication.messages import TelemetryMessage
    return TelemetryMessage.from_mavlink(device_name, decode(data))
