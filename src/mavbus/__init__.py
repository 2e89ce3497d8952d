"""
mavbus - MAVLink serial link and dispatch bus

Connects a controlling process to one or more vehicles over serial links:
bytes are framed and decoded with pymavlink, fanned out to subscribers on a
per-device dispatch bus, and commands are packed back onto the wire.

Example usage:
    from mavbus import DeviceController, SerialSettings, MessageKind

    with DeviceController(SerialSettings("VEHICLE_A", "/dev/ttyUSB0")) as device:
        session = device.session("logger")
        session.add_handler(MessageKind.HEARTBEAT, print)
        ...
"""

from .communication import (
    BusClosedError,
    CommandMessage,
    ConfigError,
    ConnectionError,
    DecodeError,
    DispatchBus,
    DispatchMode,
    FrameDecoder,
    FrameReceiver,
    MavBusError,
    MessageKind,
    OverflowPolicy,
    SerialTransport,
    Subscriber,
    TelemetryMessage,
    TransportError,
    WorkerPool,
)
from .models import ConfigManager, DispatchSettings, Parity, SerialSettings
from .controllers import DeviceController, DeviceSession

__all__ = [
    "BusClosedError",
    "CommandMessage",
    "ConfigError",
    "ConnectionError",
    "DecodeError",
    "DispatchBus",
    "DispatchMode",
    "FrameDecoder",
    "FrameReceiver",
    "MavBusError",
    "MessageKind",
    "OverflowPolicy",
    "SerialTransport",
    "Subscriber",
    "TelemetryMessage",
    "TransportError",
    "WorkerPool",
    "ConfigManager",
    "DispatchSettings",
    "Parity",
    "SerialSettings",
    "DeviceController",
    "DeviceSession",
]

__version__ = "1.0.0"
