"""
Link Layer Package

Modules:
    errors: Exception hierarchy
    messages: Telemetry/command envelopes and known message kinds
    frame_decoder: Incremental MAVLink frame location
    worker_pool: Bounded thread pool for asynchronous dispatch
    dispatch_bus: Per-device publish/subscribe hub
    receiver: Byte-arrival handler feeding decoder and bus
    serial_transport: Threaded pyserial transport
"""

from .errors import (
    MavBusError,
    ConnectionError,
    TransportError,
    DecodeError,
    BusClosedError,
    ConfigError,
)
from .messages import MessageKind, TelemetryMessage, CommandMessage, create_codec
from .frame_decoder import FrameDecoder, RawFrame, DecoderStats
from .worker_pool import WorkerPool, OverflowPolicy, PoolStats
from .dispatch_bus import DispatchBus, DispatchMode, BusState, Subscriber, Subscription
from .receiver import FrameReceiver, ReceiverStats
from .serial_transport import (
    SerialTransport,
    TransportState,
    TransportInfo,
    TransportStats,
    LineSignal,
)

__all__ = [
    # Errors
    "MavBusError",
    "ConnectionError",
    "TransportError",
    "DecodeError",
    "BusClosedError",
    "ConfigError",
    # Messages
    "MessageKind",
    "TelemetryMessage",
    "CommandMessage",
    "create_codec",
    # Decoding
    "FrameDecoder",
    "RawFrame",
    "DecoderStats",
    "FrameReceiver",
    "ReceiverStats",
    # Dispatch
    "WorkerPool",
    "OverflowPolicy",
    "PoolStats",
    "DispatchBus",
    "DispatchMode",
    "BusState",
    "Subscriber",
    "Subscription",
    # Transport
    "SerialTransport",
    "TransportState",
    "TransportInfo",
    "TransportStats",
    "LineSignal",
]
