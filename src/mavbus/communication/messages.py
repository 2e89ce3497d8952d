"""
MAVLink Message Envelopes

Inbound telemetry and outbound command wrappers around pymavlink messages,
plus the closed set of message kinds this package knows by name.

Message ids follow the MAVLink common / ardupilotmega dialects:
┌──────┬──────────────────────┐
│  ID  │ Kind                 │
├──────┼──────────────────────┤
│    0 │ HEARTBEAT            │
│    1 │ SYS_STATUS           │
│   24 │ GPS_RAW_INT          │
│   30 │ ATTITUDE             │
│   33 │ GLOBAL_POSITION_INT  │
│   76 │ COMMAND_LONG         │
│   77 │ COMMAND_ACK          │
│  150 │ SENSOR_OFFSETS       │
│  163 │ AHRS                 │
│  253 │ STATUSTEXT           │
└──────┴──────────────────────┘
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, Optional
import time

from pymavlink.dialects.v20 import ardupilotmega as mavlink


# Ground control station identity used when packing outbound commands
GCS_SYSTEM_ID = 255
GCS_COMPONENT_ID = 0


class MessageKind(IntEnum):
    """Message kinds with dedicated handling."""

    HEARTBEAT = mavlink.MAVLINK_MSG_ID_HEARTBEAT
    SYS_STATUS = mavlink.MAVLINK_MSG_ID_SYS_STATUS
    GPS_RAW_INT = mavlink.MAVLINK_MSG_ID_GPS_RAW_INT
    ATTITUDE = mavlink.MAVLINK_MSG_ID_ATTITUDE
    GLOBAL_POSITION_INT = mavlink.MAVLINK_MSG_ID_GLOBAL_POSITION_INT
    COMMAND_LONG = mavlink.MAVLINK_MSG_ID_COMMAND_LONG
    COMMAND_ACK = mavlink.MAVLINK_MSG_ID_COMMAND_ACK
    SENSOR_OFFSETS = mavlink.MAVLINK_MSG_ID_SENSOR_OFFSETS
    AHRS = mavlink.MAVLINK_MSG_ID_AHRS
    STATUSTEXT = mavlink.MAVLINK_MSG_ID_STATUSTEXT

    @classmethod
    def lookup(cls, msg_id: int) -> Optional["MessageKind"]:
        """Return the kind for a message id, or None for kinds without a name here."""
        try:
            return cls(msg_id)
        except ValueError:
            return None


def create_codec(system_id: int = GCS_SYSTEM_ID,
                 component_id: int = GCS_COMPONENT_ID) -> mavlink.MAVLink:
    """
    Create a pymavlink codec instance.

    One codec belongs to one link: it carries the outbound sequence counter.

    Args:
        system_id: Source system id stamped on packed frames
        component_id: Source component id stamped on packed frames
    """
    return mavlink.MAVLink(None, srcSystem=system_id, srcComponent=component_id)


@dataclass(frozen=True)
class TelemetryMessage:
    """
    A decoded message received from a remote vehicle.

    Created once per successfully unpacked frame and never modified.
    """

    device_name: str
    message: Any
    msg_id: int
    received_at: float = field(default_factory=time.time)

    @classmethod
    def from_mavlink(cls, device_name: str, message: Any) -> "TelemetryMessage":
        """Wrap a pymavlink message decoded on the given device."""
        return cls(device_name=device_name, message=message, msg_id=message.get_msgId())

    @property
    def kind(self) -> Optional[MessageKind]:
        """Known kind of this message, None when unrecognized."""
        return MessageKind.lookup(self.msg_id)

    @property
    def type_name(self) -> str:
        """Message type name as reported by the codec (e.g. "HEARTBEAT")."""
        return self.message.get_type()

    @property
    def system_id(self) -> int:
        return self.message.get_srcSystem()

    @property
    def component_id(self) -> int:
        return self.message.get_srcComponent()

    @property
    def fields(self) -> Dict[str, Any]:
        """Payload fields as a dictionary."""
        return self.message.to_dict()

    def __str__(self):
        return f"TelemetryMessage[{self.device_name}]: {self.message}"


@dataclass(frozen=True)
class CommandMessage:
    """A message to be sent to a remote vehicle."""

    message: Any

    @property
    def msg_id(self) -> int:
        return self.message.get_msgId()

    @property
    def kind(self) -> Optional[MessageKind]:
        return MessageKind.lookup(self.msg_id)

    def encode(self, codec: mavlink.MAVLink) -> bytes:
        """
        Pack the wrapped message into a wire frame and advance the codec's
        sequence number, as MAVLink.send() does.

        Not thread-safe for a shared codec; callers serialize access.

        Args:
            codec: Link codec supplying sequence number and source ids

        Returns:
            Encoded frame bytes
        """
        buf = bytes(self.message.pack(codec))
        codec.seq = (codec.seq + 1) % 256
        codec.total_packets_sent += 1
        codec.total_bytes_sent += len(buf)
        return buf

    def __str__(self):
        return f"CommandMessage: {self.message}"
