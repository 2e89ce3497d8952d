"""
Device Identity and Dispatch Settings

Serial connection parameters for one named device, and the dispatch
policy applied to its bus.
"""

from dataclasses import dataclass, asdict
from enum import IntEnum
from typing import Any, Dict, List, Tuple

import serial

from ..communication.dispatch_bus import DispatchMode
from ..communication.worker_pool import OverflowPolicy


DEFAULT_BAUD_RATE = 57600
DEFAULT_WRITE_TIMEOUT = 1.0

VALID_DATA_BITS = (5, 6, 7, 8)
VALID_STOP_BITS = (1, 1.5, 2)


class Parity(IntEnum):
    """Serial parity, numbered as in legacy property files."""
    NONE = 0
    ODD = 1
    EVEN = 2
    MARK = 3
    SPACE = 4

    @classmethod
    def parse(cls, value: Any) -> "Parity":
        """
        Parse a parity given by name ("none", "even", ...) or integer code.

        Raises:
            ValueError: If the value names no parity
        """
        if isinstance(value, Parity):
            return value
        if isinstance(value, str):
            key = value.strip().upper()
            if key.isdigit():
                return cls(int(key))
            try:
                return cls[key]
            except KeyError:
                raise ValueError(f"Unknown parity: {value!r}")
        return cls(value)

    def to_pyserial(self) -> str:
        """pyserial parity constant."""
        return _PYSERIAL_PARITY[self]


_PYSERIAL_PARITY = {
    Parity.NONE: serial.PARITY_NONE,
    Parity.ODD: serial.PARITY_ODD,
    Parity.EVEN: serial.PARITY_EVEN,
    Parity.MARK: serial.PARITY_MARK,
    Parity.SPACE: serial.PARITY_SPACE,
}


@dataclass(frozen=True)
class SerialSettings:
    """Identity and port parameters of one serial-connected device."""

    device_name: str
    port: str
    baud_rate: int = DEFAULT_BAUD_RATE
    data_bits: int = 8
    stop_bits: float = 1
    parity: Parity = Parity.NONE
    write_timeout: float = DEFAULT_WRITE_TIMEOUT

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SerialSettings":
        """
        Build settings from a configuration entry.

        Raises:
            KeyError: If "name" or "port" is missing
            ValueError: If a value has the wrong form
        """
        return cls(
            device_name=str(data["name"]),
            port=str(data["port"]),
            baud_rate=int(data.get("baud_rate", DEFAULT_BAUD_RATE)),
            data_bits=int(data.get("data_bits", 8)),
            stop_bits=float(data.get("stop_bits", 1)),
            parity=Parity.parse(data.get("parity", Parity.NONE)),
            write_timeout=float(data.get("write_timeout", DEFAULT_WRITE_TIMEOUT)),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["name"] = data.pop("device_name")
        data["parity"] = self.parity.name.lower()
        return data

    def validate(self) -> Tuple[bool, List[str]]:
        """
        Validate parameter ranges.

        Returns:
            Tuple of (is_valid, error messages)
        """
        errors = []
        if not self.device_name:
            errors.append("Device name must not be empty")
        if not self.port:
            errors.append(f"{self.device_name}: port must not be empty")
        if self.baud_rate <= 0:
            errors.append(f"{self.device_name}: invalid baud rate {self.baud_rate}")
        if self.data_bits not in VALID_DATA_BITS:
            errors.append(f"{self.device_name}: invalid data bits {self.data_bits}")
        if self.stop_bits not in VALID_STOP_BITS:
            errors.append(f"{self.device_name}: invalid stop bits {self.stop_bits}")
        if self.write_timeout <= 0:
            errors.append(f"{self.device_name}: write timeout must be positive")
        return len(errors) == 0, errors

    def serial_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for pyserial's serial_for_url()."""
        return {
            "baudrate": self.baud_rate,
            "bytesize": self.data_bits,
            "parity": self.parity.to_pyserial(),
            "stopbits": self.stop_bits if self.stop_bits == 1.5 else int(self.stop_bits),
            "write_timeout": self.write_timeout,
        }


@dataclass(frozen=True)
class DispatchSettings:
    """Dispatch policy for a device bus."""

    mode: DispatchMode = DispatchMode.ASYNC
    max_workers: int = 4
    max_queue: int = 1024
    overflow_policy: OverflowPolicy = OverflowPolicy.BLOCK

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DispatchSettings":
        """
        Build dispatch settings from the "dispatch" configuration section.

        Raises:
            ValueError: If mode or overflow policy is unknown
        """
        return cls(
            mode=DispatchMode(str(data.get("mode", DispatchMode.ASYNC.value)).lower()),
            max_workers=int(data.get("max_workers", 4)),
            max_queue=int(data.get("max_queue", 1024)),
            overflow_policy=OverflowPolicy(
                str(data.get("overflow_policy", OverflowPolicy.BLOCK.value)).lower()),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "max_workers": self.max_workers,
            "max_queue": self.max_queue,
            "overflow_policy": self.overflow_policy.value,
        }

    def validate(self) -> Tuple[bool, List[str]]:
        errors = []
        if self.max_workers <= 0:
            errors.append(f"max_workers must be positive, got {self.max_workers}")
        if self.max_queue <= 0:
            errors.append(f"max_queue must be positive, got {self.max_queue}")
        return len(errors) == 0, errors
