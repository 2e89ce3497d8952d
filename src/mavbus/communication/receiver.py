"""
Byte-Arrival Handler

The one notification handler a transport invokes: feeds arriving bytes into
a frame decoder, unpacks completed frames and hands the resulting telemetry
messages to a sink (a plain callback or DispatchBus.publish_inbound).
"""

from collections import deque
from dataclasses import dataclass
from typing import Callable, Optional
import logging

from .errors import BusClosedError, DecodeError
from .frame_decoder import FrameDecoder, RawFrame
from .messages import TelemetryMessage
from ..utils.error_handler import ErrorCategory, ErrorHandler, ErrorSeverity, get_error_handler


logger = logging.getLogger(__name__)


@dataclass
class ReceiverStats:
    """Per-device decode counters."""
    messages_decoded: int = 0
    decode_errors: int = 0
    sink_failures: int = 0


class FrameReceiver:
    """
    Decode path for one device.

    Holds only the decoder state, the device name and the sink. Called from
    the transport's reader thread; never raises into it.
    """

    def __init__(self, device_name: str,
                 sink: Callable[[TelemetryMessage], None],
                 decoder: Optional[FrameDecoder] = None,
                 error_handler: Optional[ErrorHandler] = None):
        self.device_name = device_name
        self._sink = sink
        self._decoder = decoder or FrameDecoder()
        self._error_handler = error_handler
        self._stats = ReceiverStats()

    @property
    def decoder(self) -> FrameDecoder:
        return self._decoder

    @property
    def stats(self) -> ReceiverStats:
        return self._stats

    def __call__(self, data: bytes) -> None:
        """Consume newly arrived bytes."""
        # Bytes handed back by the decoder are scanned before the rest of data
        sources = deque([(iter(data), self._decoder.feed)])
        while sources:
            source, scan = sources[0]
            for byte in source:
                frame = scan(byte)
                if frame is None:
                    continue
                replay = self._handle_frame(frame)
                if replay:
                    sources.appendleft((iter(replay), self._decoder.replay))
                    break
            else:
                sources.popleft()

    def _handle_frame(self, frame: RawFrame) -> Optional[bytes]:
        """Unpack and deliver one frame. Returns the bytes to rescan when it is rejected."""
        try:
            message = TelemetryMessage.from_mavlink(self.device_name, frame.unpack())
        except DecodeError as e:
            self._stats.decode_errors += 1
            self._errors().handle_exception(
                e,
                message=f"{self.device_name}: dropped frame: {e}",
                category=ErrorCategory.DECODE,
                severity=ErrorSeverity.WARNING,
                device=self.device_name
            )
            return self._decoder.reject(frame)

        self._stats.messages_decoded += 1
        logger.debug(f"{self.device_name}: {message.type_name} from "
                     f"{message.system_id}/{message.component_id}")

        try:
            self._sink(message)
        except BusClosedError:
            logger.debug(f"{self.device_name}: bus closed, dropping {message.type_name}")
        except Exception as e:
            self._stats.sink_failures += 1
            self._errors().handle_exception(
                e,
                message=f"{self.device_name}: sink failed for {message.type_name}: {e}",
                category=ErrorCategory.DISPATCH,
                device=self.device_name
            )
        return None

    def on_line_state(self, signal, state: bool) -> None:
        """Log a line-signal change reported by the transport."""
        name = getattr(signal, "name", str(signal))
        logger.info(f"{self.device_name}: {name} - {'ON' if state else 'OFF'}")

    def _errors(self) -> ErrorHandler:
        return self._error_handler or get_error_handler()
