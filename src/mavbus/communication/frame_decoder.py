"""
MAVLink Frame Decoder

Incremental, byte-at-a-time frame location for a MAVLink byte stream.
Payload unpacking and CRC validation are delegated to pymavlink.

Frame Format v1:
┌──────┬─────┬─────┬───────┬──────┬───────┬─────────────┬───────┐
│ 0xFE │ LEN │ SEQ │ SYSID │ COMP │ MSGID │   Payload   │ CRC16 │
│ 1B   │ 1B  │ 1B  │ 1B    │ 1B   │ 1B    │ LEN bytes   │ 2B    │
└──────┴─────┴─────┴───────┴──────┴───────┴─────────────┴───────┘

Frame Format v2:
┌──────┬─────┬────────┬──────┬─────┬───────┬──────┬───────┬─────────┬───────┬───────────┐
│ 0xFD │ LEN │ INCOMP │ COMP │ SEQ │ SYSID │ COMP │ MSGID │ Payload │ CRC16 │ Signature │
│ 1B   │ 1B  │ 1B     │ 1B   │ 1B  │ 1B    │ 1B   │ 3B LE │ LEN     │ 2B    │ 13B opt.  │
└──────┴─────┴────────┴──────┴─────┴───────┴──────┴───────┴─────────┴───────┴───────────┘

Bytes outside a frame are discarded as line noise. A v2 header carrying
unknown incompatibility flags is treated as a false start: the marker is
dropped and the buffered bytes are rescanned for the next marker. A frame
that completes but fails to unpack (a marker byte in noise, or corruption)
is handed back through reject() and rescanned the same way.
"""

from dataclasses import dataclass, field
from typing import Any, List, Optional
import logging

from pymavlink.dialects.v20 import ardupilotmega as mavlink

from .errors import DecodeError
from .messages import create_codec


logger = logging.getLogger(__name__)


# Protocol constants
PROTOCOL_MARKER_V1 = 0xFE
PROTOCOL_MARKER_V2 = 0xFD
HEADER_LEN_V1 = 6
HEADER_LEN_V2 = 10
FRAME_CRC_SIZE = 2
SIGNATURE_LEN = 13
IFLAG_SIGNED = 0x01

FRAME_MARKERS = (PROTOCOL_MARKER_V1, PROTOCOL_MARKER_V2)


@dataclass(frozen=True)
class RawFrame:
    """A complete frame located in the byte stream, not yet unpacked."""

    data: bytes
    codec: Any = field(default=None, repr=False, compare=False)

    @property
    def version(self) -> int:
        return 2 if self.data[0] == PROTOCOL_MARKER_V2 else 1

    @property
    def payload_length(self) -> int:
        return self.data[1]

    @property
    def seq(self) -> int:
        return self.data[4] if self.version == 2 else self.data[2]

    @property
    def system_id(self) -> int:
        return self.data[5] if self.version == 2 else self.data[3]

    @property
    def component_id(self) -> int:
        return self.data[6] if self.version == 2 else self.data[4]

    @property
    def msg_id(self) -> int:
        if self.version == 2:
            return self.data[7] | (self.data[8] << 8) | (self.data[9] << 16)
        return self.data[5]

    @property
    def is_signed(self) -> bool:
        return self.version == 2 and bool(self.data[2] & IFLAG_SIGNED)

    def unpack(self) -> Any:
        """
        Unpack the frame into a typed pymavlink message.

        Returns:
            Decoded message

        Raises:
            DecodeError: On CRC mismatch, length mismatch, bad signature
                or unparseable payload
        """
        codec = self.codec or create_codec()
        if self.is_signed and codec.signing.secret_key is None:
            raise DecodeError(f"msgid={self.msg_id} seq={self.seq}: signed frame, no signing key")
        try:
            return codec.decode(bytearray(self.data))
        except mavlink.MAVError as e:
            raise DecodeError(f"msgid={self.msg_id} seq={self.seq}: {e}") from e


@dataclass
class DecoderStats:
    """Frame decoder counters."""
    bytes_received: int = 0
    bytes_discarded: int = 0
    frames_completed: int = 0
    frames_rejected: int = 0
    resyncs: int = 0


class FrameDecoder:
    """
    Stateful MAVLink frame locator.

    Owned by exactly one byte stream. Not safe for concurrent feeding.
    """

    def __init__(self, codec: Optional[mavlink.MAVLink] = None):
        """
        Initialize decoder.

        Args:
            codec: pymavlink codec used by produced frames to unpack themselves
        """
        self._codec = codec or create_codec()
        self._buffer = bytearray()
        self._expected_length = 0
        self._stats = DecoderStats()

    @property
    def stats(self) -> DecoderStats:
        return self._stats

    @property
    def pending(self) -> int:
        """Number of bytes held for a partial frame."""
        return len(self._buffer)

    def reset(self) -> None:
        """Discard any partial frame."""
        self._buffer.clear()
        self._expected_length = 0

    def feed(self, byte: int) -> Optional[RawFrame]:
        """
        Feed one byte into the decoder.

        Args:
            byte: Next byte from the stream (0-255)

        Returns:
            Completed RawFrame, or None if no frame completed with this byte
        """
        self._stats.bytes_received += 1
        return self.replay(byte)

    def replay(self, byte: int) -> Optional[RawFrame]:
        """
        Feed a byte handed back by reject(). Not counted as received.

        Returns:
            Completed RawFrame, or None
        """
        if not self._buffer:
            if byte not in FRAME_MARKERS:
                self._stats.bytes_discarded += 1
                return None
            self._buffer.append(byte)
            return None

        self._buffer.append(byte)
        return self._advance()

    def feed_bytes(self, data: bytes) -> List[RawFrame]:
        """
        Feed a chunk of bytes.

        Equivalent to calling feed() for each byte in order.

        Returns:
            All frames completed by this chunk, in stream order
        """
        frames = []
        for byte in data:
            frame = self.feed(byte)
            if frame is not None:
                frames.append(frame)
        return frames

    def reject(self, frame: RawFrame) -> bytes:
        """
        Give up on a completed frame that failed to unpack.

        A stray marker byte in line noise can open a false frame that runs
        into the real frames behind it. Only the marker is dropped; the
        returned bytes must be replayed, before any newer bytes, so frames
        inside them are still found.

        Call this right after the frame completes, before feeding more
        bytes. Bytes buffered behind the frame are handed back too.

        Args:
            frame: Frame returned by feed() whose unpack() raised DecodeError

        Returns:
            Bytes to pass to replay(), in order
        """
        self._stats.resyncs += 1
        self._stats.bytes_discarded += 1
        self._stats.frames_rejected += 1
        replay = frame.data[1:] + bytes(self._buffer)
        self.reset()
        return replay

    def _advance(self) -> Optional[RawFrame]:
        """Evaluate the buffered bytes after an append."""
        while self._buffer:
            if self._expected_length == 0:
                header_len = HEADER_LEN_V2 if self._buffer[0] == PROTOCOL_MARKER_V2 else HEADER_LEN_V1
                if len(self._buffer) < header_len:
                    return None

                if self._buffer[0] == PROTOCOL_MARKER_V2 and self._buffer[2] & ~IFLAG_SIGNED:
                    logger.debug(f"Invalid incompat flags 0x{self._buffer[2]:02X}, resyncing")
                    self._resync()
                    continue

                self._expected_length = header_len + self._buffer[1] + FRAME_CRC_SIZE
                if self._buffer[0] == PROTOCOL_MARKER_V2 and self._buffer[2] & IFLAG_SIGNED:
                    self._expected_length += SIGNATURE_LEN

            if len(self._buffer) < self._expected_length:
                return None

            frame = RawFrame(data=bytes(self._buffer[:self._expected_length]), codec=self._codec)
            del self._buffer[:self._expected_length]
            self._expected_length = 0
            self._realign()
            self._stats.frames_completed += 1
            return frame

        return None

    def _resync(self) -> None:
        """Drop the current start marker and realign on the next one."""
        self._stats.resyncs += 1
        self._stats.bytes_discarded += 1
        del self._buffer[0]
        self._expected_length = 0
        self._realign()

    def _realign(self) -> None:
        """Discard buffered bytes up to the next start marker."""
        for idx, byte in enumerate(self._buffer):
            if byte in FRAME_MARKERS:
                self._stats.bytes_discarded += idx
                del self._buffer[:idx]
                return

        self._stats.bytes_discarded += len(self._buffer)
        self._buffer.clear()
