"""
Serial Transport

Owns one serial connection and performs raw byte I/O with pyserial.

Threads per transport:
- reader: reads available bytes, hands them to the byte-arrival callback
  and polls the CTS/DSR lines between reads
- writer: issues queued writes in submission order

Any pyserial URL is accepted as port ("/dev/ttyUSB0", "COM3", "loop://",
"socket://host:port", ...).
"""

from concurrent.futures import Future, TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable, Dict, List, Optional
import logging
import queue
import threading
import time

import serial
import serial.tools.list_ports

from .errors import ConnectionError, TransportError
from ..models.device_settings import SerialSettings
from ..utils.decorators import safe_callback
from ..utils.error_handler import ErrorCategory


logger = logging.getLogger(__name__)


# Default serial settings
DEFAULT_BAUDRATE = 57600
READ_TIMEOUT = 0.05
READ_BUFFER_SIZE = 4096
WRITE_TIMEOUT_MARGIN = 1.0
WRITE_QUEUE_SIZE = 256
THREAD_JOIN_TIMEOUT = 2.0


class TransportState(Enum):
    """Transport connection state."""
    DISCONNECTED = auto()
    CONNECTED = auto()
    ERROR = auto()
    CLOSED = auto()


class LineSignal(Enum):
    """Monitored modem-status lines."""
    CTS = "cts"
    DSR = "dsr"


@dataclass
class TransportInfo:
    """Information about a serial port."""
    port: str
    description: str
    hardware_id: str = ""
    manufacturer: str = ""
    vid: Optional[int] = None
    pid: Optional[int] = None


@dataclass
class TransportStats:
    """Transport statistics."""
    connected_at: Optional[float] = None
    last_rx_time: Optional[float] = None
    last_tx_time: Optional[float] = None
    bytes_received: int = 0
    bytes_sent: int = 0
    writes: int = 0
    write_errors: int = 0
    read_errors: int = 0

    @property
    def uptime(self) -> float:
        """Get connection uptime in seconds."""
        if self.connected_at:
            return time.time() - self.connected_at
        return 0.0

    @property
    def time_since_rx(self) -> Optional[float]:
        """Get time since last receive in seconds."""
        if self.last_rx_time:
            return time.time() - self.last_rx_time
        return None


_STOP_WRITER = object()


class SerialTransport:
    """
    Threaded serial transport for one device.

    Byte-arrival and line-state notifications are delivered from the reader
    thread only, in stream order.
    """

    def __init__(self, settings: SerialSettings,
                 on_bytes: Optional[Callable[[bytes], None]] = None,
                 on_line_state: Optional[Callable[[LineSignal, bool], None]] = None,
                 serial_factory: Callable[..., serial.SerialBase] = serial.serial_for_url):
        """
        Initialize transport. Call connect() to open the port.

        Args:
            settings: Device identity and port parameters
            on_bytes: Byte-arrival callback
            on_line_state: Line-state callback, called with (signal, state)
            serial_factory: Factory opening the port, serial_for_url() signature
        """
        self.settings = settings
        self._serial_factory = serial_factory
        self._serial: Optional[serial.SerialBase] = None
        self._state = TransportState.DISCONNECTED
        self._lock = threading.Lock()
        self._stats = TransportStats()
        self._port_info: Optional[TransportInfo] = None

        self._data_callback: Optional[Callable[[bytes], None]] = None
        self._line_state_callback: Optional[Callable[[LineSignal, bool], None]] = None
        self.set_data_callback(on_bytes)
        self.set_line_state_callback(on_line_state)

        self._stop_reading = threading.Event()
        self._reader_thread: Optional[threading.Thread] = None
        self._writer_thread: Optional[threading.Thread] = None
        self._write_queue: queue.Queue = queue.Queue(maxsize=WRITE_QUEUE_SIZE)
        self._closing = False
        self._line_states: Dict[LineSignal, bool] = {}

    @classmethod
    def open(cls, settings: SerialSettings,
             on_bytes: Optional[Callable[[bytes], None]] = None,
             on_line_state: Optional[Callable[[LineSignal, bool], None]] = None,
             serial_factory: Callable[..., serial.SerialBase] = serial.serial_for_url
             ) -> "SerialTransport":
        """
        Create a transport and open its port.

        Raises:
            ConnectionError: If the port cannot be opened or configured
        """
        transport = cls(settings, on_bytes, on_line_state, serial_factory)
        transport.connect()
        return transport

    @staticmethod
    def list_ports() -> List[TransportInfo]:
        """
        List available serial ports.

        Returns:
            List of TransportInfo for each available port, sorted by name
        """
        ports = []
        for port in serial.tools.list_ports.comports():
            ports.append(TransportInfo(
                port=port.device,
                description=port.description or "",
                hardware_id=port.hwid or "",
                manufacturer=port.manufacturer or "",
                vid=port.vid,
                pid=port.pid
            ))
        ports.sort(key=lambda p: p.port)
        return ports

    # ========== Properties ==========

    @property
    def device_name(self) -> str:
        return self.settings.device_name

    @property
    def state(self) -> TransportState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == TransportState.CONNECTED

    @property
    def stats(self) -> TransportStats:
        return self._stats

    @property
    def port_info(self) -> Optional[TransportInfo]:
        """Information about the connected port."""
        if self._port_info is None and self._serial is not None:
            for info in self.list_ports():
                if info.port == self.settings.port:
                    self._port_info = info
                    break
            else:
                self._port_info = TransportInfo(port=self.settings.port, description="")
        return self._port_info

    def set_data_callback(self, callback: Optional[Callable[[bytes], None]]) -> None:
        """
        Set callback for received data.

        Args:
            callback: Function to call when data is received, or None to clear
        """
        if callback is None:
            self._data_callback = None
            return
        self._data_callback = safe_callback(
            ErrorCategory.TRANSPORT, f"{self.device_name}: byte handler failed",
            device=self.device_name)(callback)

    def set_line_state_callback(self, callback: Optional[Callable[[LineSignal, bool], None]]) -> None:
        """
        Set callback for CTS/DSR changes.

        Args:
            callback: Function called with (signal, state), or None to clear
        """
        if callback is None:
            self._line_state_callback = None
            return
        self._line_state_callback = safe_callback(
            ErrorCategory.TRANSPORT, f"{self.device_name}: line-state handler failed",
            device=self.device_name)(callback)

    # ========== Lifecycle ==========

    def connect(self) -> None:
        """
        Open the port and start the reader and writer threads.

        Raises:
            ConnectionError: If the port cannot be opened or configured
        """
        with self._lock:
            if self._state == TransportState.CLOSED:
                raise ConnectionError(f"{self.device_name}: transport already closed")
            if self._serial is not None:
                return

            try:
                self._serial = self._serial_factory(
                    self.settings.port,
                    timeout=READ_TIMEOUT,
                    **self.settings.serial_kwargs()
                )
            except (serial.SerialException, ValueError, OSError) as e:
                self._state = TransportState.ERROR
                raise ConnectionError(
                    f"{self.device_name}: failed to open {self.settings.port}: {e}") from e

            self._line_states = self._read_line_states()
            self._stats.connected_at = time.time()
            self._state = TransportState.CONNECTED

            self._writer_thread = threading.Thread(
                target=self._write_loop, name=f"{self.device_name}-writer", daemon=True)
            self._reader_thread = threading.Thread(
                target=self._read_loop, name=f"{self.device_name}-reader", daemon=True)
            self._writer_thread.start()
            self._reader_thread.start()

        logger.info(f"{self.device_name}: connected to {self.settings.port} "
                    f"at {self.settings.baud_rate} baud")

    def stop_reading(self) -> None:
        """Stop delivering notifications. Writes remain possible."""
        self._stop_reading.set()
        reader = self._reader_thread
        if reader is not None and reader is not threading.current_thread():
            reader.join(THREAD_JOIN_TIMEOUT)
            if reader.is_alive():
                logger.warning(f"{self.device_name}: reader thread did not stop")

    def close(self, drain: bool = True) -> None:
        """
        Stop notifications, finish pending writes and release the port.

        Args:
            drain: Issue writes still queued; when False they fail with
                TransportError without reaching the port

        Raises:
            TransportError: If already closed, or the port fails to close
        """
        with self._lock:
            if self._state == TransportState.CLOSED:
                raise TransportError(f"{self.device_name}: transport already closed")
            self._closing = True

        self.stop_reading()
        if not drain:
            self._discard_pending()

        writer = self._writer_thread
        if writer is not None:
            self._write_queue.put(_STOP_WRITER)
            if writer is not threading.current_thread():
                writer.join(THREAD_JOIN_TIMEOUT)

        with self._lock:
            port = self._serial
            self._serial = None
            self._state = TransportState.CLOSED

        if port is not None:
            try:
                port.close()
            except (serial.SerialException, OSError) as e:
                raise TransportError(f"{self.device_name}: close failed: {e}") from e

        logger.info(f"{self.device_name}: disconnected from {self.settings.port}")

    # ========== Writing ==========

    def submit(self, data: bytes) -> Future:
        """
        Queue a buffer for writing.

        Returns:
            Future resolving to the number of bytes written, or failing with
            TransportError

        Raises:
            TransportError: If the port is not open or the write queue is full
        """
        if self._closing or self._state != TransportState.CONNECTED:
            raise TransportError(f"{self.device_name}: port not open ({self._state.name})")

        future: Future = Future()
        try:
            self._write_queue.put_nowait((future, bytes(data)))
        except queue.Full:
            raise TransportError(f"{self.device_name}: write queue full")
        return future

    def write(self, data: bytes, timeout: Optional[float] = None) -> int:
        """
        Write a buffer and wait for completion.

        Args:
            data: Bytes to write
            timeout: Wait bound, default write_timeout plus a margin

        Returns:
            Number of bytes written

        Raises:
            TransportError: If the write is rejected, fails or times out
        """
        if timeout is None:
            timeout = self.settings.write_timeout + WRITE_TIMEOUT_MARGIN

        future = self.submit(data)
        try:
            return future.result(timeout)
        except FutureTimeoutError:
            future.cancel()
            raise TransportError(f"{self.device_name}: write timed out after {timeout}s")

    def _discard_pending(self) -> int:
        """Fail every queued write without issuing it."""
        discarded = 0
        while True:
            try:
                future, _ = self._write_queue.get_nowait()
            except queue.Empty:
                break
            if future.set_running_or_notify_cancel():
                future.set_exception(TransportError(f"{self.device_name}: closed before write"))
            discarded += 1
        if discarded:
            logger.warning(f"{self.device_name}: discarded {discarded} pending writes")
        return discarded

    # ========== Threads ==========

    def _read_loop(self) -> None:
        """Reader thread: deliver bytes and line-state changes."""
        while not self._stop_reading.is_set():
            port = self._serial
            if port is None:
                break

            try:
                data = port.read(port.in_waiting or 1)
            except (serial.SerialException, OSError, TypeError, AttributeError) as e:
                if self._stop_reading.is_set():
                    break
                self._stats.read_errors += 1
                self._state = TransportState.ERROR
                logger.error(f"{self.device_name}: read error: {e}")
                break

            if data:
                self._stats.bytes_received += len(data)
                self._stats.last_rx_time = time.time()
                if self._data_callback:
                    self._data_callback(data)

            self._poll_line_states()

        logger.debug(f"{self.device_name}: reader stopped")

    def _write_loop(self) -> None:
        """Writer thread: issue queued writes in order."""
        while True:
            item = self._write_queue.get()
            if item is _STOP_WRITER:
                break

            future, data = item
            if not future.set_running_or_notify_cancel():
                continue

            port = self._serial
            if port is None:
                future.set_exception(TransportError(f"{self.device_name}: port closed"))
                continue

            try:
                written = port.write(data)
            except (serial.SerialException, OSError) as e:
                self._stats.write_errors += 1
                logger.error(f"{self.device_name}: write error: {e}")
                future.set_exception(TransportError(f"{self.device_name}: write failed: {e}"))
                continue

            if written is None:
                written = len(data)
            self._stats.writes += 1
            self._stats.bytes_sent += written
            self._stats.last_tx_time = time.time()
            logger.debug(f"{self.device_name}: sent {written} bytes")
            future.set_result(written)

        logger.debug(f"{self.device_name}: writer stopped")

    def _read_line_states(self) -> Dict[LineSignal, bool]:
        states = {}
        for signal in LineSignal:
            try:
                states[signal] = bool(getattr(self._serial, signal.value))
            except (serial.SerialException, OSError, NotImplementedError, AttributeError):
                pass
        return states

    def _poll_line_states(self) -> None:
        if not self._line_states:
            return

        current = self._read_line_states()
        for signal, state in current.items():
            if self._line_states.get(signal) != state:
                self._line_states[signal] = state
                logger.debug(f"{self.device_name}: {signal.name} -> {state}")
                if self._line_state_callback:
                    self._line_state_callback(signal, state)

    def __repr__(self):
        return f"SerialTransport({self.device_name!r}, {self.settings.port!r}, {self._state.name})"
