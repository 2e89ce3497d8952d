"""
Device Controller

Assembles the link for one named device (transport, decoder, dispatch bus)
from configuration, hands out sessions and tears the link down in order.

Shutdown order:
    stop reading ─► close bus (drain dispatch and writes) ─► close transport
    (leftover queued writes are discarded, never written)
"""

import itertools
import logging
import threading
from concurrent.futures import Future
from typing import Any, Callable, Dict, Iterable, List, Optional

import serial

from ..communication.dispatch_bus import DispatchBus
from ..communication.errors import ConfigError, ConnectionError
from ..communication.frame_decoder import FrameDecoder
from ..communication.messages import CommandMessage, create_codec
from ..communication.receiver import FrameReceiver
from ..communication.serial_transport import SerialTransport
from ..communication.worker_pool import WorkerPool
from ..models.config_manager import ConfigManager
from ..models.device_settings import DispatchSettings, SerialSettings
from ..utils.decorators import require_open
from ..utils.error_handler import ErrorHandler, get_error_handler
from .device_session import DeviceSession


logger = logging.getLogger(__name__)

# Device names currently open in this process
_active_devices: set = set()
_active_devices_lock = threading.Lock()


def active_device_names() -> List[str]:
    """Names of the devices currently open in this process."""
    with _active_devices_lock:
        return sorted(_active_devices)


class DeviceController:
    """Controller for one serial-connected device."""

    def __init__(self, settings: SerialSettings,
                 dispatch: Optional[DispatchSettings] = None,
                 pool: Optional[WorkerPool] = None,
                 error_handler: Optional[ErrorHandler] = None,
                 serial_factory: Callable[..., Any] = serial.serial_for_url,
                 bus_close_timeout: Optional[float] = 5.0):
        """
        Initialize controller. Call open() to connect.

        Args:
            settings: Device identity and port parameters
            dispatch: Dispatch policy (default: asynchronous, owned pool)
            pool: Worker pool shared with other devices
            error_handler: Receives contained failures (default: global handler)
            serial_factory: Factory opening the port, serial_for_url() signature
            bus_close_timeout: Bound on draining in-flight dispatch and writes at close
        """
        self.settings = settings
        self.dispatch = dispatch or DispatchSettings()
        self._pool = pool
        self._error_handler = error_handler
        self._serial_factory = serial_factory
        self._bus_close_timeout = bus_close_timeout

        self._bus: Optional[DispatchBus] = None
        self._receiver: Optional[FrameReceiver] = None
        self._transport: Optional[SerialTransport] = None
        self._sessions: List[DeviceSession] = []
        self._session_ids = itertools.count(1)
        self._lock = threading.Lock()
        self._is_open = False

    @classmethod
    def from_config_file(cls, path: str, device_name: Optional[str] = None,
                         **kwargs) -> "DeviceController":
        """
        Create a controller for a device described in a configuration file.

        Args:
            path: JSON configuration file
            device_name: Device to use (default: first configured device)
            **kwargs: Passed to the constructor; dispatch defaults to the
                file's dispatch section

        Raises:
            ConfigError: If the file is invalid or the device is not configured
        """
        config = ConfigManager()
        success, error_msg = config.load_from_file(path)
        if not success:
            raise ConfigError(error_msg)

        if device_name is None:
            devices = config.get_devices()
            if not devices:
                raise ConfigError(f"No devices configured in {path}")
            settings = devices[0]
        else:
            settings = config.get_device(device_name)
            if settings is None:
                raise ConfigError(f"Device '{device_name}' not found in {path}")

        kwargs.setdefault("dispatch", config.get_dispatch_settings())
        return cls(settings, **kwargs)

    # ========== Properties ==========

    @property
    def name(self) -> str:
        return self.settings.device_name

    @property
    def bus(self) -> Optional[DispatchBus]:
        return self._bus

    @property
    def transport(self) -> Optional[SerialTransport]:
        return self._transport

    @property
    def receiver(self) -> Optional[FrameReceiver]:
        return self._receiver

    def is_open(self) -> bool:
        return self._is_open

    # ========== Lifecycle ==========

    def open(self) -> "DeviceController":
        """
        Open the port and start dispatching.

        Raises:
            ValueError: If a device with the same name is already open
            ConnectionError: If the port cannot be opened
        """
        with self._lock:
            if self._is_open:
                return self

            with _active_devices_lock:
                if self.name in _active_devices:
                    raise ValueError(f"Device '{self.name}' is already open")
                _active_devices.add(self.name)

            codec = create_codec()
            bus = DispatchBus(
                self.name,
                mode=self.dispatch.mode,
                pool=self._pool,
                max_workers=self.dispatch.max_workers,
                max_queue=self.dispatch.max_queue,
                overflow_policy=self.dispatch.overflow_policy,
                codec=codec,
                error_handler=self._error_handler
            )
            receiver = FrameReceiver(
                self.name,
                sink=bus.publish_inbound,
                decoder=FrameDecoder(codec),
                error_handler=self._error_handler
            )
            transport = SerialTransport(
                self.settings,
                on_bytes=receiver,
                on_line_state=receiver.on_line_state,
                serial_factory=self._serial_factory
            )
            bus.bind_transport(transport)

            try:
                transport.connect()
            except ConnectionError:
                bus.close()
                self._release_name()
                raise

            self._bus = bus
            self._receiver = receiver
            self._transport = transport
            self._is_open = True

        logger.info(f"Device '{self.name}' open on {self.settings.port} "
                    f"({self.dispatch.mode.value} dispatch)")
        return self

    def close(self) -> None:
        """
        Stop reading, drain the bus, then close the port.

        Closing a closed controller does nothing.

        Raises:
            TransportError: If the port fails to close
        """
        with self._lock:
            if not self._is_open:
                return
            self._is_open = False
            bus, transport = self._bus, self._transport
            sessions, self._sessions = self._sessions, []

        try:
            transport.stop_reading()
            for session in sessions:
                session.close()
            bus.close(timeout=self._bus_close_timeout)
            # Writes still queued outlived the bus drain
            transport.close(drain=False)
        finally:
            self._release_name()

        logger.info(f"Device '{self.name}' closed")

    def _release_name(self) -> None:
        with _active_devices_lock:
            _active_devices.discard(self.name)

    def __enter__(self) -> "DeviceController":
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    # ========== Sessions ==========

    @require_open
    def session(self, name: Optional[str] = None,
                kinds: Optional[Iterable[int]] = None,
                session_class: type = DeviceSession, **kwargs) -> DeviceSession:
        """
        Create and register a session on this device's bus.

        Args:
            name: Session name (default: generated)
            kinds: Message ids to receive (default: all)
            session_class: DeviceSession subclass to instantiate

        Raises:
            ValueError: If the name is already registered
        """
        if name is None:
            name = f"{self.name}-session-{next(self._session_ids)}"
        session = session_class(name, self._bus, kinds=kinds, **kwargs)
        with self._lock:
            self._sessions.append(session)
        return session

    def sessions(self) -> List[DeviceSession]:
        with self._lock:
            return list(self._sessions)

    # ========== Outbound ==========

    @require_open
    def send(self, command: CommandMessage) -> Optional[Future]:
        """
        Send a command to the device.

        Raises:
            BusClosedError: If the controller is not open
            TransportError: If the write fails (synchronous dispatch)
        """
        return self._bus.publish_outbound(command)

    # ========== Statistics ==========

    def stats(self) -> Dict[str, Any]:
        """Snapshot of link counters."""
        result: Dict[str, Any] = {"device": self.name, "open": self._is_open}
        if self._transport is not None:
            result["transport"] = self._transport.stats
            result["transport_state"] = self._transport.state.name
        if self._receiver is not None:
            result["decoder"] = self._receiver.decoder.stats
            result["receiver"] = self._receiver.stats
        result["errors"] = {category.value: n for (_, category), n in
                            (self._error_handler or get_error_handler()).counts(self.name).items()}
        if self._bus is not None:
            result["bus_state"] = self._bus.state.name
            result["in_flight"] = self._bus.in_flight
            if self._bus.pool is not None:
                result["pool"] = self._bus.pool.stats
        return result

    def __repr__(self):
        return f"DeviceController({self.name!r}, {self.settings.port!r}, open={self._is_open})"
