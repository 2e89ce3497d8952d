"""
Device Session

A named bus subscriber that routes inbound messages to per-kind handlers
and publishes commands back onto its device's bus.
"""

import asyncio
import logging
import threading
from concurrent.futures import Future
from typing import AsyncIterator, Callable, Dict, Iterable, List, Optional, Set, Tuple

from ..communication.dispatch_bus import DispatchBus, Subscriber
from ..communication.messages import CommandMessage, TelemetryMessage


logger = logging.getLogger(__name__)

MessageHandler = Callable[[TelemetryMessage], None]

STREAM_POLL_INTERVAL = 0.5


class DeviceSession(Subscriber):
    """
    Subscriber bound to one device bus.

    Messages with a registered handler go to that handler; all others go
    to on_unhandled(). Subclasses may override on_unhandled() or register
    handlers with add_handler().
    """

    def __init__(self, name: str, bus: DispatchBus,
                 kinds: Optional[Iterable[int]] = None,
                 register: bool = True):
        """
        Initialize session.

        Args:
            name: Session name, unique on the bus
            bus: Device bus to subscribe to
            kinds: Message ids to receive (default: all)
            register: Register on the bus immediately
        """
        self.name = name
        self._bus = bus
        self._kinds = None if kinds is None else frozenset(int(k) for k in kinds)
        self._handlers: Dict[int, MessageHandler] = {}
        self._lock = threading.Lock()
        self._unhandled_seen: Set[int] = set()
        self._streams: List[Tuple[asyncio.AbstractEventLoop, asyncio.Queue]] = []
        self._closed = False
        self.messages_received = 0

        self._subscription_id: Optional[int] = None
        if register:
            self._subscription_id = bus.register(self)

    @property
    def bus(self) -> DispatchBus:
        return self._bus

    @property
    def subscription_id(self) -> Optional[int]:
        return self._subscription_id

    @property
    def is_closed(self) -> bool:
        return self._closed

    def get_subscribed_kinds(self) -> Optional[Iterable[int]]:
        return self._kinds

    # ========== Handlers ==========

    def add_handler(self, kind: int, handler: MessageHandler) -> None:
        """Route messages of one kind to a handler, replacing any previous one."""
        with self._lock:
            self._handlers[int(kind)] = handler

    def remove_handler(self, kind: int) -> bool:
        with self._lock:
            return self._handlers.pop(int(kind), None) is not None

    def on_message(self, message: TelemetryMessage) -> None:
        with self._lock:
            self.messages_received += 1
            handler = self._handlers.get(message.msg_id)
            streams = list(self._streams)

        for loop, queue in streams:
            self._push_to_stream(loop, queue, message)

        if handler is not None:
            handler(message)
        else:
            self.on_unhandled(message)

    def on_unhandled(self, message: TelemetryMessage) -> None:
        """Default path for kinds without a handler."""
        with self._lock:
            first_time = message.msg_id not in self._unhandled_seen
            self._unhandled_seen.add(message.msg_id)

        if first_time:
            known = "" if message.kind is not None else " (unrecognized kind)"
            logger.info(f"{self.name}: no handler for {message.type_name} "
                        f"id {message.msg_id}{known} from {message.device_name}")
        else:
            logger.debug(f"{self.name}: unhandled {message.type_name}")

    # ========== Outbound ==========

    def send(self, command: CommandMessage) -> Optional[Future]:
        """
        Publish a command to the device.

        Returns:
            Write future when the bus dispatches asynchronously, otherwise None

        Raises:
            BusClosedError: If the bus is closed
            TransportError: If the write fails (synchronous bus)
        """
        logger.info(f"{self.name}: sending {command.message.get_type()} to {self._bus.name}")
        return self._bus.publish_outbound(command)

    # ========== Async streaming ==========

    async def stream(self, maxsize: int = 100) -> AsyncIterator[TelemetryMessage]:
        """
        Async iterator over inbound messages.

        Messages are bridged from worker threads into the running event
        loop. When the consumer falls behind by maxsize messages the oldest
        is dropped.

        Yields:
            TelemetryMessage as they arrive, until the session is closed
        """
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        entry = (loop, queue)

        with self._lock:
            self._streams.append(entry)

        try:
            while not self._closed or not queue.empty():
                try:
                    message = await asyncio.wait_for(queue.get(), timeout=STREAM_POLL_INTERVAL)
                except asyncio.TimeoutError:
                    continue
                yield message
        finally:
            with self._lock:
                if entry in self._streams:
                    self._streams.remove(entry)

    def _push_to_stream(self, loop: asyncio.AbstractEventLoop, queue: asyncio.Queue,
                        message: TelemetryMessage) -> None:
        try:
            loop.call_soon_threadsafe(_put_dropping_oldest, queue, message)
        except RuntimeError:
            # Loop closed
            with self._lock:
                if (loop, queue) in self._streams:
                    self._streams.remove((loop, queue))

    # ========== Lifecycle ==========

    def close(self) -> None:
        """Unregister from the bus. Open streams end once drained."""
        if self._closed:
            return
        self._closed = True
        if self._subscription_id is not None:
            self._bus.unregister(self._subscription_id)
            self._subscription_id = None
        logger.debug(f"Session '{self.name}' closed")

    def __repr__(self):
        return f"DeviceSession(name={self.name!r}, bus={self._bus.name!r})"


def _put_dropping_oldest(queue: asyncio.Queue, message: TelemetryMessage) -> None:
    try:
        queue.put_nowait(message)
    except asyncio.QueueFull:
        # Drop oldest
        try:
            queue.get_nowait()
        except asyncio.QueueEmpty:
            pass
        queue.put_nowait(message)
