"""
Per-Device Dispatch Bus

Publish/subscribe hub between a device's decode path and its consumers,
and the outbound path from consumers back to the device's transport.

Lifecycle:
    ACTIVE ──close()──► CLOSING ──(in-flight drained)──► CLOSED

Inbound messages are delivered to every subscriber whose kind filter
matches, either on the publishing thread (SYNC) or on a worker pool
(ASYNC, the default).
"""

from abc import ABC, abstractmethod
from concurrent.futures import Future
from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Union
import itertools
import logging
import struct
import threading
import time

from pymavlink.dialects.v20 import ardupilotmega as mavlink

from .errors import BusClosedError, TransportError
from .messages import CommandMessage, TelemetryMessage, create_codec
from .worker_pool import OverflowPolicy, WorkerPool
from ..utils.error_handler import ErrorCategory, ErrorHandler, get_error_handler


logger = logging.getLogger(__name__)


class BusState(Enum):
    """Dispatch bus lifecycle state."""
    ACTIVE = auto()
    CLOSING = auto()
    CLOSED = auto()


class DispatchMode(Enum):
    """Where subscriber callbacks run."""
    SYNC = "sync"
    ASYNC = "async"


class Subscriber(ABC):
    """
    Abstract base class for bus subscribers.

    Subscribers are identified on a bus by their name.
    """

    name: str = ""

    @abstractmethod
    def on_message(self, message: TelemetryMessage) -> None:
        """
        Called for each inbound message matching the subscribed kinds.

        Args:
            message: Decoded telemetry message
        """
        pass

    def get_subscribed_kinds(self) -> Optional[Iterable[int]]:
        """
        Return the message ids this subscriber wants to receive.

        Override this to subscribe to specific kinds.
        Default returns None which receives everything.
        """
        return None


@dataclass(frozen=True)
class Subscription:
    """One registry entry."""
    subscription_id: int
    name: str
    callback: Callable[[TelemetryMessage], None]
    kinds: Optional[FrozenSet[int]] = None
    subscriber: Optional[Subscriber] = None

    def matches(self, msg_id: int) -> bool:
        return self.kinds is None or msg_id in self.kinds


class DispatchBus:
    """
    Named publish/subscribe hub for one device.

    Registration is safe while dispatch is running: each publish iterates
    a snapshot of the registry taken under the registry lock.
    """

    def __init__(self, name: str, transport=None,
                 mode: DispatchMode = DispatchMode.ASYNC,
                 pool: Optional[WorkerPool] = None,
                 max_workers: int = 4, max_queue: int = 1024,
                 overflow_policy: OverflowPolicy = OverflowPolicy.BLOCK,
                 codec: Optional[mavlink.MAVLink] = None,
                 error_handler: Optional[ErrorHandler] = None):
        """
        Initialize bus.

        Args:
            name: Bus name, normally the device name
            transport: Transport receiving outbound frames (may be bound later)
            mode: SYNC or ASYNC dispatch
            pool: Shared worker pool; when None and mode is ASYNC, the bus
                creates and owns one
            max_workers: Size of an owned pool
            max_queue: Queue bound of an owned pool
            overflow_policy: Overflow policy of an owned pool
            codec: pymavlink codec used to pack outbound commands
            error_handler: Receives subscriber failures
        """
        self._name = name
        self._transport = transport
        self._mode = mode
        self._codec = codec or create_codec()
        self._codec_lock = threading.Lock()
        self._error_handler = error_handler

        self._owns_pool = False
        self._pool = pool
        if self._pool is None and mode == DispatchMode.ASYNC:
            self._pool = WorkerPool(f"{name}-dispatch", max_workers=max_workers,
                                    max_queue=max_queue, policy=overflow_policy)
            self._owns_pool = True

        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._state = BusState.ACTIVE
        self._registry: Dict[int, Subscription] = {}
        self._ids = itertools.count(1)
        self._in_flight = 0

        logger.debug(f"Bus '{name}' created ({mode.value})")

    # ========== Properties ==========

    @property
    def name(self) -> str:
        return self._name

    @property
    def mode(self) -> DispatchMode:
        return self._mode

    @property
    def state(self) -> BusState:
        with self._lock:
            return self._state

    @property
    def transport(self):
        return self._transport

    @property
    def pool(self) -> Optional[WorkerPool]:
        return self._pool

    @property
    def in_flight(self) -> int:
        """Scheduled asynchronous deliveries and outbound writes not yet finished."""
        with self._lock:
            return self._in_flight

    def is_active(self) -> bool:
        return self.state == BusState.ACTIVE

    def bind_transport(self, transport) -> None:
        """Set the transport receiving outbound frames."""
        self._transport = transport

    # ========== Registry ==========

    def register(self, subscriber: Subscriber) -> int:
        """
        Register a subscriber.

        Returns:
            Subscription id

        Raises:
            BusClosedError: If the bus is not active
            ValueError: If the subscriber's name is already registered
        """
        return self._add(subscriber.name, subscriber.on_message,
                         subscriber.get_subscribed_kinds(), subscriber)

    def subscribe(self, callback: Callable[[TelemetryMessage], None],
                  kinds: Optional[Iterable[int]] = None,
                  name: Optional[str] = None) -> int:
        """
        Subscribe a plain callback.

        Args:
            callback: Function to call with each matching message
            kinds: Message ids to receive (default: all)
            name: Subscription name (default: derived from the callback)

        Returns:
            Subscription id for unsubscribing
        """
        if name is None:
            name = f"{getattr(callback, '__qualname__', 'callback')}@{id(callback):x}"
        return self._add(name, callback, kinds, None)

    def unregister(self, subscriber: Union[Subscriber, int]) -> bool:
        """
        Remove a subscriber by object or subscription id.

        A message already being dispatched may still reach it.

        Returns:
            True if an entry was removed
        """
        with self._lock:
            if isinstance(subscriber, int):
                removed = self._registry.pop(subscriber, None)
            else:
                removed = None
                for sub_id, entry in self._registry.items():
                    if entry.subscriber is subscriber:
                        removed = self._registry.pop(sub_id)
                        break

        if removed is not None:
            logger.debug(f"Bus '{self._name}': removed subscriber '{removed.name}'")
        return removed is not None

    def unsubscribe(self, subscription_id: int) -> bool:
        """Remove a callback subscription by id."""
        return self.unregister(subscription_id)

    def subscriptions(self) -> List[Subscription]:
        """Registry entries in registration order."""
        with self._lock:
            return list(self._registry.values())

    def _add(self, name: str, callback: Callable[[TelemetryMessage], None],
             kinds: Optional[Iterable[int]], subscriber: Optional[Subscriber]) -> int:
        kind_set = None if kinds is None else frozenset(int(k) for k in kinds)

        with self._lock:
            if self._state != BusState.ACTIVE:
                raise BusClosedError(f"Bus '{self._name}' is {self._state.name.lower()}")
            if any(entry.name == name for entry in self._registry.values()):
                raise ValueError(f"Subscriber '{name}' already registered on bus '{self._name}'")

            sub_id = next(self._ids)
            self._registry[sub_id] = Subscription(
                subscription_id=sub_id,
                name=name,
                callback=callback,
                kinds=kind_set,
                subscriber=subscriber
            )

        logger.debug(f"Bus '{self._name}': added subscriber '{name}' (id {sub_id})")
        return sub_id

    # ========== Publishing ==========

    def publish_inbound(self, message: TelemetryMessage) -> None:
        """
        Deliver a message to every matching subscriber.

        Raises:
            BusClosedError: If the bus is not active
        """
        with self._lock:
            if self._state != BusState.ACTIVE:
                raise BusClosedError(f"Bus '{self._name}' is {self._state.name.lower()}")
            targets = [entry for entry in self._registry.values() if entry.matches(message.msg_id)]
            if self._mode == DispatchMode.ASYNC:
                self._in_flight += len(targets)

        if self._mode == DispatchMode.SYNC:
            for entry in targets:
                self._deliver(entry, message)
            return

        for index, entry in enumerate(targets):
            try:
                future = self._pool.submit(self._deliver, entry, message)
            except Exception:
                self._task_done(len(targets) - index)
                raise
            future.add_done_callback(self._on_delivery_done)

    def publish_outbound(self, command: CommandMessage) -> Optional[Future]:
        """
        Encode a command and forward it to the transport.

        In SYNC mode the write completes before returning and failures are
        raised. In ASYNC mode the write is queued on the transport and the
        returned future reports its outcome.

        Returns:
            Write future in ASYNC mode, None in SYNC mode

        Raises:
            BusClosedError: If the bus is not active
            TransportError: If no transport is bound, or the write fails (SYNC)
            ValueError: If the message cannot be packed
        """
        with self._lock:
            if self._state != BusState.ACTIVE:
                raise BusClosedError(f"Bus '{self._name}' is {self._state.name.lower()}")
            transport = self._transport
            if transport is None:
                raise TransportError(f"Bus '{self._name}' has no transport")
            # Counted until written, so close() cannot finish first
            self._in_flight += 1

        future = None
        try:
            with self._codec_lock:
                try:
                    data = command.encode(self._codec)
                except (struct.error, TypeError) as e:
                    raise ValueError(f"Cannot encode {command}: {e}") from e

            if self._mode == DispatchMode.SYNC:
                transport.write(data)
            else:
                future = transport.submit(data)
        finally:
            if future is None:
                self._task_done(1)

        if future is not None:
            future.add_done_callback(self._on_write_done)
        return future

    # ========== Shutdown ==========

    def close(self, timeout: Optional[float] = None) -> None:
        """
        Refuse new work, wait for in-flight deliveries and outbound writes,
        then release the pool. No write is started by this bus once it is
        CLOSED.

        Args:
            timeout: Bound on the wait for in-flight work, None to wait
                indefinitely
        """
        with self._lock:
            if self._state != BusState.ACTIVE:
                return
            self._state = BusState.CLOSING
            logger.debug(f"Bus '{self._name}' closing, {self._in_flight} in flight")

            deadline = None if timeout is None else time.monotonic() + timeout
            while self._in_flight > 0:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    logger.warning(f"Bus '{self._name}': {self._in_flight} deliveries or writes "
                                   f"still running after {timeout}s")
                    break
                self._idle.wait(remaining)

        if self._owns_pool:
            self._pool.shutdown(wait=True, timeout=timeout)

        with self._lock:
            self._state = BusState.CLOSED
            self._registry.clear()

        logger.info(f"Bus '{self._name}' closed")

    # ========== Internal ==========

    def _deliver(self, entry: Subscription, message: TelemetryMessage) -> None:
        try:
            entry.callback(message)
        except Exception as e:
            (self._error_handler or get_error_handler()).handle_exception(
                e,
                message=f"Bus '{self._name}': subscriber '{entry.name}' failed "
                        f"on {message.type_name}: {e}",
                category=ErrorCategory.DISPATCH,
                device=self._name
            )

    def _on_delivery_done(self, future: Future) -> None:
        self._task_done(1)

    def _task_done(self, count: int) -> None:
        with self._lock:
            self._in_flight -= count
            if self._in_flight <= 0:
                self._in_flight = 0
                self._idle.notify_all()

    def _on_write_done(self, future: Future) -> None:
        self._task_done(1)
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error(f"Bus '{self._name}': outbound write failed: {error}")

    def __repr__(self):
        return f"DispatchBus(name={self._name!r}, mode={self._mode.value}, state={self.state.name})"
