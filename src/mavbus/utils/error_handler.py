"""
Centralized Error Handler

Failures that are contained rather than raised (decode noise, subscriber
faults, driver callback faults) are reported here. Each report is logged at
the level matching its severity, kept in a bounded history, tallied per
device and category, and passed to any callbacks registered for its
category.
"""

from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto
from typing import Callable, Deque, Dict, List, Optional, Tuple
import logging
import threading
import traceback

logger = logging.getLogger(__name__)


class ErrorSeverity(Enum):
    """Error severity levels, lowest first."""
    DEBUG = auto()
    INFO = auto()
    WARNING = auto()    # Frame or callback lost, link unaffected
    ERROR = auto()      # Operation failed
    CRITICAL = auto()   # Link may be unusable


class ErrorCategory(Enum):
    """Where a contained failure happened."""
    TRANSPORT = "transport"     # Serial I/O, driver callbacks
    DECODE = "decode"           # Frame unpack failures
    DISPATCH = "dispatch"       # Subscriber callbacks
    CONFIG = "config"
    INTERNAL = "internal"
    UNKNOWN = "unknown"


_LOG_LEVELS = {
    ErrorSeverity.DEBUG: logging.DEBUG,
    ErrorSeverity.INFO: logging.INFO,
    ErrorSeverity.WARNING: logging.WARNING,
    ErrorSeverity.ERROR: logging.ERROR,
    ErrorSeverity.CRITICAL: logging.CRITICAL,
}

ErrorCallback = Callable[["ErrorInfo"], None]


@dataclass
class ErrorInfo:
    """One reported failure."""
    message: str
    severity: ErrorSeverity = ErrorSeverity.ERROR
    category: ErrorCategory = ErrorCategory.UNKNOWN
    exception: Optional[Exception] = None
    details: str = ""
    timestamp: datetime = field(default_factory=datetime.now)
    source: str = ""
    device: str = ""

    def __str__(self):
        where = f"{self.device}/" if self.device else ""
        return f"[{self.severity.name}] {where}{self.category.value}: {self.message}"


class ErrorHandler:
    """
    Collects contained failures from every device in the process.

    Safe to call from reader, writer and worker threads. Suppressing a
    category silences its callbacks only; reports are still logged and kept.
    """

    def __init__(self, max_history: int = 100):
        self._lock = threading.Lock()
        self._history: Deque[ErrorInfo] = deque(maxlen=max_history)
        self._counts: Counter = Counter()
        self._suppressed: set = set()
        self._callbacks: Dict[ErrorCategory, List[ErrorCallback]] = {}

    def handle(self, error: ErrorInfo) -> None:
        """Record, log and dispatch one report."""
        with self._lock:
            self._history.append(error)
            self._counts[(error.device, error.category)] += 1
            if error.category in self._suppressed:
                callbacks = []
            else:
                callbacks = list(self._callbacks.get(error.category, ()))

        text = f"[{error.category.value}] {error.message}"
        if error.details:
            text += f"\nDetails: {error.details}"
        logger.log(_LOG_LEVELS[error.severity], text)

        for callback in callbacks:
            try:
                callback(error)
            except Exception as e:
                logger.error(f"Error callback failed: {e}")

    def handle_exception(self, exception: Exception, message: str = "",
                         category: ErrorCategory = ErrorCategory.UNKNOWN,
                         severity: ErrorSeverity = ErrorSeverity.ERROR,
                         device: str = "") -> None:
        """
        Report a caught exception.

        A traceback is attached to ERROR and CRITICAL reports only; decode
        noise at WARNING stays one line.

        Args:
            exception: The caught exception
            message: Report text (default: the exception's message)
            category: Where it happened
            severity: How bad it is
            device: Name of the device whose link it happened on
        """
        details = ""
        if severity in (ErrorSeverity.ERROR, ErrorSeverity.CRITICAL):
            details = "".join(traceback.format_exception(
                type(exception), exception, exception.__traceback__))

        self.handle(ErrorInfo(
            message=message or str(exception),
            severity=severity,
            category=category,
            exception=exception,
            details=details,
            source=type(exception).__name__,
            device=device
        ))

    def warning(self, message: str, category: ErrorCategory = ErrorCategory.UNKNOWN,
                device: str = "") -> None:
        self.handle(ErrorInfo(message, ErrorSeverity.WARNING, category, device=device))

    def register_callback(self, category: ErrorCategory, callback: ErrorCallback) -> None:
        """Call callback with every unsuppressed report in category."""
        with self._lock:
            self._callbacks.setdefault(category, []).append(callback)

    def suppress_category(self, category: ErrorCategory) -> None:
        with self._lock:
            self._suppressed.add(category)

    def unsuppress_category(self, category: ErrorCategory) -> None:
        with self._lock:
            self._suppressed.discard(category)

    def get_history(self, category: Optional[ErrorCategory] = None,
                    severity: Optional[ErrorSeverity] = None,
                    limit: Optional[int] = None,
                    device: Optional[str] = None) -> List[ErrorInfo]:
        """
        Recent reports, oldest first.

        Args:
            category: Only this category
            severity: Only this severity or worse
            limit: Only the newest N
            device: Only reports from this device
        """
        with self._lock:
            errors = list(self._history)

        if category is not None:
            errors = [e for e in errors if e.category == category]
        if device is not None:
            errors = [e for e in errors if e.device == device]
        if severity is not None:
            errors = [e for e in errors if e.severity.value >= severity.value]
        if limit:
            errors = errors[-limit:]
        return errors

    def counts(self, device: Optional[str] = None) -> Dict[Tuple[str, ErrorCategory], int]:
        """
        Report totals since the last clear, keyed by (device, category).

        Unlike the history these are never evicted.
        """
        with self._lock:
            return {key: n for key, n in self._counts.items()
                    if device is None or key[0] == device}

    def clear_history(self) -> None:
        """Forget recorded reports and totals."""
        with self._lock:
            self._history.clear()
            self._counts.clear()


# Process-wide instance
_error_handler: Optional[ErrorHandler] = None
_error_handler_lock = threading.Lock()


def get_error_handler() -> ErrorHandler:
    """Get the global error handler, creating it on first use."""
    global _error_handler
    with _error_handler_lock:
        if _error_handler is None:
            _error_handler = ErrorHandler()
        return _error_handler


def set_error_handler(handler: ErrorHandler) -> None:
    global _error_handler
    with _error_handler_lock:
        _error_handler = handler


def reset_error_handler() -> None:
    """Drop the global error handler (for testing)."""
    global _error_handler
    with _error_handler_lock:
        _error_handler = None


def handle_exception(exception: Exception, message: str = "",
                     category: ErrorCategory = ErrorCategory.UNKNOWN,
                     severity: ErrorSeverity = ErrorSeverity.ERROR,
                     device: str = "") -> None:
    """Report an exception to the global error handler."""
    get_error_handler().handle_exception(exception, message, category, severity, device)
