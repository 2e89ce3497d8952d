"""
Decorators for common patterns in the link layer.
"""
import functools
import logging
from typing import Callable, Any

from ..communication.errors import BusClosedError
from .error_handler import (
    get_error_handler,
    ErrorCategory,
    ErrorSeverity,
)

logger = logging.getLogger(__name__)


def safe_callback(category: ErrorCategory = ErrorCategory.INTERNAL,
                  message: str = "",
                  severity: ErrorSeverity = ErrorSeverity.ERROR,
                  device: str = ""):
    """
    Decorator for callbacks invoked from driver threads.

    Catches exceptions and routes them through the centralized ErrorHandler,
    so a faulty callback never terminates the thread that invoked it.

    Usage:
        @safe_callback(category=ErrorCategory.TRANSPORT)
        def on_bytes(data):
            ...

        handler = safe_callback(ErrorCategory.TRANSPORT, device="VEHICLE_A")(handler)

    Args:
        category: Error category for classification
        message: Custom error message (uses exception message if not provided)
        severity: Error severity level
        device: Device name recorded with the error
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                name = getattr(func, "__name__", func.__class__.__name__)
                error_msg = message or f"Error in {name}: {str(e)}"
                get_error_handler().handle_exception(
                    exception=e,
                    message=error_msg,
                    category=category,
                    severity=severity,
                    device=device
                )
                return None
        return wrapper
    return decorator


def require_open(method: Callable) -> Callable:
    """
    Decorator that checks the owner is open before executing a method.

    The decorated method's class must provide an 'is_open()' method.

    Usage:
        @require_open
        def send(self, command):
            ...

    Raises:
        BusClosedError: If the owner is not open
    """
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs) -> Any:
        if not self.is_open():
            raise BusClosedError(f"{self.__class__.__name__} is not open")
        return method(self, *args, **kwargs)
    return wrapper
