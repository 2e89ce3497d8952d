"""
Utils Package

Logging setup, centralized error handling and decorators.
"""

from .error_handler import (
    ErrorHandler,
    ErrorInfo,
    ErrorSeverity,
    ErrorCategory,
    get_error_handler,
    set_error_handler,
    reset_error_handler,
    handle_exception,
)
from .decorators import (
    safe_callback,
    require_open,
)
from .logger import setup_logger

__all__ = [
    'ErrorHandler',
    'ErrorInfo',
    'ErrorSeverity',
    'ErrorCategory',
    'get_error_handler',
    'set_error_handler',
    'reset_error_handler',
    'handle_exception',
    'safe_callback',
    'require_open',
    'setup_logger',
]
