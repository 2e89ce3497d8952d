"""
Logging configuration for mavbus

Every module logs through logging.getLogger(__name__); setup_logger() wires
the root logger once per process.
"""

import logging
import sys
import time
from pathlib import Path
from typing import Optional
from logging.handlers import RotatingFileHandler


DEFAULT_LOG_DIR = Path.home() / ".mavbus" / "logs"

LOG_FORMAT = "%(asctime)s - %(threadName)s - %(name)s - %(levelname)s - %(message)s"

# Third-party loggers kept at WARNING
QUIET_LOGGERS = ("serial", "asyncio")

LOG_RETENTION_DAYS = 30


def setup_logger(log_level=logging.INFO, max_size_mb: int = 10, backup_count: int = 5,
                 log_dir: Optional[Path] = None) -> Path:
    """
    Setup application logger with rotating file handlers.

    Writes mavbus.log (all records at log_level), mavbus_errors.log (ERROR and
    above) and stdout. Reader, writer and worker thread names are part of
    each record.

    Args:
        log_level: Logging level (default: INFO)
        max_size_mb: Maximum log file size in MB before rotation (default: 10)
        backup_count: Number of backup files to keep (default: 5)
        log_dir: Directory for log files (default: ~/.mavbus/logs)

    Returns:
        Path of the main log file
    """
    log_dir = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "mavbus.log"
    formatter = logging.Formatter(LOG_FORMAT)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Re-initialization replaces previous handlers
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    handlers = [
        _rotating_handler(log_file, log_level, max_size_mb, backup_count),
        _rotating_handler(log_dir / "mavbus_errors.log", logging.ERROR, 5, 3),
        logging.StreamHandler(sys.stdout),
    ]
    handlers[-1].setLevel(log_level)
    for handler in handlers:
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _cleanup_old_logs(log_dir, days=LOG_RETENTION_DAYS)

    logging.getLogger(__name__).info(f"Logger initialized. Log file: {log_file}")
    return log_file


def _rotating_handler(path: Path, level: int, max_size_mb: int,
                      backup_count: int) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        path,
        maxBytes=max_size_mb * 1024 * 1024,
        backupCount=backup_count,
        encoding='utf-8'
    )
    handler.setLevel(level)
    return handler


def _cleanup_old_logs(log_dir: Path, days: int = LOG_RETENTION_DAYS):
    """Remove log files older than specified days."""
    cutoff_time = time.time() - (days * 24 * 60 * 60)

    for log_file in log_dir.glob("*.log*"):
        try:
            if log_file.stat().st_mtime < cutoff_time:
                log_file.unlink()
        except OSError:
            continue
