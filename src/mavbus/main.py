#!/usr/bin/env python3
"""
mavbus - Main Entry Point

Opens the configured devices, logs inbound telemetry for a while, then
closes everything.
"""

import sys
import argparse
import logging
import time
from dataclasses import replace
from typing import List, Optional

from .communication.dispatch_bus import DispatchMode
from .communication.errors import ConnectionError, MavBusError
from .communication.messages import MessageKind, TelemetryMessage
from .communication.serial_transport import SerialTransport
from .communication.worker_pool import WorkerPool
from .controllers.device_controller import DeviceController
from .controllers.device_session import DeviceSession
from .models.config_manager import ConfigManager
from .utils.logger import setup_logger


logger = logging.getLogger(__name__)


class LoggingSession(DeviceSession):
    """Session that logs a one-line summary of selected telemetry."""

    def __init__(self, name, bus, kinds=None, register=True):
        super().__init__(name, bus, kinds=kinds, register=register)
        self.add_handler(MessageKind.HEARTBEAT, self._on_heartbeat)
        self.add_handler(MessageKind.ATTITUDE, self._on_attitude)
        self.add_handler(MessageKind.GLOBAL_POSITION_INT, self._on_position)
        self.add_handler(MessageKind.AHRS, self._log_message)
        self.add_handler(MessageKind.SENSOR_OFFSETS, self._log_message)
        self.add_handler(MessageKind.STATUSTEXT, self._on_status_text)

    def _on_heartbeat(self, message: TelemetryMessage):
        msg = message.message
        logger.info(f"[{message.device_name}] HEARTBEAT sys={message.system_id} "
                    f"type={msg.type} autopilot={msg.autopilot} status={msg.system_status}")

    def _on_attitude(self, message: TelemetryMessage):
        msg = message.message
        logger.info(f"[{message.device_name}] ATTITUDE roll={msg.roll:.3f} "
                    f"pitch={msg.pitch:.3f} yaw={msg.yaw:.3f}")

    def _on_position(self, message: TelemetryMessage):
        msg = message.message
        logger.info(f"[{message.device_name}] POSITION lat={msg.lat / 1e7:.7f} "
                    f"lon={msg.lon / 1e7:.7f} alt={msg.alt / 1000.0:.1f}m")

    def _on_status_text(self, message: TelemetryMessage):
        logger.info(f"[{message.device_name}] STATUSTEXT {message.message.text}")

    def _log_message(self, message: TelemetryMessage):
        logger.info(f"[{message.device_name}] {message.message}")


def parse_args(argv: Optional[List[str]] = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="mavbus",
        description="mavbus - MAVLink serial link monitor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --list-ports                   # List serial ports
  %(prog)s -f devices.json                # Monitor all configured devices for 5s
  %(prog)s -f devices.json -d VEHICLE_A   # Monitor one device
  %(prog)s -f devices.json --duration 60  # Monitor for a minute
"""
    )

    parser.add_argument(
        "-f", "--file",
        metavar="FILE",
        help="Device configuration file"
    )

    parser.add_argument(
        "-d", "--device",
        action="append",
        metavar="NAME",
        help="Device to open (repeatable, default: all configured devices)"
    )

    parser.add_argument(
        "--duration",
        type=float,
        default=5.0,
        metavar="SECONDS",
        help="How long to listen before closing (default: 5)"
    )

    parser.add_argument(
        "--sync",
        action="store_true",
        help="Dispatch on the reader thread instead of a worker pool"
    )

    parser.add_argument(
        "--list-ports",
        action="store_true",
        help="List available serial ports and exit"
    )

    parser.add_argument(
        "--log-dir",
        metavar="DIR",
        help="Log directory (default: ~/.mavbus/logs)"
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging"
    )

    return parser.parse_args(argv)


def list_ports() -> int:
    ports = SerialTransport.list_ports()
    if not ports:
        print("No serial ports found")
        return 0
    for info in ports:
        print(f"{info.port:<20} {info.description}")
    return 0


def run(args) -> int:
    """Open devices, listen for args.duration seconds, close."""
    config = ConfigManager()
    success, error_msg = config.load_from_file(args.file)
    if not success:
        logger.error(error_msg)
        return 2

    names = args.device or config.get_device_names()
    if not names:
        logger.error(f"No devices configured in {args.file}")
        return 2

    dispatch = config.get_dispatch_settings()
    if args.sync:
        dispatch = replace(dispatch, mode=DispatchMode.SYNC)

    shared_pool = None
    if dispatch.mode == DispatchMode.ASYNC and len(names) > 1:
        shared_pool = WorkerPool("mavbus-dispatch", max_workers=dispatch.max_workers,
                                 max_queue=dispatch.max_queue, policy=dispatch.overflow_policy)

    controllers: List[DeviceController] = []
    exit_code = 0
    try:
        for name in names:
            settings = config.get_device(name)
            if settings is None:
                logger.error(f"Device '{name}' not found in {args.file}")
                exit_code = 2
                continue

            controller = DeviceController(settings, dispatch=dispatch, pool=shared_pool)
            try:
                controller.open()
            except ConnectionError as e:
                logger.error(str(e))
                exit_code = 1
                continue

            controller.session(f"{name}-log", session_class=LoggingSession)
            controllers.append(controller)

        if controllers:
            logger.info(f"Listening on {len(controllers)} device(s) for {args.duration}s")
            time.sleep(args.duration)

    except KeyboardInterrupt:
        logger.info("Interrupted")

    finally:
        for controller in controllers:
            try:
                controller.close()
            except MavBusError as e:
                logger.error(f"Failed to close {controller.name}: {e}")
                exit_code = 1
            logger.info(f"{controller.name}: {controller.stats()}")

        if shared_pool is not None:
            shared_pool.shutdown(wait=True)

    logger.info("Done")
    return exit_code


def main(argv: Optional[List[str]] = None) -> int:
    """Main application entry point."""
    args = parse_args(argv)

    setup_logger(
        log_level=logging.DEBUG if args.verbose else logging.INFO,
        log_dir=args.log_dir
    )

    if args.list_ports:
        return list_ports()

    if not args.file:
        logger.error("No configuration file given (use -f FILE)")
        return 2

    return run(args)


if __name__ == "__main__":
    sys.exit(main())
