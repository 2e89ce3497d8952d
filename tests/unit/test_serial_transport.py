"""
Serial Transport Tests
Tests for the threaded pyserial transport using an in-memory port
"""

import threading
import time
from unittest.mock import Mock, patch

import pytest
import serial

from mavbus.communication.errors import ConnectionError, TransportError
from mavbus.communication.serial_transport import (
    SerialTransport,
    TransportState,
    TransportInfo,
    LineSignal,
    READ_TIMEOUT,
)
from mavbus.models.device_settings import Parity, SerialSettings
from mavbus.utils.error_handler import ErrorCategory

from ..helpers import wait_for


class ByteCollector:
    """Thread-safe byte-arrival callback."""

    def __init__(self):
        self.chunks = []
        self._lock = threading.Lock()

    def __call__(self, data):
        with self._lock:
            self.chunks.append(data)

    @property
    def data(self):
        with self._lock:
            return b"".join(self.chunks)


@pytest.fixture
def collector():
    return ByteCollector()


@pytest.fixture
def transport(vehicle_settings, serial_factory, collector):
    transport = SerialTransport.open(vehicle_settings, on_bytes=collector,
                                     serial_factory=serial_factory)
    yield transport
    if transport.state != TransportState.CLOSED:
        transport.close()


class TestConnect:
    """Test opening the port."""

    def test_port_parameters(self, serial_factory, fake_serial):
        settings = SerialSettings("VEHICLE_B", "/dev/ttyS1", baud_rate=115200,
                                  data_bits=7, stop_bits=2, parity=Parity.EVEN)
        transport = SerialTransport.open(settings, serial_factory=serial_factory)
        try:
            assert fake_serial.port == "/dev/ttyS1"
            assert fake_serial.kwargs["baudrate"] == 115200
            assert fake_serial.kwargs["bytesize"] == 7
            assert fake_serial.kwargs["stopbits"] == 2
            assert fake_serial.kwargs["parity"] == serial.PARITY_EVEN
            assert fake_serial.kwargs["timeout"] == READ_TIMEOUT
            assert transport.state == TransportState.CONNECTED
            assert transport.is_connected
        finally:
            transport.close()

    def test_open_failure(self, vehicle_settings):
        factory = Mock(side_effect=serial.SerialException("could not open port"))

        transport = SerialTransport(vehicle_settings, serial_factory=factory)
        with pytest.raises(ConnectionError):
            transport.connect()
        assert transport.state == TransportState.ERROR

    def test_rejected_parameters(self, vehicle_settings):
        factory = Mock(side_effect=ValueError("Not a valid baudrate"))

        with pytest.raises(ConnectionError):
            SerialTransport.open(vehicle_settings, serial_factory=factory)

    def test_missing_device(self):
        """Opening a nonexistent port through pyserial fails cleanly."""
        settings = SerialSettings("GHOST", "/dev/mavbus-no-such-port")
        with pytest.raises(ConnectionError):
            SerialTransport.open(settings)

    def test_stats_connected_at(self, transport):
        assert transport.stats.connected_at is not None
        assert transport.stats.uptime >= 0.0


class TestReading:
    """Test byte-arrival notifications."""

    def test_bytes_delivered_in_order(self, transport, fake_serial, collector):
        fake_serial.feed(b"\x01\x02\x03")
        fake_serial.feed(b"\x04\x05")

        assert wait_for(lambda: collector.data == b"\x01\x02\x03\x04\x05")
        assert transport.stats.bytes_received == 5

    def test_notifications_from_reader_thread(self, vehicle_settings, serial_factory, fake_serial):
        threads = []
        transport = SerialTransport.open(
            vehicle_settings,
            on_bytes=lambda data: threads.append(threading.current_thread().name),
            serial_factory=serial_factory
        )
        try:
            fake_serial.feed(b"\xaa")
            assert wait_for(lambda: threads)
            assert threads[0] == "VEHICLE_A-reader"
        finally:
            transport.close()

    def test_faulty_callback_keeps_reader_alive(self, vehicle_settings, serial_factory,
                                                fake_serial, error_handler):
        calls = []

        def flaky(data):
            calls.append(data)
            if len(calls) == 1:
                raise RuntimeError("handler bug")

        transport = SerialTransport.open(vehicle_settings, on_bytes=flaky,
                                         serial_factory=serial_factory)
        try:
            fake_serial.feed(b"\x01")
            assert wait_for(lambda: len(calls) == 1)
            fake_serial.feed(b"\x02")
            assert wait_for(lambda: len(calls) == 2)
            assert error_handler.get_history(category=ErrorCategory.TRANSPORT)
            assert error_handler.counts(device="VEHICLE_A") == {("VEHICLE_A", ErrorCategory.TRANSPORT): 1}
        finally:
            transport.close()

    def test_stop_reading(self, transport, fake_serial, collector):
        transport.stop_reading()
        fake_serial.feed(b"\x01\x02")
        time.sleep(0.1)

        assert collector.data == b""
        assert transport.write(b"\x10") == 1

    def test_set_data_callback(self, transport, fake_serial, collector):
        replacement = ByteCollector()
        transport.set_data_callback(replacement)

        fake_serial.feed(b"\x07")

        assert wait_for(lambda: replacement.data == b"\x07")
        assert collector.data == b""


class TestLineState:
    """Test CTS/DSR notifications."""

    def test_changes_reported(self, vehicle_settings, serial_factory, fake_serial):
        events = []
        transport = SerialTransport.open(
            vehicle_settings,
            on_line_state=lambda signal, state: events.append((signal, state)),
            serial_factory=serial_factory
        )
        try:
            fake_serial.cts = True
            assert wait_for(lambda: (LineSignal.CTS, True) in events)
            fake_serial.dsr = True
            assert wait_for(lambda: (LineSignal.DSR, True) in events)
            fake_serial.cts = False
            assert wait_for(lambda: (LineSignal.CTS, False) in events)
        finally:
            transport.close()

    def test_unchanged_not_reported(self, vehicle_settings, serial_factory):
        events = []
        transport = SerialTransport.open(
            vehicle_settings,
            on_line_state=lambda signal, state: events.append((signal, state)),
            serial_factory=serial_factory
        )
        time.sleep(0.1)
        transport.close()

        assert events == []


class TestWriting:
    """Test the write path."""

    def test_write(self, transport, fake_serial):
        assert transport.write(b"\xfd\x01\x02") == 3
        assert bytes(fake_serial.written) == b"\xfd\x01\x02"
        assert transport.stats.writes == 1
        assert transport.stats.bytes_sent == 3

    def test_submit_order(self, transport, fake_serial):
        futures = [transport.submit(bytes([i])) for i in range(10)]
        for f in futures:
            f.result(timeout=2.0)

        assert bytes(fake_serial.written) == bytes(range(10))

    def test_write_failure(self, transport, fake_serial):
        fake_serial.write_error = serial.SerialTimeoutException("Write timeout")

        with pytest.raises(TransportError):
            transport.write(b"\x01")
        assert transport.stats.write_errors == 1

    def test_submit_failure_in_future(self, transport, fake_serial):
        fake_serial.write_error = serial.SerialException("device disconnected")

        future = transport.submit(b"\x01")

        with pytest.raises(TransportError):
            future.result(timeout=2.0)

    def test_write_after_close(self, transport):
        transport.close()
        with pytest.raises(TransportError):
            transport.write(b"\x01")

    def test_write_before_connect(self, vehicle_settings, serial_factory):
        transport = SerialTransport(vehicle_settings, serial_factory=serial_factory)
        with pytest.raises(TransportError):
            transport.write(b"\x01")


class TestClose:
    """Test closing the transport."""

    def test_close_releases_port(self, transport, fake_serial):
        transport.close()

        assert transport.state == TransportState.CLOSED
        assert not fake_serial.is_open

    def test_close_drains_pending_writes(self, transport, fake_serial):
        futures = [transport.submit(b"\x55") for _ in range(20)]
        transport.close()

        assert all(f.done() for f in futures)
        assert len(fake_serial.written) == 20

    def test_close_without_drain_discards_queued_writes(self, transport, fake_serial):
        started = threading.Event()
        release = threading.Event()

        def hold_first_write(data):
            started.set()
            release.wait(2.0)

        fake_serial.on_write = hold_first_write
        futures = [transport.submit(bytes([n])) for n in range(1, 6)]
        assert started.wait(2.0)

        timer = threading.Timer(0.1, release.set)
        timer.start()
        transport.close(drain=False)
        timer.join()

        assert futures[0].result(timeout=2.0) == 1
        for future in futures[1:]:
            with pytest.raises(TransportError, match="closed before write"):
                future.result(timeout=2.0)
        assert bytes(fake_serial.written) == b"\x01"

    def test_double_close(self, transport, fake_serial):
        transport.close()
        with pytest.raises(TransportError):
            transport.close()

        assert transport.state == TransportState.CLOSED
        assert fake_serial.close_calls == 1

    def test_close_failure(self, transport, fake_serial):
        fake_serial.close_error = serial.SerialException("I/O error")

        with pytest.raises(TransportError):
            transport.close()
        assert transport.state == TransportState.CLOSED

    def test_reconnect_after_close(self, transport):
        transport.close()
        with pytest.raises(ConnectionError):
            transport.connect()


class TestListPorts:
    """Test port enumeration."""

    def test_list_ports(self):
        port_b = Mock(device="/dev/ttyUSB1", description="CP2102", hwid="USB VID:PID=10C4:EA60",
                      manufacturer="Silicon Labs", vid=0x10C4, pid=0xEA60)
        port_a = Mock(device="/dev/ttyACM0", description="ArduPilot", hwid="USB VID:PID=1209:5741",
                      manufacturer=None, vid=0x1209, pid=0x5741)

        with patch("serial.tools.list_ports.comports", return_value=[port_b, port_a]):
            ports = SerialTransport.list_ports()

        assert [p.port for p in ports] == ["/dev/ttyACM0", "/dev/ttyUSB1"]
        assert ports[0] == TransportInfo(
            port="/dev/ttyACM0", description="ArduPilot",
            hardware_id="USB VID:PID=1209:5741", manufacturer="",
            vid=0x1209, pid=0x5741
        )

    def test_port_info_fallback(self, transport):
        with patch("serial.tools.list_ports.comports", return_value=[]):
            info = transport.port_info

        assert info.port == "/dev/ttyUSB0"
