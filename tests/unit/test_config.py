"""
Configuration Tests
Tests for device settings and the configuration manager
"""

import json

import pytest
import serial

from mavbus.communication.dispatch_bus import DispatchMode
from mavbus.communication.worker_pool import OverflowPolicy
from mavbus.models.config_manager import ConfigManager
from mavbus.models.device_settings import (
    DispatchSettings,
    Parity,
    SerialSettings,
)


VALID_CONFIG = {
    "devices": [
        {"name": "VEHICLE_A", "port": "/dev/ttyUSB0", "baud_rate": 57600,
         "data_bits": 8, "stop_bits": 1, "parity": "none"},
        {"name": "VEHICLE_B", "port": "/dev/ttyUSB1", "baud_rate": 115200,
         "parity": 2},
    ],
    "dispatch": {"mode": "sync", "max_workers": 2, "max_queue": 64,
                 "overflow_policy": "drop_oldest"},
}


class TestParity:
    """Test parity parsing."""

    @pytest.mark.parametrize("value,expected", [
        ("none", Parity.NONE),
        ("EVEN", Parity.EVEN),
        (" odd ", Parity.ODD),
        (3, Parity.MARK),
        ("4", Parity.SPACE),
        (Parity.EVEN, Parity.EVEN),
    ])
    def test_parse(self, value, expected):
        assert Parity.parse(value) is expected

    @pytest.mark.parametrize("value", ["sideways", 7])
    def test_parse_invalid(self, value):
        with pytest.raises(ValueError):
            Parity.parse(value)

    def test_pyserial_mapping(self):
        assert Parity.NONE.to_pyserial() == serial.PARITY_NONE
        assert Parity.MARK.to_pyserial() == serial.PARITY_MARK


class TestSerialSettings:
    """Test SerialSettings."""

    def test_defaults(self):
        settings = SerialSettings.from_dict({"name": "VEHICLE_A", "port": "COM3"})

        assert settings.baud_rate == 57600
        assert settings.data_bits == 8
        assert settings.stop_bits == 1
        assert settings.parity is Parity.NONE

    def test_to_dict(self):
        settings = SerialSettings.from_dict(VALID_CONFIG["devices"][1])
        data = settings.to_dict()

        assert data["name"] == "VEHICLE_B"
        assert data["parity"] == "even"
        assert SerialSettings.from_dict(data) == settings

    def test_missing_port(self):
        with pytest.raises(KeyError):
            SerialSettings.from_dict({"name": "VEHICLE_A"})

    def test_validate(self):
        settings = SerialSettings("VEHICLE_A", "COM3", baud_rate=0, data_bits=9, stop_bits=3)
        is_valid, errors = settings.validate()

        assert not is_valid
        assert len(errors) == 3

    def test_serial_kwargs(self):
        settings = SerialSettings("VEHICLE_A", "COM3", baud_rate=921600,
                                  stop_bits=1.5, parity=Parity.ODD)
        kwargs = settings.serial_kwargs()

        assert kwargs["baudrate"] == 921600
        assert kwargs["stopbits"] == serial.STOPBITS_ONE_POINT_FIVE
        assert kwargs["parity"] == serial.PARITY_ODD


class TestDispatchSettings:
    """Test DispatchSettings."""

    def test_defaults(self):
        settings = DispatchSettings.from_dict({})

        assert settings.mode is DispatchMode.ASYNC
        assert settings.overflow_policy is OverflowPolicy.BLOCK

    def test_from_dict(self):
        settings = DispatchSettings.from_dict(VALID_CONFIG["dispatch"])

        assert settings.mode is DispatchMode.SYNC
        assert settings.max_workers == 2
        assert settings.overflow_policy is OverflowPolicy.DROP_OLDEST
        assert settings.to_dict() == VALID_CONFIG["dispatch"]

    def test_unknown_mode(self):
        with pytest.raises(ValueError):
            DispatchSettings.from_dict({"mode": "parallel"})


class TestConfigManager:
    """Test ConfigManager."""

    @pytest.fixture
    def manager(self):
        return ConfigManager()

    def test_load_from_dict(self, manager):
        success, error = manager.load_from_dict(VALID_CONFIG)

        assert success, error
        assert manager.get_device_names() == ["VEHICLE_A", "VEHICLE_B"]
        assert manager.get_device("VEHICLE_B").parity is Parity.EVEN
        assert manager.get_device("VEHICLE_C") is None
        assert manager.get_dispatch_settings().mode is DispatchMode.SYNC

    def test_load_from_file(self, manager, tmp_path):
        path = tmp_path / "devices.json"
        path.write_text(json.dumps(VALID_CONFIG))

        success, error = manager.load_from_file(str(path))

        assert success, error
        assert manager.current_file == path
        assert len(manager.get_devices()) == 2

    def test_file_not_found(self, manager, tmp_path):
        success, error = manager.load_from_file(str(tmp_path / "missing.json"))

        assert not success
        assert "not found" in error

    def test_invalid_json(self, manager, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text('{"devices": [')

        success, error = manager.load_from_file(str(path))

        assert not success
        assert "Invalid JSON" in error

    def test_duplicate_names(self, manager):
        config = {"devices": [
            {"name": "VEHICLE_A", "port": "/dev/ttyUSB0"},
            {"name": "VEHICLE_A", "port": "/dev/ttyUSB1"},
        ]}
        success, error = manager.load_from_dict(config)

        assert not success
        assert "Duplicate device name" in error

    def test_invalid_entry_keeps_previous(self, manager):
        manager.load_from_dict(VALID_CONFIG)

        success, error = manager.load_from_dict({"devices": [{"name": "X"}]})

        assert not success
        assert "missing required field" in error
        assert manager.get_device_names() == ["VEHICLE_A", "VEHICLE_B"]

    def test_invalid_dispatch(self, manager):
        success, error = manager.load_from_dict({
            "devices": [], "dispatch": {"max_workers": 0, "overflow_policy": "block"}
        })

        assert not success
        assert "max_workers" in error

    def test_validate_config(self, manager):
        manager.load_from_dict(VALID_CONFIG)
        assert manager.validate_config() == (True, [])

        manager.config["devices"][0]["data_bits"] = 4
        is_valid, errors = manager.validate_config()
        assert not is_valid
        assert "data bits" in errors[0]

    def test_save_and_reload(self, manager, tmp_path):
        manager.load_from_dict(VALID_CONFIG)
        path = tmp_path / "out" / "devices.json"

        assert manager.save_to_file(str(path))

        reloaded = ConfigManager()
        assert reloaded.load_from_file(str(path)) == (True, None)
        assert reloaded.get_devices() == manager.get_devices()

    def test_save_without_path(self, manager):
        assert not manager.save_to_file()
