"""
Device Configuration Manager

Loads and validates JSON device configuration files:

    {
      "devices": [
        {"name": "VEHICLE_A", "port": "/dev/ttyUSB0", "baud_rate": 57600,
         "data_bits": 8, "stop_bits": 1, "parity": "none"}
      ],
      "dispatch": {"mode": "async", "max_workers": 4, "max_queue": 1024,
                   "overflow_policy": "block"}
    }
"""

import json
import logging
from pathlib import Path
from typing import Dict, Any, Optional, Tuple, List

from .device_settings import SerialSettings, DispatchSettings

logger = logging.getLogger(__name__)


def create_default_config() -> Dict[str, Any]:
    """Empty configuration with default dispatch settings."""
    return {
        "devices": [],
        "dispatch": DispatchSettings().to_dict(),
    }


class ConfigManager:
    """Manages device configuration files (JSON format)"""

    def __init__(self):
        self.config: Dict[str, Any] = create_default_config()
        self.current_file: Optional[Path] = None
        self._devices: List[SerialSettings] = []
        self._dispatch = DispatchSettings()

    def get_config(self) -> Dict[str, Any]:
        """Get current configuration"""
        return self.config

    def load_from_file(self, filepath: str) -> Tuple[bool, Optional[str]]:
        """
        Load configuration from JSON file with validation

        Args:
            filepath: Path to JSON configuration file

        Returns:
            Tuple[bool, Optional[str]]: (success, error_message)
        """
        path = Path(filepath)

        if not path.exists():
            error_msg = f"Configuration file not found: {filepath}"
            logger.error(error_msg)
            return False, error_msg

        try:
            with open(path, 'r', encoding='utf-8') as f:
                loaded_config = json.load(f)

        except json.JSONDecodeError as e:
            error_msg = (
                f"Invalid JSON format in configuration file: "
                f"line {e.lineno}, column {e.colno}: {e.msg}"
            )
            logger.error(f"JSON decode error: {e}")
            return False, error_msg

        except OSError as e:
            error_msg = f"Failed to read configuration: {e}"
            logger.error(error_msg)
            return False, error_msg

        success, error_msg = self.load_from_dict(loaded_config)
        if success:
            self.current_file = path
            logger.info(f"Loaded configuration from: {filepath}")
        return success, error_msg

    def load_from_dict(self, config_dict: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
        """
        Load configuration from dictionary.

        The current configuration is kept if the new one is invalid.

        Args:
            config_dict: Configuration dictionary

        Returns:
            Tuple[bool, Optional[str]]: (success, error_message)
        """
        if not isinstance(config_dict, dict):
            error_msg = "Configuration must be a JSON object"
            logger.error(error_msg)
            return False, error_msg

        devices, dispatch, errors = self._parse(config_dict)
        if errors:
            error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
            logger.error(error_msg)
            return False, error_msg

        self.config = {
            "devices": [d.to_dict() for d in devices],
            "dispatch": dispatch.to_dict(),
        }
        self._devices = devices
        self._dispatch = dispatch
        self.current_file = None

        logger.info(f"Configuration loaded: {len(devices)} device(s)")
        return True, None

    def save_to_file(self, filepath: Optional[str] = None) -> bool:
        """
        Save configuration to JSON file

        Args:
            filepath: Path to save to (uses current_file if None)

        Returns:
            True if saved successfully, False otherwise
        """
        if filepath:
            path = Path(filepath)
        elif self.current_file:
            path = self.current_file
        else:
            logger.error("No filepath specified")
            return False

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, 'w', encoding='utf-8') as f:
                json.dump(self.config, f, indent=2, ensure_ascii=False)
        except OSError as e:
            logger.error(f"Failed to save configuration: {e}")
            return False

        self.current_file = path
        logger.info(f"Saved configuration to: {path}")
        return True

    # ========== Accessors ==========

    def get_devices(self) -> List[SerialSettings]:
        """All configured devices, in file order."""
        return list(self._devices)

    def get_device(self, name: str) -> Optional[SerialSettings]:
        """Get a device by name, or None."""
        for device in self._devices:
            if device.device_name == name:
                return device
        return None

    def get_device_names(self) -> List[str]:
        return [d.device_name for d in self._devices]

    def get_dispatch_settings(self) -> DispatchSettings:
        return self._dispatch

    # ========== Validation ==========

    def validate_config(self) -> Tuple[bool, List[str]]:
        """
        Validate current configuration

        Returns:
            Tuple of (is_valid, list_of_errors)
        """
        _, _, errors = self._parse(self.config)
        return len(errors) == 0, errors

    @staticmethod
    def _parse(config: Dict[str, Any]) -> Tuple[List[SerialSettings], DispatchSettings, List[str]]:
        errors: List[str] = []
        devices: List[SerialSettings] = []

        entries = config.get("devices", [])
        if not isinstance(entries, list):
            errors.append("'devices' must be a list")
            entries = []

        seen = set()
        for index, entry in enumerate(entries):
            if not isinstance(entry, dict):
                errors.append(f"devices[{index}]: entry must be an object")
                continue
            try:
                device = SerialSettings.from_dict(entry)
            except KeyError as e:
                errors.append(f"devices[{index}]: missing required field {e}")
                continue
            except (TypeError, ValueError) as e:
                errors.append(f"devices[{index}]: {e}")
                continue

            _, device_errors = device.validate()
            errors.extend(device_errors)

            if device.device_name in seen:
                errors.append(f"Duplicate device name: {device.device_name}")
            seen.add(device.device_name)
            devices.append(device)

        dispatch = DispatchSettings()
        section = config.get("dispatch", {})
        if not isinstance(section, dict):
            errors.append("'dispatch' must be an object")
        else:
            try:
                dispatch = DispatchSettings.from_dict(section)
            except (TypeError, ValueError) as e:
                errors.append(f"dispatch: {e}")
            else:
                errors.extend(f"dispatch: {e}" for e in dispatch.validate()[1])

        return devices, dispatch, errors
