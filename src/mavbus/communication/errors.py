"""
MAVLink Link Errors

Exception hierarchy shared by the transport, decoder and dispatch layers.
"""


class MavBusError(Exception):
    """Base exception for all link errors."""
    pass


class ConnectionError(MavBusError):
    """Serial port could not be opened or configured."""
    pass


class TransportError(MavBusError):
    """Write or close failure on an open transport."""
    pass


class DecodeError(MavBusError):
    """Frame has a valid outer structure but its payload cannot be unpacked."""
    pass


class BusClosedError(MavBusError):
    """Operation attempted after the bus or transport was closed."""
    pass


class ConfigError(MavBusError):
    """Invalid configuration file or device entry."""
    pass
