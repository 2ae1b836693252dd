"""Exceptions module."""


class HMRemoteError(Exception):
    """Base class for errors reported to the user."""

    exit_code = 1


class AdapterError(HMRemoteError):
    """Raised when no usable Bluetooth adapter is available."""

    exit_code = 3


class BluetoothPermissionError(HMRemoteError, PermissionError):
    """Raised when the host denies access to Bluetooth."""

    exit_code = 4


class ConnectError(HMRemoteError):
    """Raised when a connection cannot be established."""

    exit_code = 5


class InvalidAddressError(ConnectError):
    """Raised when a device address cannot be parsed."""


class SessionBusyError(ConnectError):
    """Raised when a session is already open in this process."""


class ProfileError(HMRemoteError):
    """Raised when the serial characteristic is missing."""

    exit_code = 6


class ConsoleIOError(HMRemoteError):
    """Raised on terminal or BLE I/O failures."""

    exit_code = 7


class DeviceCommunicationError(ConsoleIOError):
    """Raised when writing to the device fails."""


class TerminalIOError(ConsoleIOError):
    """Raised when reading from the terminal fails."""
