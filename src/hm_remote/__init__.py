"""Remote AT console for HM series BLE devices."""

from .exception import (
    AdapterError,
    BluetoothPermissionError,
    ConnectError,
    ConsoleIOError,
    HMRemoteError,
    ProfileError,
)

__version__ = "0.1"

__all__ = [
    "AdapterError",
    "BluetoothPermissionError",
    "ConnectError",
    "ConsoleIOError",
    "HMRemoteError",
    "ProfileError",
    "__version__",
]
