"""BLE advertisement scanning."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Sequence, Type

from bleak import BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.exc import BleakDBusError, BleakError

from .const import DEFAULT_SCAN_TIMEOUT, UNNAMED_DEVICE
from .exception import AdapterError, BluetoothPermissionError, HMRemoteError

logger = logging.getLogger(__name__)

_PERMISSION_DBUS_ERRORS = {
    "org.freedesktop.DBus.Error.AccessDenied",
    "org.bluez.Error.NotAuthorized",
    "org.bluez.Error.NotPermitted",
}
_ADAPTER_DBUS_ERRORS = {
    "org.bluez.Error.NotReady",
    "org.freedesktop.DBus.Error.ServiceUnknown",
    "org.freedesktop.DBus.Error.NoReply",
}
_PERMISSION_HINTS = ("permission", "denied", "not authorized", "unauthorized")
_ADAPTER_HINTS = (
    "adapter",
    "turned off",
    "powered off",
    "not available",
    "no bluetooth",
    "bluetooth is off",
)


def classify_bluetooth_error(
    exc: BaseException,
    default: Type[HMRemoteError] = AdapterError,
) -> HMRemoteError:
    """Translate a bleak or OS error into an hm-remote error.

    Permission problems are detected first; anything that looks like a
    missing or disabled adapter becomes AdapterError; everything else is
    wrapped in ``default``.
    """
    if isinstance(exc, HMRemoteError):
        return exc
    if isinstance(exc, PermissionError):
        return BluetoothPermissionError(f"Bluetooth access denied: {exc}")
    if isinstance(exc, BleakDBusError):
        if exc.dbus_error in _PERMISSION_DBUS_ERRORS:
            return BluetoothPermissionError(f"Bluetooth access denied: {exc}")
        if exc.dbus_error in _ADAPTER_DBUS_ERRORS:
            return AdapterError(f"Bluetooth adapter not ready: {exc}")
    if isinstance(exc, FileNotFoundError):
        # BlueZ D-Bus socket is absent.
        return AdapterError(f"Bluetooth stack unavailable: {exc}")

    message = str(exc).lower()
    if any(hint in message for hint in _PERMISSION_HINTS):
        return BluetoothPermissionError(f"Bluetooth access denied: {exc}")
    if any(hint in message for hint in _ADAPTER_HINTS):
        return AdapterError(f"Cannot use bluetooth adapter: {exc}")
    return default(str(exc) or exc.__class__.__name__)


@dataclass(frozen=True, slots=True)
class Device:
    """A peripheral observed while scanning."""

    address: str
    name: str | None = None
    rssi: int | None = None
    service_uuids: tuple[str, ...] = ()

    @classmethod
    def from_advertisement(
        cls, device: BLEDevice, advertisement: AdvertisementData | None
    ) -> Device:
        """Build a record from a bleak detection callback."""
        if advertisement is None:
            return cls(address=device.address, name=device.name)
        return cls(
            address=device.address,
            name=advertisement.local_name or device.name,
            rssi=advertisement.rssi,
            service_uuids=tuple(advertisement.service_uuids),
        )

    @property
    def label(self) -> str:
        """Address followed by the advertised name."""
        return f"{self.address} {self.name or UNNAMED_DEVICE}"


class Scan:
    """Finite, lazily produced sequence of scan observations.

    Each ``async for`` starts a new scan that runs for ``duration`` seconds
    and yields a Device for every advertisement received. Devices are not
    de-duplicated.
    """

    def __init__(
        self,
        duration: float = DEFAULT_SCAN_TIMEOUT,
        service_uuids: Sequence[str] | None = None,
    ) -> None:
        """Create a scan description; nothing starts until iteration."""
        if duration < 0:
            raise ValueError(f"Scan duration must be >= 0, got {duration}")
        self.duration = duration
        self.service_uuids = list(service_uuids) if service_uuids else None

    def __aiter__(self) -> AsyncIterator[Device]:
        return self._run()

    async def _run(self) -> AsyncIterator[Device]:
        queue: asyncio.Queue[Device] = asyncio.Queue()

        def _detected(
            device: BLEDevice, advertisement: AdvertisementData
        ) -> None:
            queue.put_nowait(Device.from_advertisement(device, advertisement))

        scanner = BleakScanner(
            detection_callback=_detected, service_uuids=self.service_uuids
        )
        logger.debug("Starting scan for %.1fs", self.duration)
        try:
            await scanner.start()
        except (BleakError, OSError) as exc:
            raise classify_bluetooth_error(exc) from exc

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.duration
        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                try:
                    device = await asyncio.wait_for(queue.get(), remaining)
                except asyncio.TimeoutError:
                    break
                yield device
        finally:
            logger.debug("Stopping scan")
            try:
                await scanner.stop()
            except BleakError:
                logger.debug("Failed to stop scanner", exc_info=True)


def scan(
    duration: float = DEFAULT_SCAN_TIMEOUT,
    *,
    service_uuids: Sequence[str] | None = None,
) -> Scan:
    """Scan for BLE peripherals for ``duration`` seconds."""
    return Scan(duration, service_uuids=service_uuids)
