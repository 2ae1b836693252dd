"""Connection to an HM serial module."""

from __future__ import annotations

import asyncio
import logging
import re
import uuid

from bleak import BleakScanner
from bleak.backends.characteristic import BleakGATTCharacteristic
from bleak.backends.device import BLEDevice
from bleak.backends.service import BleakGATTServiceCollection
from bleak.exc import BleakError
from bleak_retry_connector import BLEAK_RETRY_EXCEPTIONS as BLEAK_EXCEPTIONS
from bleak_retry_connector import (
    BleakClientWithServiceCache,
    BleakNotFoundError,
    establish_connection,
)

from .const import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_CONNECT_ATTEMPTS,
    DEFAULT_CONNECT_TIMEOUT,
    HM_SERIAL_CHAR_UUID,
    UNNAMED_DEVICE,
    LineEnding,
)
from .exception import (
    ConnectError,
    DeviceCommunicationError,
    InvalidAddressError,
    ProfileError,
    SessionBusyError,
)
from .framing import chunk_payload, encode_line
from .scanner import classify_bluetooth_error

_MAC_ADDRESS = re.compile(r"^[0-9A-F]{2}([:-][0-9A-F]{2}){5}$")

_active_session: Session | None = None


def normalize_address(address: str) -> str:
    """Validate a device address and return its canonical form.

    Accepts MAC addresses (``AA:BB:CC:DD:EE:FF`` or with ``-``) and the
    UUIDs CoreBluetooth uses in place of addresses on macOS.

    Raises:
        InvalidAddressError: If the address matches neither form
    """
    candidate = address.strip().upper()
    if _MAC_ADDRESS.match(candidate):
        return candidate.replace("-", ":")
    try:
        return str(uuid.UUID(candidate)).upper()
    except ValueError:
        pass
    raise InvalidAddressError(f"Invalid device address: '{address}'")


def active_session() -> Session | None:
    """Return the session currently open in this process, if any."""
    return _active_session


class Session:
    """An open connection to one HM module.

    The serial characteristic is used both to subscribe to notifications
    and to write commands. Received payloads are queued in arrival order.
    """

    def __init__(
        self,
        ble_device: BLEDevice,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        line_ending: LineEnding = LineEnding.NONE,
    ) -> None:
        """Create an unconnected session for ``ble_device``."""
        self._ble_device = ble_device
        self._logger = logging.getLogger(ble_device.address.replace(":", "-"))
        self._client: BleakClientWithServiceCache | None = None
        self._serial_char: BleakGATTCharacteristic | None = None
        self._operation_lock = asyncio.Lock()
        self._expected_disconnect = False
        self._disconnected = asyncio.Event()
        self._notifications: asyncio.Queue[bytes] = asyncio.Queue()
        self.chunk_size = chunk_size
        self.line_ending = line_ending

    @property
    def address(self) -> str:
        """Return the address."""
        return self._ble_device.address

    @property
    def name(self) -> str:
        """Get the name of the device."""
        return self._ble_device.name or self.address

    @property
    def label(self) -> str:
        """Address followed by the advertised name, if any."""
        return f"{self.address} {self._ble_device.name or UNNAMED_DEVICE}"

    @property
    def is_connected(self) -> bool:
        """Return True while the link is up."""
        return (
            self._client is not None
            and self._client.is_connected
            and not self._disconnected.is_set()
        )

    # Connection lifecycle

    async def open(
        self,
        timeout: float = DEFAULT_CONNECT_TIMEOUT,
        attempts: int = DEFAULT_CONNECT_ATTEMPTS,
    ) -> None:
        """Connect, resolve the serial characteristic and subscribe.

        Raises:
            ConnectError: If the device cannot be reached in time
            ProfileError: If the serial characteristic is missing
        """
        self._logger.debug("%s: Connecting", self.name)
        try:
            client = await asyncio.wait_for(
                establish_connection(
                    BleakClientWithServiceCache,
                    self._ble_device,
                    self.name,
                    self._on_disconnected,
                    max_attempts=attempts,
                    use_services_cache=True,
                    ble_device_callback=lambda: self._ble_device,
                ),
                timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ConnectError(
                f"Timed out connecting to {self.address} after {timeout:.1f}s"
            ) from exc
        except BleakNotFoundError as exc:
            raise ConnectError(
                f"Device {self.address} is unreachable: {exc}"
            ) from exc
        except (BleakError, OSError) as exc:
            raise classify_bluetooth_error(exc, ConnectError) from exc
        self._logger.debug("%s: Connected", self.name)

        if not self._resolve_characteristics(client.services):
            self._expected_disconnect = True
            await self._execute_disconnect(client)
            raise ProfileError("Device is not a HM device")

        self._client = client
        self._logger.debug("%s: Subscribe to notifications", self.name)
        try:
            await client.start_notify(
                self._serial_char,  # type: ignore[arg-type]
                self._notification_handler,
            )
        except BLEAK_EXCEPTIONS as exc:
            await self.close()
            raise classify_bluetooth_error(exc, ConnectError) from exc

    def _resolve_characteristics(
        self, services: BleakGATTServiceCollection
    ) -> bool:
        """Resolve characteristics."""
        self._serial_char = services.get_characteristic(HM_SERIAL_CHAR_UUID)
        return self._serial_char is not None

    async def close(self) -> None:
        """Unsubscribe and disconnect; safe to call more than once."""
        global _active_session

        client = self._client
        serial_char = self._serial_char
        self._expected_disconnect = True
        self._client = None
        self._serial_char = None
        if _active_session is self:
            _active_session = None
        if client and client.is_connected:
            self._logger.debug("%s: Disconnecting", self.name)
            if serial_char:
                try:
                    await client.stop_notify(serial_char)
                except BleakError:
                    self._logger.debug(
                        "%s: Failed to stop notifications",
                        self.name,
                        exc_info=True,
                    )
            await self._execute_disconnect(client)
        self._disconnected.set()

    async def _execute_disconnect(
        self, client: BleakClientWithServiceCache
    ) -> None:
        """Disconnect, logging failures instead of raising them."""
        try:
            await client.disconnect()
        except BleakError:
            self._logger.debug(
                "%s: Failed to disconnect", self.name, exc_info=True
            )

    # Callbacks

    def _notification_handler(
        self, _sender: BleakGATTCharacteristic, data: bytearray
    ) -> None:
        """Queue a notification payload."""
        self._logger.debug(
            "%s: Notification received: %s", self.name, data.hex()
        )
        self._notifications.put_nowait(bytes(data))

    def _on_disconnected(self, client: BleakClientWithServiceCache) -> None:
        """Disconnected callback."""
        if self._expected_disconnect:
            self._logger.debug("%s: Disconnected from device", self.name)
        else:
            self._logger.warning(
                "%s: Device unexpectedly disconnected", self.name
            )
        self._disconnected.set()

    # I/O

    async def next_notification(self) -> bytes:
        """Wait for the next notification payload."""
        return await self._notifications.get()

    def pending_notifications(self) -> list[bytes]:
        """Take every payload already received, in arrival order."""
        payloads = []
        while not self._notifications.empty():
            payloads.append(self._notifications.get_nowait())
        return payloads

    async def wait_disconnected(self) -> None:
        """Wait until the link goes down."""
        await self._disconnected.wait()

    async def send(self, payload: bytes) -> None:
        """Write a payload in chunks that fit a single GATT write.

        Raises:
            DeviceCommunicationError: If the device is not connected or the
                write fails
        """
        client = self._client
        serial_char = self._serial_char
        if client is None or serial_char is None or not self.is_connected:
            raise DeviceCommunicationError(f"{self.address} is not connected")
        response = "write-without-response" not in serial_char.properties
        self._logger.debug("%s: Sending %s", self.name, payload.hex())
        async with self._operation_lock:
            try:
                for chunk in chunk_payload(payload, self.chunk_size):
                    await client.write_gatt_char(serial_char, chunk, response)
            except BLEAK_EXCEPTIONS as exc:
                raise DeviceCommunicationError(f"Write failed: {exc}") from exc

    async def send_line(self, line: str) -> None:
        """Frame a console line and send it."""
        await self.send(encode_line(line, self.line_ending))


async def connect(
    address: str,
    *,
    timeout: float = DEFAULT_CONNECT_TIMEOUT,
    attempts: int = DEFAULT_CONNECT_ATTEMPTS,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    line_ending: LineEnding = LineEnding.NONE,
) -> Session:
    """Locate a device by address and open a session to it.

    Raises:
        InvalidAddressError: If the address is malformed
        SessionBusyError: If another session is already open
        ConnectError: If the device is not found or cannot be connected
        ProfileError: If the device lacks the HM serial characteristic
    """
    global _active_session

    address = normalize_address(address)
    if _active_session is not None:
        raise SessionBusyError(
            f"A session to {_active_session.address} is already open"
        )

    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    try:
        ble_device = await BleakScanner.find_device_by_address(
            address, timeout=timeout
        )
    except (BleakError, OSError) as exc:
        raise classify_bluetooth_error(exc) from exc
    if ble_device is None:
        raise ConnectError(
            f"Device {address} not found within {timeout:.1f}s"
        )

    if _active_session is not None:
        raise SessionBusyError(
            f"A session to {_active_session.address} is already open"
        )
    session = Session(
        ble_device, chunk_size=chunk_size, line_ending=line_ending
    )
    _active_session = session
    try:
        await session.open(
            timeout=max(deadline - loop.time(), 1.0), attempts=attempts
        )
    except BaseException:
        if _active_session is session:
            _active_session = None
        raise
    return session
