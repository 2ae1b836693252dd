"""Tests for BLE scanning."""

import asyncio
import contextlib
import time

import pytest
from bleak.exc import BleakDBusError, BleakError

from helpers import make_advertisement, make_scanner_class
from hm_remote import scanner as scanner_mod
from hm_remote.const import HM_SERVICE_UUID
from hm_remote.exception import (
    AdapterError,
    BluetoothPermissionError,
    ConnectError,
)
from hm_remote.scanner import Device, classify_bluetooth_error, scan

ADVERTISEMENTS = [
    make_advertisement("00:15:83:00:6A:1B", "HMSoft", -55),
    make_advertisement("11:22:33:44:55:66", None, -80),
    make_advertisement("00:15:83:00:6A:1B", "HMSoft", -50),
]


async def _collect(results):
    return [device async for device in results]


@pytest.mark.asyncio
async def test_scan_yields_every_observation(monkeypatch):
    """Each advertisement becomes a Device, duplicates included."""
    fake = make_scanner_class(ADVERTISEMENTS)
    monkeypatch.setattr(scanner_mod, "BleakScanner", fake)

    devices = await _collect(scan(0.05))

    assert [d.address for d in devices] == [
        "00:15:83:00:6A:1B",
        "11:22:33:44:55:66",
        "00:15:83:00:6A:1B",
    ]
    assert devices[0] == Device("00:15:83:00:6A:1B", "HMSoft", -55, ())
    assert devices[2].rssi == -50
    assert fake.instances[0].stopped


@pytest.mark.asyncio
async def test_scan_ends_after_duration_without_devices(monkeypatch):
    """A silent scan still finishes within its duration."""
    monkeypatch.setattr(scanner_mod, "BleakScanner", make_scanner_class())

    started = time.monotonic()
    devices = await asyncio.wait_for(_collect(scan(0.1)), timeout=2.0)

    assert devices == []
    assert time.monotonic() - started < 1.0


@pytest.mark.asyncio
async def test_scan_is_restartable(monkeypatch):
    """Iterating again starts a new scan with the same results."""
    fake = make_scanner_class(ADVERTISEMENTS[:2])
    monkeypatch.setattr(scanner_mod, "BleakScanner", fake)
    results = scan(0.05)

    first = await _collect(results)
    second = await _collect(results)

    assert first == second
    assert len(fake.instances) == 2
    assert all(instance.stopped for instance in fake.instances)


@pytest.mark.asyncio
async def test_scan_stops_scanner_on_early_exit(monkeypatch):
    """Breaking out of the iteration still stops the scanner."""
    fake = make_scanner_class(ADVERTISEMENTS)
    monkeypatch.setattr(scanner_mod, "BleakScanner", fake)

    async with contextlib.aclosing(aiter(scan(5.0))) as observations:
        async for _device in observations:
            break

    assert fake.instances[0].stopped


@pytest.mark.asyncio
async def test_scan_passes_service_filter(monkeypatch):
    """The service filter reaches the underlying scanner."""
    fake = make_scanner_class()
    monkeypatch.setattr(scanner_mod, "BleakScanner", fake)

    await _collect(scan(0.01, service_uuids=[HM_SERVICE_UUID]))

    assert fake.instances[0].service_uuids == [HM_SERVICE_UUID]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (BleakError("Bluetooth device is turned off"), AdapterError),
        (BleakError("No Bluetooth adapters found."), AdapterError),
        (FileNotFoundError("/run/dbus/system_bus_socket"), AdapterError),
        (PermissionError("Operation not permitted"), BluetoothPermissionError),
        (
            BleakDBusError("org.freedesktop.DBus.Error.AccessDenied", []),
            BluetoothPermissionError,
        ),
        (BleakDBusError("org.bluez.Error.NotReady", []), AdapterError),
    ],
)
async def test_scan_start_failures_are_classified(
    monkeypatch, error, expected
):
    """Adapter and permission problems surface as hm-remote errors."""
    monkeypatch.setattr(
        scanner_mod, "BleakScanner", make_scanner_class(start_error=error)
    )

    with pytest.raises(expected):
        await _collect(scan(0.05))


def test_permission_error_is_builtin_permission_error():
    """The permission error can be caught as the builtin type."""
    error = classify_bluetooth_error(PermissionError("denied"))
    assert isinstance(error, PermissionError)


def test_classify_uses_default_for_unknown_errors():
    """Unrecognised errors are wrapped in the requested default."""
    error = classify_bluetooth_error(BleakError("boom"), ConnectError)
    assert type(error) is ConnectError
    assert str(error) == "boom"


def test_device_label_and_advertised_name():
    """Labels fall back to <Unnamed>; advertised names win over cache."""
    device, advertisement = make_advertisement("AA:BB:CC:DD:EE:FF", None)
    device.name = "cached"
    advertisement.local_name = "HMSoft"
    record = Device.from_advertisement(device, advertisement)

    assert record.label == "AA:BB:CC:DD:EE:FF HMSoft"
    assert Device("AA:BB:CC:DD:EE:FF").label == "AA:BB:CC:DD:EE:FF <Unnamed>"


def test_negative_duration_rejected():
    """A negative duration is refused up front."""
    with pytest.raises(ValueError):
        scan(-1)
