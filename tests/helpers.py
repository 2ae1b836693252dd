"""Fakes standing in for bleak and the terminal in hm-remote tests."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace

from hm_remote.exception import DeviceCommunicationError


def make_advertisement(
    address: str,
    name: str | None = None,
    rssi: int = -60,
    service_uuids: list[str] | None = None,
):
    """Return a (device, advertisement) pair like bleak's callback args."""
    device = SimpleNamespace(address=address, name=name)
    advertisement = SimpleNamespace(
        local_name=name, rssi=rssi, service_uuids=service_uuids or []
    )
    return device, advertisement


def make_scanner_class(advertisements=(), start_error=None):
    """Build a BleakScanner stand-in that replays advertisements."""

    class FakeScanner:
        instances: list = []

        def __init__(self, detection_callback=None, service_uuids=None):
            self.detection_callback = detection_callback
            self.service_uuids = service_uuids
            self.started = False
            self.stopped = False
            FakeScanner.instances.append(self)

        async def start(self):
            if start_error is not None:
                raise start_error
            self.started = True
            for device, advertisement in advertisements:
                self.detection_callback(device, advertisement)

        async def stop(self):
            self.stopped = True

    return FakeScanner


class FakeSession:
    """In-memory session with scripted replies."""

    def __init__(self, replies: dict[str, list[bytes]] | None = None):
        self.address = "AA:BB:CC:DD:EE:FF"
        self.label = "AA:BB:CC:DD:EE:FF HMSoft"
        self.replies = replies or {}
        self.sent: list[str] = []
        self.fail_writes = 0
        self.link_up = True
        self.closed = False
        self.notifications: asyncio.Queue[bytes] = asyncio.Queue()
        self.disconnected = asyncio.Event()

    @property
    def is_connected(self) -> bool:
        return self.link_up and not self.disconnected.is_set()

    async def next_notification(self) -> bytes:
        return await self.notifications.get()

    def pending_notifications(self) -> list[bytes]:
        payloads = []
        while not self.notifications.empty():
            payloads.append(self.notifications.get_nowait())
        return payloads

    async def wait_disconnected(self) -> None:
        await self.disconnected.wait()

    async def send_line(self, line: str) -> None:
        if self.fail_writes:
            self.fail_writes -= 1
            raise DeviceCommunicationError("Write failed: boom")
        self.sent.append(line)
        for reply in self.replies.get(line, []):
            self.notifications.put_nowait(reply)

    async def close(self) -> None:
        self.closed = True
        self.disconnected.set()


class ScriptedReader:
    """Line reader that returns scripted lines and honours resume()."""

    def __init__(self, lines):
        self.lines = list(lines)
        self.started = False
        self.stopped = False
        self._resumed = asyncio.Event()
        self._waiting = False

    def start(self) -> None:
        self.started = True

    async def readline(self):
        if self._waiting:
            await self._resumed.wait()
            self._resumed.clear()
        self._waiting = True
        if not self.lines:
            return None
        item = self.lines.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    def resume(self) -> None:
        self._resumed.set()

    def stop(self) -> None:
        self.stopped = True


class BlockingReader(ScriptedReader):
    """Reader that never produces a line."""

    def __init__(self):
        super().__init__([])

    async def readline(self):
        await asyncio.Event().wait()

