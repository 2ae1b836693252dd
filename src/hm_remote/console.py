"""Interactive AT console relaying terminal lines over a session."""

from __future__ import annotations

import asyncio
import logging
import threading
from enum import Enum, auto
from typing import Callable, Protocol

from rich.console import Console as RichConsole
from rich.text import Text

from .const import DEFAULT_WRITE_DELAY
from .exception import DeviceCommunicationError, TerminalIOError
from .framing import decode_notification, is_quit, validate_command
from .session import Session

logger = logging.getLogger(__name__)


class ConsoleState(Enum):
    """Console lifecycle states."""

    CONNECTED = auto()
    DISCONNECTED = auto()


class DisconnectReason(Enum):
    """Why the console left the connected state."""

    USER_QUIT = auto()
    CONNECTION_LOST = auto()


class LineReader(Protocol):
    """Source of terminal lines for the console."""

    def start(self) -> None:
        """Begin reading lines."""
        ...

    async def readline(self) -> str | None:
        """Return the next line, or None at end of input."""
        ...

    def resume(self) -> None:
        """Allow the next prompt once the previous line is handled."""
        ...

    def stop(self) -> None:
        """Stop reading lines."""
        ...


class PromptReader:
    """Read terminal lines on a daemon thread.

    ``input()`` blocks and cannot be cancelled, so it runs on its own
    thread and posts each line into the event loop. After a line is
    posted the thread waits for ``resume()`` before prompting again so
    device responses print before the next prompt.
    """

    def __init__(
        self,
        prompt: str = "> ",
        read: Callable[[str], str] = input,
    ) -> None:
        """Create a reader that calls ``read(prompt)`` for each line."""
        self._prompt = prompt
        self._read = read
        self._queue: asyncio.Queue[str | None | BaseException] = (
            asyncio.Queue()
        )
        self._resume = threading.Event()
        self._stopped = threading.Event()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        """Start the prompt thread; must be called from the event loop."""
        self._loop = asyncio.get_running_loop()
        self._thread = threading.Thread(
            target=self._run, name="hm-remote-prompt", daemon=True
        )
        self._thread.start()

    def _post(self, item: str | None | BaseException) -> bool:
        loop = self._loop
        if loop is None or loop.is_closed() or self._stopped.is_set():
            return False
        try:
            loop.call_soon_threadsafe(self._queue.put_nowait, item)
        except RuntimeError:
            # Loop closed between the check and the call.
            return False
        return True

    def _run(self) -> None:
        while not self._stopped.is_set():
            try:
                line: str | None = self._read(self._prompt)
            except EOFError:
                line = None
            except (OSError, ValueError) as exc:
                self._post(exc)
                return
            if not self._post(line) or line is None:
                return
            self._resume.wait()
            self._resume.clear()

    async def readline(self) -> str | None:
        """Return the next line, or None at end of input.

        Raises:
            TerminalIOError: If reading from the terminal failed
        """
        item = await self._queue.get()
        if isinstance(item, BaseException):
            raise TerminalIOError(f"Terminal read failed: {item}") from item
        return item

    def resume(self) -> None:
        """Let the prompt thread ask for the next line."""
        self._resume.set()

    def stop(self) -> None:
        """Ask the prompt thread to exit after its current read."""
        self._stopped.set()
        self._resume.set()


class Console:
    """Relay lines between the terminal and an open session.

    Waits for whichever comes first of a terminal line, a device
    notification or a disconnect, and dispatches it. The session is
    always closed when ``run`` returns or raises.
    """

    def __init__(
        self,
        session: Session,
        reader: LineReader | None = None,
        *,
        output: RichConsole | None = None,
        validate: bool = True,
        write_delay: float = DEFAULT_WRITE_DELAY,
    ) -> None:
        """Create a console for ``session`` reading from ``reader``."""
        self.session = session
        self.reader: LineReader = reader or PromptReader()
        self.output = output or RichConsole(highlight=False)
        self.validate = validate
        self.write_delay = write_delay
        self.state = ConsoleState.CONNECTED
        self.reason: DisconnectReason | None = None
        self._pending: dict[str, asyncio.Task] = {}

    async def run(self) -> DisconnectReason:
        """Run the console until the user quits or the link drops.

        Raises:
            TerminalIOError: If the terminal cannot be read
        """
        self.reader.start()
        pending = self._pending
        try:
            while self.state is ConsoleState.CONNECTED:
                if "line" not in pending:
                    pending["line"] = asyncio.ensure_future(
                        self.reader.readline()
                    )
                if "notification" not in pending:
                    pending["notification"] = asyncio.ensure_future(
                        self.session.next_notification()
                    )
                if "disconnect" not in pending:
                    pending["disconnect"] = asyncio.ensure_future(
                        self.session.wait_disconnected()
                    )
                done, _ = await asyncio.wait(
                    pending.values(), return_when=asyncio.FIRST_COMPLETED
                )
                # Notifications first so responses precede a disconnect.
                for key in ("notification", "line", "disconnect"):
                    task = pending[key]
                    if task not in done:
                        continue
                    del pending[key]
                    if self.state is ConsoleState.CONNECTED:
                        await self._dispatch(key, task.result())
        finally:
            self._print_pending_notifications()
            for task in pending.values():
                task.cancel()
            pending.clear()
            self.reader.stop()
            self.state = ConsoleState.DISCONNECTED
            await self.session.close()
        return self.reason or DisconnectReason.USER_QUIT

    async def _dispatch(self, key: str, value: object) -> None:
        if key == "notification":
            self._print_notification(value)  # type: ignore[arg-type]
            self._print_pending_notifications()
        elif key == "line":
            await self._handle_line(value)  # type: ignore[arg-type]
        else:
            self._connection_lost()

    def _print_notification(self, payload: bytes) -> None:
        if not payload:
            return
        self.output.print(Text(decode_notification(payload)), soft_wrap=True)

    def _print_pending_notifications(self) -> None:
        """Print payloads already received, in arrival order."""
        task = self._pending.get("notification")
        if task is not None and task.done() and not task.cancelled():
            del self._pending["notification"]
            self._print_notification(task.result())
        for payload in self.session.pending_notifications():
            self._print_notification(payload)

    async def _handle_line(self, line: str | None) -> None:
        if line is None or is_quit(line):
            self._disconnect(DisconnectReason.USER_QUIT)
            return
        if self.validate and (error := validate_command(line)):
            self.output.print(Text(error, style="red"))
            self.reader.resume()
            return
        try:
            await self.session.send_line(line)
        except DeviceCommunicationError as exc:
            if not self.session.is_connected:
                self._connection_lost()
                return
            logger.debug("Write failed", exc_info=True)
            self.output.print(Text(str(exc), style="red"))
        await asyncio.sleep(self.write_delay)
        self.reader.resume()

    def _connection_lost(self) -> None:
        self._print_pending_notifications()
        self.output.print("Device disconnected!")
        self._disconnect(DisconnectReason.CONNECTION_LOST)

    def _disconnect(self, reason: DisconnectReason) -> None:
        self._print_pending_notifications()
        self.reason = reason
        self.state = ConsoleState.DISCONNECTED
