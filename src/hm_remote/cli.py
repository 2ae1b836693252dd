"""hm-remote CLI entrypoint."""

import asyncio
import contextlib
import dataclasses
from typing import Optional

import typer
from rich import print
from rich.console import Console as RichConsole
from rich.text import Text
from typing_extensions import Annotated

from . import __version__
from .config import Settings, configure_logging, load_settings
from .console import Console, DisconnectReason
from .const import HM_SERVICE_UUID, LineEnding
from .exception import HMRemoteError
from .scanner import Device, scan
from .session import connect as open_session
from .session import normalize_address

app = typer.Typer(
    name="hm-remote",
    help="Remote AT console for HM series BLE device.",
    no_args_is_help=True,
    add_completion=False,
    context_settings={"help_option_names": ["-h", "--help"]},
)

err_console = RichConsole(stderr=True, highlight=False)


def _settings(ctx: typer.Context) -> Settings:
    """Return settings loaded by the top level callback."""
    if isinstance(ctx.obj, Settings):
        return ctx.obj
    return load_settings()


def _fail(exc: HMRemoteError) -> typer.Exit:
    """Report an error and build the matching exit."""
    err_console.print(Text(f"Error: {exc}", style="bold red"))
    return typer.Exit(code=exc.exit_code)


def _version_callback(value: bool) -> None:
    if value:
        print(f"hm-remote {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-V",
            callback=_version_callback,
            is_eager=True,
            help="Print version information and exit.",
        ),
    ] = None,
    log_level: Annotated[
        Optional[str],
        typer.Option(
            "--log-level",
            help="Log level (overrides HM_REMOTE_LOG_LEVEL).",
        ),
    ] = None,
) -> None:
    """Remote AT console for HM series BLE device."""
    settings = load_settings()
    configure_logging(log_level or settings.log_level)
    ctx.obj = settings


def _render_device(device: Device, tag: str, style: str) -> None:
    print(Text.assemble((f"[{tag}] ", style), device.label))


async def _run_scan(
    timeout: float, verbose: bool, filter_unnamed: bool, hm_only: bool
) -> int:
    """Print devices as they are discovered and return how many were new."""
    seen: set[str] = set()
    found = 0
    service_uuids = [HM_SERVICE_UUID] if hm_only else None
    results = scan(timeout, service_uuids=service_uuids)
    async with contextlib.aclosing(aiter(results)) as observations:
        async for device in observations:
            if device.address in seen:
                if verbose:
                    _render_device(device, "UPDATE", "yellow")
                continue
            seen.add(device.address)
            if verbose:
                print(
                    Text.assemble(("[ADVERTISED] ", "blue"), device.address)
                )
            # Unnamed devices hidden by the filter are not reported later.
            if filter_unnamed and not device.name:
                continue
            found += 1
            _render_device(device, "NEW", "green")
    return found


@app.command("scan")
def scan_command(
    ctx: typer.Context,
    timeout: Annotated[
        Optional[float],
        typer.Option(
            "--timeout",
            "-t",
            min=0.0,
            help="Scan duration in seconds.",
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Displays BLE device update."),
    ] = False,
    filter_unnamed: Annotated[
        bool,
        typer.Option(
            "--filter-unnamed",
            "-f",
            help="Only displays BLE device with a name.",
        ),
    ] = False,
    hm_only: Annotated[
        bool,
        typer.Option(
            "--hm-only",
            help="Only scan for devices advertising the HM serial service.",
        ),
    ] = False,
) -> None:
    """Scan BLE devices."""
    settings = _settings(ctx)
    duration = settings.scan_timeout if timeout is None else timeout
    print(f"Scanning for {duration:g}s...")
    try:
        found = asyncio.run(
            _run_scan(duration, verbose, filter_unnamed, hm_only)
        )
    except HMRemoteError as exc:
        raise _fail(exc) from exc
    except KeyboardInterrupt:
        print("Scan interrupted.")
        return
    print(f"Found {found} device(s).")


async def _run_console(
    address: str, settings: Settings, raw: bool
) -> DisconnectReason:
    address = normalize_address(address)
    print(f"Scanning for {address}")
    session = await open_session(
        address,
        timeout=settings.connect_timeout,
        attempts=settings.connect_attempts,
        chunk_size=settings.chunk_size,
        line_ending=settings.line_ending,
    )
    print(Text.assemble("Connected: ", session.label))
    print("Type AT commands, or 'quit' to disconnect.")
    console = Console(
        session, validate=not raw, write_delay=settings.write_delay
    )
    return await console.run()


@app.command("connect")
def connect_command(
    ctx: typer.Context,
    address: Annotated[
        str,
        typer.Argument(
            metavar="ADDRESS",
            help="The MAC address of the device to connect.",
        ),
    ],
    timeout: Annotated[
        Optional[float],
        typer.Option(
            "--timeout",
            "-t",
            min=0.1,
            help="Seconds to find and connect to the device.",
        ),
    ] = None,
    line_ending: Annotated[
        Optional[LineEnding],
        typer.Option(
            "--line-ending",
            case_sensitive=False,
            help="Terminator appended to each line sent.",
        ),
    ] = None,
    raw: Annotated[
        bool,
        typer.Option(
            "--raw",
            help="Send any text, not only AT commands.",
        ),
    ] = False,
) -> None:
    """Connect to a BLE device and open an AT console."""
    settings = _settings(ctx)
    overrides = {}
    if timeout is not None:
        overrides["connect_timeout"] = timeout
    if line_ending is not None:
        overrides["line_ending"] = line_ending
    if overrides:
        settings = dataclasses.replace(settings, **overrides)
    try:
        asyncio.run(_run_console(address, settings, raw))
    except HMRemoteError as exc:
        raise _fail(exc) from exc
    except KeyboardInterrupt:
        pass
    print("Bye!")


if __name__ == "__main__":
    app()
