"""Line framing and notification decoding for the serial characteristic."""

from typing import List

from .const import AT_PREFIX, QUIT_COMMAND, LineEnding


def encode_line(
    line: str, line_ending: LineEnding = LineEnding.NONE
) -> bytes:
    """Encode a console line into the bytes written to the device.

    Args:
        line: Text typed by the user, without its trailing newline
        line_ending: Terminator expected by the device firmware

    Returns:
        UTF-8 encoded line followed by the terminator
    """
    return line.encode("utf-8") + line_ending.terminator


def chunk_payload(payload: bytes, chunk_size: int) -> List[bytes]:
    """Split a payload into chunks that fit in a single GATT write.

    Raises:
        ValueError: If chunk_size is not positive
    """
    if chunk_size < 1:
        raise ValueError(f"Chunk size must be positive, got {chunk_size}")
    return [
        payload[offset : offset + chunk_size]
        for offset in range(0, len(payload), chunk_size)
    ]


def decode_notification(payload: bytes) -> str:
    """Render a notification payload as text.

    Payloads that are not valid UTF-8 are rendered as a hex dump so that
    nothing the device sends is silently dropped.
    """
    try:
        return payload.decode("utf-8")
    except UnicodeDecodeError:
        return f"Failed to decode message: {payload.hex(' ')}"


def is_quit(line: str) -> bool:
    """Return True if the line asks to leave the console."""
    return line.strip() == QUIT_COMMAND


def validate_command(line: str) -> str | None:
    """Check that a line looks like an AT command.

    Returns:
        An error message for invalid input, or None if the line is valid
    """
    if not line.startswith(AT_PREFIX) and not is_quit(line):
        return "Invalid input, can only be AT command or quit"
    return None
