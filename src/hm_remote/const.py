"""BLE UUIDs and defaults used by HM series serial modules."""

from enum import Enum

HM_SERVICE_UUID = "0000ffe0-0000-1000-8000-00805f9b34fb"
# HM modules notify and accept writes on the same characteristic.
HM_SERIAL_CHAR_UUID = "0000ffe1-0000-1000-8000-00805f9b34fb"

DEFAULT_SCAN_TIMEOUT = 10.0
DEFAULT_CONNECT_TIMEOUT = 20.0
DEFAULT_CONNECT_ATTEMPTS = 3
# Default ATT MTU leaves 20 bytes of payload per write.
DEFAULT_CHUNK_SIZE = 20
DEFAULT_WRITE_DELAY = 0.01
DEFAULT_LOG_LEVEL = "WARNING"

UNNAMED_DEVICE = "<Unnamed>"
QUIT_COMMAND = "quit"
AT_PREFIX = "AT"


class LineEnding(str, Enum):
    """Terminator appended to every line sent to the device."""

    NONE = "none"
    CR = "cr"
    LF = "lf"
    CRLF = "crlf"

    @property
    def terminator(self) -> bytes:
        """Return the raw bytes for this line ending."""
        return _TERMINATORS[self]


_TERMINATORS = {
    LineEnding.NONE: b"",
    LineEnding.CR: b"\r",
    LineEnding.LF: b"\n",
    LineEnding.CRLF: b"\r\n",
}
