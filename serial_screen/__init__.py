"""
Serial port terminal monitor: port discovery, raw-mode connections,
a timestamped receive log, and command history for sending.
"""

from beartype.claw import beartype_this_package as _beartype_me

# ruff: noqa: E402
_beartype_me()

from serial_screen._exceptions import (
    SerialAttrReadException,
    SerialAttrWriteException,
    SerialBaudUnsupported,
    SerialException,
    SerialIoClosed,
    SerialIoException,
    SerialOpenBusy,
    SerialOpenException,
    SerialReadException,
    SerialScanException,
    SerialWriteException,
)

from serial_screen._history import CommandHistory
from serial_screen._log_buffer import LogBuffer
from serial_screen._reader import ReadLoop
from serial_screen._scanning import (
    DeviceEntry,
    scan_serial_devices,
    select_after_refresh,
)
from serial_screen._session import (
    ConnectionPhase,
    SerialSession,
    SessionOptions,
    SessionSnapshot,
)
from serial_screen._transport import BAUD_RATES, SerialTransport, open_transport

__all__ = [n for n in dir() if not n.startswith("_")]
