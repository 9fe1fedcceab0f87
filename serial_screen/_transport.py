import contextlib
import errno
import itertools
import logging
import os
import selectors
import termios
import threading

from serial_screen import _exceptions
from serial_screen import _locking
from serial_screen import _timeout_math

log = logging.getLogger("serial_screen.transport")
data_log = logging.getLogger(log.name + ".data")

BAUD_RATES: dict[int, int] = {
    9600: termios.B9600,
    19200: termios.B19200,
    38400: termios.B38400,
    57600: termios.B57600,
    115200: termios.B115200,
    230400: termios.B230400,
}

_epochs = itertools.count(1)


class SerialTransport(contextlib.AbstractContextManager):
    """An open, raw-mode, non-blocking serial descriptor"""

    def __init__(
        self, port: str, fd: int, baud: int, cleanup: contextlib.ExitStack
    ):
        self.port = port
        self.baud = baud
        self.epoch = next(_epochs)
        self._fd = fd
        self._lock = threading.Lock()
        self._cleanup = cleanup
        self._closed = False

    def __del__(self) -> None:
        if hasattr(self, "_cleanup"):
            self.close()

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"SerialTransport({self.port!r}, baud={self.baud})"

    @property
    def closed(self) -> bool:
        return self._closed

    def fileno(self) -> int:
        return self._fd

    def read(self, size: int = 4096) -> bytes:
        """One non-blocking read; raises BlockingIOError when drained"""

        if self._closed:
            raise _exceptions.SerialIoClosed("Port was closed", self.port)
        return os.read(self._fd, size)

    def write(self, data: bytes, timeout: float | int | None = 1.0) -> None:
        """Writes all of 'data', waiting for the port to accept it"""

        deadline = _timeout_math.to_deadline(timeout)
        view = memoryview(data)
        with selectors.DefaultSelector() as selector:
            while view:
                if self._closed:
                    message = "Serial port was closed"
                    raise _exceptions.SerialIoClosed(message, self.port)
                try:
                    written = os.write(self._fd, view)
                    data_log.debug("Wrote %d/%db", written, len(view))
                    view = view[written:]
                    continue
                except BlockingIOError:
                    pass
                except OSError as ex:
                    message = f"Serial write error ({ex.strerror})"
                    raise _exceptions.SerialWriteException(
                        message, self.port
                    ) from ex

                wait = _timeout_math.from_deadline(deadline)
                if wait <= 0:
                    message = f"Serial write timeout ({len(view)}b unsent)"
                    raise _exceptions.SerialWriteException(message, self.port)
                if not selector.get_map():
                    selector.register(self._fd, selectors.EVENT_WRITE)
                selector.select(timeout=wait)

    def close(self) -> None:
        """Releases the descriptor; only the first call does anything"""

        with self._lock:
            if self._closed:
                return
            self._closed = True
        log.debug("Closing %s", self.port)
        self._cleanup.close()


def open_transport(port: str, baud: int) -> SerialTransport:
    """Opens 'port' exclusively in raw 8-N-1 mode at 'baud'"""

    with contextlib.ExitStack() as cleanup:
        log.debug("Opening %s @ %d", port, baud)
        try:
            fd = os.open(port, os.O_RDWR | os.O_NOCTTY | os.O_NONBLOCK)
        except OSError as ex:
            if ex.errno == errno.EBUSY:
                message = "Serial port busy (EBUSY)"
                raise _exceptions.SerialOpenBusy(message, port) from ex
            else:
                message = f"Unable to open ({ex.strerror})"
                raise _exceptions.SerialOpenException(message, port) from ex

        cleanup.callback(os.close, fd)
        cleanup.enter_context(_locking.using_exclusive_claim(port, fd))

        try:
            attrs = termios.tcgetattr(fd)
        except (termios.error, OSError) as ex:
            message = "Can't read serial attributes (tcgetattr)"
            raise _exceptions.SerialAttrReadException(message, port) from ex

        _make_raw_8n1(attrs)

        speed = BAUD_RATES.get(baud)
        if speed is None:
            message = f"Unsupported baud: {baud}"
            raise _exceptions.SerialBaudUnsupported(message, port)
        attrs[4] = attrs[5] = speed

        try:
            termios.tcsetattr(fd, termios.TCSANOW, attrs)
        except (termios.error, OSError) as ex:
            message = "Can't write serial attributes (tcsetattr)"
            raise _exceptions.SerialAttrWriteException(message, port) from ex

        transport = SerialTransport(port, fd, baud, cleanup.pop_all())

    log.debug("Opened %s @ %d (fd=%d)", port, baud, fd)
    return transport


def _make_raw_8n1(attrs: list) -> None:
    """Edits tcgetattr() output in place, like cfmakeraw() plus 8-N-1 framing"""

    iflag, oflag, cflag, lflag = attrs[:4]
    iflag &= ~(
        termios.IGNBRK
        | termios.BRKINT
        | termios.PARMRK
        | termios.ISTRIP
        | termios.INLCR
        | termios.IGNCR
        | termios.ICRNL
        | termios.IXON
    )
    oflag &= ~termios.OPOST
    lflag &= ~(
        termios.ECHO
        | termios.ECHONL
        | termios.ICANON
        | termios.ISIG
        | termios.IEXTEN
    )
    cflag |= termios.CLOCAL | termios.CREAD
    cflag &= ~(termios.PARENB | termios.CSTOPB | termios.CSIZE)
    cflag |= termios.CS8
    attrs[:4] = [iflag, oflag, cflag, lflag]

    cc = attrs[6]
    cc[termios.VMIN] = 1
    cc[termios.VTIME] = 0
