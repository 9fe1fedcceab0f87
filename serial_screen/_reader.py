import codecs
import logging
import os
import selectors
import threading
from collections.abc import Callable

from serial_screen import _exceptions
from serial_screen import _transport

log = logging.getLogger("serial_screen.reader")
data_log = logging.getLogger(log.name + ".data")

READ_SIZE = 4096


class ReadLoop:
    """Background thread that drains a transport whenever it is readable.

    Decoded text goes to on_chunk(epoch, text) and fatal read errors to
    on_error(epoch, exception), both called from the reader thread and tagged
    with the transport epoch so the receiver can discard stale events.

    The reader thread owns the transport once started: it closes it on the
    way out after cancel(), so no read can be in flight when the descriptor
    goes away.
    """

    def __init__(
        self,
        transport: _transport.SerialTransport,
        *,
        on_chunk: Callable[[int, str], None],
        on_error: Callable[[int, _exceptions.SerialIoException], None],
        read_size: int = READ_SIZE,
    ):
        self.transport = transport
        self._on_chunk = on_chunk
        self._on_error = on_error
        self._read_size = read_size
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._cancelled = threading.Event()
        self._finish_lock = threading.Lock()
        self._finished = False
        self._wake_r, self._wake_w = os.pipe()
        os.set_blocking(self._wake_r, False)
        os.set_blocking(self._wake_w, False)
        self._thread = threading.Thread(
            target=self._run, name=f"{transport.port} reader", daemon=True
        )

    def __repr__(self) -> str:
        return f"ReadLoop({self.transport!r})"

    @property
    def finished(self) -> bool:
        return self._finished

    def start(self) -> None:
        self._thread.start()

    def cancel(self, timeout: float | int | None = 1.0) -> bool:
        """Stops reading and closes the transport; True once fully closed"""

        self._cancelled.set()
        if not self._thread.is_alive() and not self._thread.ident:
            self._finish()  # never started
            return True

        with self._finish_lock:
            if not self._finished:
                try:
                    os.write(self._wake_w, b"\0")
                except BlockingIOError:
                    pass  # wakeup already pending

        if threading.current_thread() is not self._thread:
            self._thread.join(timeout=timeout)
        if self._thread.is_alive():
            log.warning("Reader for %s still running", self.transport.port)
            return False
        return True

    def _run(self) -> None:
        log.debug("Starting thread")
        selector = selectors.DefaultSelector()
        try:
            selector.register(self._wake_r, selectors.EVENT_READ, "wake")
            selector.register(
                self.transport.fileno(), selectors.EVENT_READ, "serial"
            )
            while not self._cancelled.is_set():
                for key, _events in selector.select():
                    if key.data == "wake":
                        self._drain_wake_pipe()
                    elif not self._cancelled.is_set() and not self._drain():
                        selector.unregister(key.fd)
                        log.debug("%s reads dormant", self.transport.port)
        finally:
            selector.close()
            self._finish()
            log.debug("Stopped thread")

    def _drain(self) -> bool:
        """Reads until the kernel buffer is empty; False on EOF or error"""

        port = self.transport.port
        while not self._cancelled.is_set():
            try:
                incoming = self.transport.read(self._read_size)
            except BlockingIOError:
                return True
            except OSError as ex:
                message = f"Serial read error ({ex.strerror or ex})"
                error = _exceptions.SerialReadException(message, port)
                error.__cause__ = ex
                data_log.warning("%s", message, exc_info=True)
                self._on_error(self.transport.epoch, error)
                return False

            if not incoming:
                log.debug("EOF on %s", port)
                if tail := self._decoder.decode(b"", final=True):
                    self._on_chunk(self.transport.epoch, tail)
                return False

            data_log.debug("Read %db from %s", len(incoming), port)
            if text := self._decoder.decode(incoming):
                self._on_chunk(self.transport.epoch, text)

        return True

    def _drain_wake_pipe(self) -> None:
        try:
            while os.read(self._wake_r, 64):
                pass
        except BlockingIOError:
            pass

    def _finish(self) -> None:
        with self._finish_lock:
            if self._finished:
                return
            self._finished = True

        self.transport.close()
        os.close(self._wake_r)
        os.close(self._wake_w)
