import contextlib
import datetime
import enum
import functools
import logging
import pathlib
import weakref
from collections.abc import Callable

import msgspec
import pydantic

from serial_screen import _dispatch
from serial_screen import _exceptions
from serial_screen import _history
from serial_screen import _log_buffer
from serial_screen import _reader
from serial_screen import _scanning
from serial_screen import _transport

log = logging.getLogger("serial_screen.session")
data_log = logging.getLogger(log.name + ".data")


class ConnectionPhase(enum.Enum):
    DISCONNECTED = "Disconnected"
    CONNECTED = "Connected"


class SessionOptions(pydantic.BaseModel):
    baud: int = 9600
    timestamps: bool = True
    append_newline: bool = True
    auto_scroll: bool = True
    history_limit: pydantic.PositiveInt = _history.HISTORY_LIMIT
    read_size: pydantic.PositiveInt = _reader.READ_SIZE
    write_timeout: float = 1.0
    dev_dir: str | None = None


class SessionSnapshot(msgspec.Struct, frozen=True):
    """Everything a front end shows, as of the end of the last command"""

    ports: tuple[str, ...]
    selected_port: str | None
    selected_baud: int
    phase: ConnectionPhase
    status_text: str
    log_text: str
    log_version: int
    timestamps: bool
    auto_scroll: bool
    outgoing_text: str
    append_newline: bool

    @property
    def connected(self) -> bool:
        return self.phase is ConnectionPhase.CONNECTED


class SerialSession(contextlib.AbstractContextManager):
    """A serial monitor session: port list, one connection, log, history.

    All methods must be called from one coordinating thread. Reader threads
    only queue events; process_events() (or process_events_async()) runs them
    on the coordinating thread. Subscribers get a SessionSnapshot after every
    command and every processed event.
    """

    def __init__(
        self,
        opts: SessionOptions = SessionOptions(),
        *,
        clock: Callable[[], datetime.datetime] | None = None,
    ):
        self._opts = opts
        self._dispatcher = _dispatch.Dispatcher()
        self._log = _log_buffer.LogBuffer(
            timestamps=opts.timestamps, clock=clock or datetime.datetime.now
        )
        self._history = _history.CommandHistory(limit=opts.history_limit)
        self._subscribers: list[Callable[[SessionSnapshot], None]] = []
        self._reader: _reader.ReadLoop | None = None
        self._devices: list[_scanning.DeviceEntry] = []
        self._selected_port: str | None = None
        self._selected_baud = opts.baud
        self._phase = ConnectionPhase.DISCONNECTED
        self._status_text = "Disconnected"
        self._outgoing_text = ""
        self._append_newline = opts.append_newline
        self._auto_scroll = opts.auto_scroll

    def __del__(self) -> None:
        if getattr(self, "_reader", None):
            self._teardown(timeout=0.3)

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"SerialSession({self._selected_port!r}, {self._phase.value})"

    @property
    def phase(self) -> ConnectionPhase:
        return self._phase

    @property
    def connected(self) -> bool:
        return self._phase is ConnectionPhase.CONNECTED

    @property
    def devices(self) -> list[_scanning.DeviceEntry]:
        return list(self._devices)

    @property
    def log(self) -> _log_buffer.LogBuffer:
        return self._log

    @property
    def history(self) -> _history.CommandHistory:
        return self._history

    @property
    def transport(self) -> _transport.SerialTransport | None:
        return self._reader.transport if self._reader else None

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            ports=tuple(d.path for d in self._devices),
            selected_port=self._selected_port,
            selected_baud=self._selected_baud,
            phase=self._phase,
            status_text=self._status_text,
            log_text=self._log.text,
            log_version=self._log.version,
            timestamps=self._log.timestamps,
            auto_scroll=self._auto_scroll,
            outgoing_text=self._outgoing_text,
            append_newline=self._append_newline,
        )

    def subscribe(
        self, callback: Callable[[SessionSnapshot], None]
    ) -> Callable[[], None]:
        """Registers 'callback' for snapshots; returns an unsubscribe func"""

        self._subscribers.append(callback)

        def unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._subscribers.remove(callback)

        return unsubscribe

    def process_events(self, timeout: float | int | None = 0) -> int:
        """Runs queued reader events, waiting up to 'timeout' for one"""

        return self._dispatcher.run_pending(timeout=timeout)

    async def process_events_async(self) -> int:
        return await self._dispatcher.run_pending_async()

    #
    # Ports
    #

    def refresh_ports(self) -> None:
        try:
            self._devices = _scanning.scan_serial_devices(self._opts.dev_dir)
        except _exceptions.SerialScanException as ex:
            log.warning("%s", ex)
            self._devices = []
            self._notice(str(ex))
        else:
            names = ", ".join(d.path for d in self._devices)
            self._notice(f"Ports updated: {names or 'none found'}")

        self._selected_port = _scanning.select_after_refresh(
            self._selected_port, self._devices
        )
        self._publish()

    @pydantic.validate_call
    def select_port(self, port: str | None) -> None:
        self._selected_port = port or None
        self._publish()

    @pydantic.validate_call
    def select_baud(self, baud: int) -> None:
        self._selected_baud = baud
        self._publish()

    #
    # Connection
    #

    def connect(self) -> None:
        port, baud = self._selected_port, self._selected_baud
        if not port:
            self._notice("Select a serial port first")
            self._publish()
            return

        if self._teardown():
            self._notice("Disconnected")

        try:
            transport = _transport.open_transport(port, baud)
        except _exceptions.SerialOpenException as ex:
            log.warning("Can't connect (%s)", ex)
            self._notice(f"Connection error: {ex}")
            self._publish()
            return

        self._reader = _reader.ReadLoop(
            transport,
            on_chunk=self._forwarder(self._on_chunk),
            on_error=self._forwarder(self._on_error),
            read_size=self._opts.read_size,
        )
        self._reader.start()
        self._phase = ConnectionPhase.CONNECTED
        self._status_text = "Connected"
        log.info("Connected to %s @ %d", port, baud)
        self._notice(f"Connected to {port} @ {baud}")
        self._publish()

    def disconnect(self) -> None:
        if self._teardown():
            self._notice("Disconnected")
        self._publish()

    def toggle_connection(self) -> None:
        if self.connected:
            self.disconnect()
        else:
            self.connect()

    def close(self) -> None:
        """Releases the connection without touching the log"""

        self._teardown()

    #
    # Sending
    #

    @pydantic.validate_call
    def set_outgoing_text(self, text: str) -> None:
        self._outgoing_text = text
        self._publish()

    @pydantic.validate_call
    def send(self, text: str | None = None) -> None:
        """Writes the outgoing text (or 'text') to the port, echoing it"""

        if text is not None:
            self._outgoing_text = text

        transport = self.transport
        if transport is None:
            self._notice("Connect to a serial port first")
            self._publish()
            return

        command = self._outgoing_text
        if not command:
            self._publish()
            return

        payload = command + "\n" if self._append_newline else command
        try:
            transport.write(payload.encode(), timeout=self._opts.write_timeout)
        except _exceptions.SerialIoException as ex:
            log.warning("Can't send (%s)", ex)
            self._notice(f"Write error: {ex}")
        else:
            self._history.record(command)
            self._log.append_outgoing_echo(payload.strip("\r\n"))
            self._outgoing_text = ""
        self._publish()

    def history_up(self) -> None:
        self._outgoing_text = self._history.up(self._outgoing_text)
        self._publish()

    def history_down(self) -> None:
        self._outgoing_text = self._history.down(self._outgoing_text)
        self._publish()

    @pydantic.validate_call
    def set_append_newline(self, enabled: bool) -> None:
        self._append_newline = enabled
        self._publish()

    #
    # Log
    #

    def clear_log(self) -> None:
        self._log.clear()
        self._publish()

    @pydantic.validate_call
    def save_log(self, path: pathlib.Path | str) -> None:
        """Writes the current log text to 'path' as UTF-8"""

        path = pathlib.Path(path)
        try:
            path.write_text(self._log.text, encoding="utf-8")
        except OSError as ex:
            log.warning("Can't save log to %s", path, exc_info=True)
            self._notice(f"Save error: {ex}")
        else:
            log.info("Saved log to %s", path)
            self._notice(f"Log saved: {path}")
        self._publish()

    @pydantic.validate_call
    def set_timestamps(self, enabled: bool) -> None:
        self._log.timestamps = enabled
        self._publish()

    @pydantic.validate_call
    def set_auto_scroll(self, enabled: bool) -> None:
        self._auto_scroll = enabled
        self._publish()

    #
    # Internals
    #

    def _teardown(self, timeout: float | int | None = 1.0) -> bool:
        """Cancels any reader (which closes its transport); True if any"""

        reader, self._reader = self._reader, None
        self._phase = ConnectionPhase.DISCONNECTED
        self._status_text = "Disconnected"
        if reader is None:
            return False

        log.info("Disconnecting %s", reader.transport.port)
        reader.cancel(timeout=timeout)
        return True

    def _forwarder(self, handler: Callable) -> Callable[[int, object], None]:
        """Wraps a handler for the reader thread, holding the session weakly"""

        handler_ref = weakref.WeakMethod(handler)
        dispatcher = self._dispatcher

        def forward(epoch: int, payload: object) -> None:
            if bound := handler_ref():
                dispatcher.post(functools.partial(bound, epoch, payload))

        return forward

    def _is_current(self, epoch: int) -> bool:
        transport = self.transport
        return transport is not None and transport.epoch == epoch

    def _on_chunk(self, epoch: int, text: str) -> None:
        if not self._is_current(epoch):
            data_log.debug("Dropped %d chars from stale #%d", len(text), epoch)
            return
        self._log.append_incoming(text)
        self._publish()

    def _on_error(
        self, epoch: int, error: _exceptions.SerialIoException
    ) -> None:
        if not self._is_current(epoch):
            log.debug("Dropped error from stale #%d: %s", epoch, error)
            return
        log.warning("%s", error)
        self._notice(f"Read error: {error}")
        self.disconnect()

    def _notice(self, text: str) -> None:
        self._log.append_notice(text)

    def _publish(self) -> None:
        if not self._subscribers:
            return
        snapshot = self.snapshot()
        for callback in list(self._subscribers):
            callback(snapshot)
