import contextlib
import datetime
import io
import ok_logging_setup
import os
import pty
import pytest
import typing

ok_logging_setup.install(
    {
        "OK_LOGGING_LEVEL": "serial_screen=DEBUG,WARNING",
        "OK_LOGGING_OUTPUT": "stdout",
    }
)

FIXED_TIME = datetime.datetime(2024, 5, 6, 12, 34, 56)


class PseudoTtySerial(typing.NamedTuple):
    path: str
    control: io.FileIO
    simulated: io.FileIO


@pytest.fixture
def pty_serial():
    with contextlib.ExitStack() as cleanup:
        ctrl_fd, sim_fd = pty.openpty()
        path = os.ttyname(sim_fd)
        ctrl = cleanup.enter_context(os.fdopen(ctrl_fd, "r+b", buffering=0))
        sim = cleanup.enter_context(os.fdopen(sim_fd, "r+b", buffering=0))
        yield PseudoTtySerial(path=path, control=ctrl, simulated=sim)


@pytest.fixture
def open_fd_count():
    def count() -> int:
        return len(os.listdir("/proc/self/fd"))

    return count


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_TIME


@pytest.fixture
def no_pyserial_ports(mocker):
    return mocker.patch("serial.tools.list_ports.comports", return_value=[])
