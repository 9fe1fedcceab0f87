"""Unit tests for serial_screen._transport."""

import errno
import gc
import select
import termios

import pytest

import serial_screen
from serial_screen import _exceptions
from serial_screen import _transport

#
# Attribute setup
#


def test_open_configures_raw_8n1(pty_serial):
    with serial_screen.open_transport(pty_serial.path, 57600) as transport:
        assert transport.port == pty_serial.path
        assert transport.baud == 57600

        tcattr = termios.tcgetattr(pty_serial.simulated.fileno())
        iflag, oflag, cflag, lflag, ispeed, ospeed, cc = tcattr
        assert ispeed == ospeed == termios.B57600
        assert cflag & termios.CSIZE == termios.CS8
        assert not cflag & (termios.PARENB | termios.CSTOPB)
        assert cflag & termios.CLOCAL
        assert cflag & termios.CREAD
        assert not lflag & (termios.ICANON | termios.ECHO | termios.ISIG)
        assert not iflag & (termios.ICRNL | termios.IXON)
        assert not oflag & termios.OPOST


@pytest.mark.parametrize("baud", sorted(serial_screen.BAUD_RATES))
def test_open_supported_bauds(pty_serial, baud):
    with serial_screen.open_transport(pty_serial.path, baud):
        tcattr = termios.tcgetattr(pty_serial.simulated.fileno())
        assert tcattr[4] == tcattr[5] == serial_screen.BAUD_RATES[baud]


#
# Failures never leak the descriptor
#


@pytest.mark.parametrize("baud", [0, 300, 4800, 115201, 921600])
def test_open_unsupported_baud(pty_serial, open_fd_count, baud):
    before = open_fd_count()
    with pytest.raises(serial_screen.SerialBaudUnsupported):
        serial_screen.open_transport(pty_serial.path, baud)
    assert open_fd_count() == before


def test_open_missing_device(tmp_path, open_fd_count):
    before = open_fd_count()
    with pytest.raises(serial_screen.SerialOpenException):
        serial_screen.open_transport(str(tmp_path / "nope"), 9600)
    assert open_fd_count() == before


def test_open_non_tty(tmp_path, open_fd_count):
    path = tmp_path / "plain_file"
    path.write_bytes(b"")
    before = open_fd_count()
    with pytest.raises(serial_screen.SerialAttrReadException):
        serial_screen.open_transport(str(path), 9600)
    assert open_fd_count() == before


def test_open_attr_read_failure(pty_serial, open_fd_count, mocker):
    mocker.patch("termios.tcgetattr", side_effect=termios.error(5, "EIO"))
    before = open_fd_count()
    with pytest.raises(serial_screen.SerialAttrReadException):
        serial_screen.open_transport(pty_serial.path, 9600)
    assert open_fd_count() == before


def test_open_attr_write_failure(pty_serial, open_fd_count, mocker):
    mocker.patch("termios.tcsetattr", side_effect=termios.error(5, "EIO"))
    before = open_fd_count()
    with pytest.raises(serial_screen.SerialAttrWriteException):
        serial_screen.open_transport(pty_serial.path, 9600)
    assert open_fd_count() == before


def test_open_busy(pty_serial, open_fd_count):
    with serial_screen.open_transport(pty_serial.path, 9600):
        before = open_fd_count()
        with pytest.raises(serial_screen.SerialOpenBusy):
            serial_screen.open_transport(pty_serial.path, 9600)
        assert open_fd_count() == before

    # Claim is released with the first transport
    with serial_screen.open_transport(pty_serial.path, 9600):
        pass


#
# I/O and close
#


def test_read_and_write(pty_serial):
    with serial_screen.open_transport(pty_serial.path, 115200) as transport:
        with pytest.raises(BlockingIOError):
            transport.read()

        pty_serial.control.write(b"TO SERIAL")
        assert select.select([transport], [], [], 5.0)[0]
        assert transport.read(4096) == b"TO SERIAL"

        transport.write(b"FROM SERIAL")
        assert pty_serial.control.read(256) == b"FROM SERIAL"


def test_write_error(pty_serial, mocker):
    with serial_screen.open_transport(pty_serial.path, 9600) as transport:
        mocker.patch.object(
            _transport.os, "write", side_effect=OSError(errno.EIO, "I/O")
        )
        with pytest.raises(_exceptions.SerialWriteException):
            transport.write(b"data")


def test_write_timeout(pty_serial, mocker):
    with serial_screen.open_transport(pty_serial.path, 9600) as transport:
        mocker.patch.object(_transport.os, "write", side_effect=BlockingIOError)
        with pytest.raises(_exceptions.SerialWriteException):
            transport.write(b"data", timeout=0.05)


def test_close_is_idempotent(pty_serial, open_fd_count):
    before = open_fd_count()
    transport = serial_screen.open_transport(pty_serial.path, 9600)
    assert open_fd_count() == before + 1
    assert not transport.closed

    transport.close()
    transport.close()
    assert transport.closed
    assert open_fd_count() == before

    with pytest.raises(_exceptions.SerialIoClosed):
        transport.read()
    with pytest.raises(_exceptions.SerialIoClosed):
        transport.write(b"late")


def test_epochs_are_unique(pty_serial):
    with serial_screen.open_transport(pty_serial.path, 9600) as first:
        pass
    with serial_screen.open_transport(pty_serial.path, 9600) as second:
        assert second.epoch != first.epoch


def test_dropped_transport_closes(pty_serial, open_fd_count):
    before = open_fd_count()
    transport = serial_screen.open_transport(pty_serial.path, 9600)
    assert open_fd_count() == before + 1

    del transport
    gc.collect()
    assert open_fd_count() == before
