import contextlib
import fcntl
import logging
import termios
import typeguard

from serial_screen import _exceptions

log = logging.getLogger("serial_screen.locking")


@contextlib.contextmanager
@typeguard.typechecked
def using_exclusive_claim(port: str, fd: int):
    """Holds flock(LOCK_EX) and TIOCEXCL on an open serial descriptor"""

    try:
        fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        log.debug("Acquired flock(LOCK_EX) on %s", port)
    except BlockingIOError as exc:
        message = "Serial port busy (flock claimed)"
        raise _exceptions.SerialOpenBusy(message, port) from exc
    except OSError:
        log.warning("Can't lock (flock) %s", port, exc_info=True)

    try:
        fcntl.ioctl(fd, termios.TIOCEXCL)
        log.debug("Acquired TIOCEXCL on %s", port)
    except OSError:
        log.warning("Can't lock (TIOCEXCL) %s", port, exc_info=True)

    try:
        yield
    finally:
        _release_claim(port, fd)


def _release_claim(port: str, fd: int) -> None:
    try:
        fcntl.ioctl(fd, termios.TIOCNXCL)
        log.debug("Released TIOCEXCL on %s", port)
    except OSError:
        log.warning("Can't release TIOCEXCL on %s", port, exc_info=True)

    try:
        fcntl.flock(fd, fcntl.LOCK_UN | fcntl.LOCK_NB)
        log.debug("Released flock on %s", port)
    except OSError:
        log.warning("Can't release flock on %s", port, exc_info=True)
