import dataclasses
import logging
import natsort
import os
from serial.tools import list_ports
from serial.tools import list_ports_common

from serial_screen import _exceptions

log = logging.getLogger("serial_screen.scanning")

DEFAULT_DEV_DIR = "/dev"

# Callout ("cu.") nodes win over dial-in ("tty.") nodes for the same port
EXCLUSIVE_PREFIX = "cu."
SHARED_PREFIX = "tty."


@dataclasses.dataclass(frozen=True)
class DeviceEntry:
    """A serial device node, keyed by its physical port name"""

    path: str
    base: str
    attr: dict[str, str] = dataclasses.field(default_factory=dict)

    def __str__(self):
        return self.path


def scan_serial_devices(dev_dir: str | None = None) -> list[DeviceEntry]:
    """Returns one DeviceEntry per physical serial port in the device dir"""

    dev_dir = dev_dir or os.getenv("SERIAL_SCREEN_DEV_DIR") or DEFAULT_DEV_DIR
    try:
        names = os.listdir(dev_dir)
    except OSError as ex:
        message = f"Failed to scan {dev_dir}"
        raise _exceptions.SerialScanException(message) from ex

    by_base: dict[str, str] = {}
    for name in names:
        if name.startswith(EXCLUSIVE_PREFIX):
            base, exclusive = name[len(EXCLUSIVE_PREFIX) :], True
        elif name.startswith(SHARED_PREFIX):
            base, exclusive = name[len(SHARED_PREFIX) :], False
        else:
            continue

        path = os.path.join(dev_dir, name)
        if base not in by_base or exclusive:
            by_base[base] = path

    attrs = _port_attrs()
    out = []
    for base in natsort.natsorted(by_base, alg=natsort.ns.PATH):
        path = by_base[base]
        out.append(DeviceEntry(path=path, base=base, attr=attrs.get(path, {})))

    log.debug("Found %d ports in %s (%d nodes)", len(out), dev_dir, len(names))
    return out


def select_after_refresh(
    previous: str | None, entries: list[DeviceEntry]
) -> str | None:
    """Keeps the previous selection if still present, else picks the first"""

    if previous and any(e.path == previous for e in entries):
        return previous
    return entries[0].path if entries else None


def _port_attrs() -> dict[str, dict[str, str]]:
    try:
        ports = list_ports.comports()
    except OSError:
        log.warning("Can't read pyserial port details", exc_info=True)
        return {}
    return {p.device: _convert_port(p) for p in ports}


def _convert_port(p: list_ports_common.ListPortInfo) -> dict[str, str]:
    _NA = (None, "", "n/a")
    return {k.lower(): str(v) for k, v in vars(p).items() if v not in _NA}
