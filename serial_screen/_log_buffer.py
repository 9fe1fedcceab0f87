import datetime
import re
from collections.abc import Callable

TIMESTAMP_FORMAT = "[%H:%M:%S] "
NOTICE_PREFIX = "[System] "

# One line's worth of text, including its terminator if any ("\r\n" is one)
_LINE_RE = re.compile(r"[^\r\n]*(?:\r\n|\r|\n)|[^\r\n]+")


class LogBuffer:
    """Append-only monitor log with per-line timestamps.

    Incoming text may arrive in arbitrary fragments; the at_line_start flag
    carries across appends so each line gets exactly one timestamp, taken
    when its first character arrives. Every change bumps 'version', which
    only ever increases (clearing included).
    """

    def __init__(
        self,
        *,
        timestamps: bool = True,
        clock: Callable[[], datetime.datetime] = datetime.datetime.now,
    ):
        self.timestamps = timestamps
        self.at_line_start = True
        self.version = 0
        self._clock = clock
        self._pieces: list[str] = []
        self._after_cr = False

    def __len__(self) -> int:
        return sum(len(p) for p in self._pieces)

    def __repr__(self) -> str:
        return f"LogBuffer(version={self.version}, length={len(self)})"

    @property
    def text(self) -> str:
        if len(self._pieces) > 1:
            self._pieces[:] = ["".join(self._pieces)]
        return self._pieces[0] if self._pieces else ""

    def append_incoming(self, text: str) -> None:
        if not text:
            return

        out = []
        if self._after_cr and text.startswith("\n"):
            out.append("\n")  # second half of a split "\r\n"
            text = text[1:]

        if not self.timestamps:
            out.append(text)
            if text:
                self.at_line_start = text[-1] in "\r\n"
        else:
            for line in _LINE_RE.findall(text):
                if self.at_line_start:
                    out.append(self._timestamp())
                out.append(line)
                self.at_line_start = line[-1] in "\r\n"

        self._after_cr = (out[-1] or "\n")[-1] == "\r"
        self._append("".join(out))

    def append_outgoing_echo(self, text: str) -> None:
        self._append_entry(text)

    def append_notice(self, text: str) -> None:
        self._append_entry(NOTICE_PREFIX + text)

    def clear(self) -> None:
        self._pieces.clear()
        self.at_line_start = True
        self._after_cr = False
        self.version += 1

    def _append_entry(self, text: str) -> None:
        """Writes 'text' as a line of its own, never merged with RX data"""

        head = "" if self.at_line_start else "\n"
        self._append(f"{head}{self._timestamp()}{text}\n")
        self.at_line_start = True
        self._after_cr = False

    def _timestamp(self) -> str:
        if not self.timestamps:
            return ""
        return self._clock().strftime(TIMESTAMP_FORMAT)

    def _append(self, text: str) -> None:
        self._pieces.append(text)
        self.version += 1
