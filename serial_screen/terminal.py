"""Interactive terminal front end for a SerialSession (needs 'blessed')"""

import logging
import sys

import ok_logging_setup

import serial_screen

try:
    import blessed
except ModuleNotFoundError:
    print("\n⚠️ Try: pip install 'serial-screen[cli]'\n", file=sys.stderr)
    raise

log = logging.getLogger("serial_screen.terminal")

SAVE_PATH = "serial_log.txt"
HELP = "Enter=send ↑↓=history ^L=clear ^T=time ^S=save ^D=quit"


class _Screen:
    """Log in a scrolling region, edit line pinned to the bottom row"""

    def __init__(self, term: blessed.Terminal):
        self._term = term
        self._shown_version = -1
        self._shown_length = 0
        self._shown_prompt = None

    def __enter__(self):
        t = self._term
        self._write(t.clear + t.csr(0, t.height - 3) + t.move_yx(0, 0) + t.save)
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        t = self._term
        self._write(t.csr(0, t.height - 1) + t.move_yx(t.height - 1, 0) + "\n")

    def update(self, snap: serial_screen.SessionSnapshot) -> None:
        t, out = self._term, ""
        if snap.log_version != self._shown_version:
            if len(snap.log_text) < self._shown_length:
                out += t.move_yx(0, 0) + t.clear_eos + t.save  # log cleared
                self._shown_length = 0
            new_text = snap.log_text[self._shown_length :]
            out += t.restore + new_text + t.save
            self._shown_length = len(snap.log_text)
            self._shown_version = snap.log_version

        state = "⏱" if snap.timestamps else " "
        status = f"{snap.status_text} {snap.selected_port or ''} @ "
        status += f"{snap.selected_baud} {state}  {HELP}"
        prompt = (status, snap.outgoing_text)
        if out or prompt != self._shown_prompt:
            out += t.move_yx(t.height - 2, 0) + t.clear_eol
            out += t.reverse(status[: t.width])
            out += t.move_yx(t.height - 1, 0) + t.clear_eol
            out += "> " + snap.outgoing_text
            self._shown_prompt = prompt

        if out:
            self._write(out)

    def _write(self, text: str) -> None:
        sys.stdout.write(text)
        sys.stdout.flush()


def run_terminal(opts: serial_screen.SessionOptions, port: str | None) -> None:
    term = blessed.Terminal()
    with serial_screen.SerialSession(opts) as session:
        session.refresh_ports()
        if port:
            session.select_port(port)
        session.connect()
        if not session.connected:
            lines = session.log.text.strip().splitlines() or ["No port"]
            ok_logging_setup.exit(f"❌ {lines[-1]}")

        with term.cbreak(), _Screen(term) as screen:
            while session.connected:
                session.process_events(timeout=0.05)
                screen.update(session.snapshot())
                key = term.inkey(timeout=0)
                if key and not _handle_key(term, session, key):
                    break
            screen.update(session.snapshot())


def _handle_key(
    term: blessed.Terminal, session: serial_screen.SerialSession, key
) -> bool:
    """Applies one keystroke; False means quit"""

    text = session.snapshot().outgoing_text
    if key.code == term.KEY_ENTER or str(key) in ("\r", "\n"):
        session.send()
    elif key.code == term.KEY_UP:
        session.history_up()
    elif key.code == term.KEY_DOWN:
        session.history_down()
    elif key.code in (term.KEY_BACKSPACE, term.KEY_DELETE):
        session.set_outgoing_text(text[:-1])
    elif str(key) in ("\x03", "\x04"):
        return False
    elif str(key) == "\x0c":
        session.clear_log()
    elif str(key) == "\x13":
        session.save_log(SAVE_PATH)
    elif str(key) == "\x14":
        session.set_timestamps(not session.snapshot().timestamps)
    elif not key.is_sequence and str(key).isprintable():
        session.set_outgoing_text(text + str(key))
    else:
        log.debug("Ignored key %r", key)
    return True
