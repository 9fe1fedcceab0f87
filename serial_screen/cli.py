#!/usr/bin/env python3

"""CLI tool to list serial ports and/or monitor one of them"""

import argparse
import logging
import ok_logging_setup
import serial_screen

ok_logging_setup.skip_traceback_for(serial_screen.SerialScanException)
ok_logging_setup.skip_traceback_for(serial_screen.SerialOpenException)


def main():
    parser = argparse.ArgumentParser(description="Serial port monitor.")
    subparsers = parser.add_subparsers(title="actions", dest="command")
    list_parser = subparsers.add_parser("list", help="List serial ports")
    list_parser.add_argument("--dev-dir", help="device directory to scan")
    list_style_group = list_parser.add_mutually_exclusive_group()
    list_style_group.add_argument(
        "--name", "-n", action="store_true", help="print device file only"
    )
    list_style_group.add_argument(
        "--verbose", "-v", action="store_true", help="print detailed properties"
    )

    term_parser = subparsers.add_parser("term", help="Terminal monitor")
    term_parser.add_argument("port", nargs="?", help="device (default: first)")
    term_parser.add_argument(
        "baud",
        nargs="?",
        type=int,
        default=9600,
        choices=sorted(serial_screen.BAUD_RATES),
        help="baud rate (default 9600)",
    )
    term_parser.add_argument("--dev-dir", help="device directory to scan")
    term_parser.add_argument(
        "--no-timestamps", action="store_true", help="omit [HH:MM:SS] prefixes"
    )
    term_parser.add_argument(
        "--no-newline", action="store_true", help="don't append \\n on send"
    )

    args = parser.parse_args()
    if not args.command:
        args = parser.parse_args(["list"])

    level = "warning" if args.command == "list" and args.name else "info"
    ok_logging_setup.install({"OK_LOGGING_LEVEL": level})

    if args.command == "list":
        found = serial_screen.scan_serial_devices(args.dev_dir)
        num = len(found)
        if num == 0:
            ok_logging_setup.exit("❌ No serial ports found")

        plural = "" if num == 1 else "s"
        logging.info("🔌 %d serial port%s found", num, plural)
        for entry in found:
            if args.name:
                print(entry.path)
            elif args.verbose:
                print(format_detail(entry), end="\n\n")
            else:
                print(format_line(entry))

    if args.command == "term":
        from serial_screen import terminal  # needs the "cli" extra

        opts = serial_screen.SessionOptions(
            baud=args.baud,
            timestamps=not args.no_timestamps,
            append_newline=not args.no_newline,
            dev_dir=args.dev_dir,
        )
        terminal.run_terminal(opts, args.port)


def format_line(entry: serial_screen.DeviceEntry) -> str:
    words = [entry.path]
    for k in "description manufacturer serial_number".split():
        if v := entry.attr.get(k):
            words.append(repr(v) if " " in v else v)
    return " ".join(words)


def format_detail(entry: serial_screen.DeviceEntry) -> str:
    return f"Port: {entry.path} ({entry.base})" + "".join(
        f"\n  {k}={v!r}" for k, v in entry.attr.items()
    )


if __name__ == "__main__":
    main()
