"""Command line entry point: reload, suspend and friends."""

from __future__ import annotations

import argparse
import contextlib
import os
import platform
import re
import signal
import sys
import time
from pathlib import Path
from typing import Optional, Sequence, Tuple, Union

from .consts import ReloadState
from .privilege import auto_su

VERSION = "unknown"

ABORT_FILE = "/var/run/dae.abort"
PID_FILE_PATH = "/var/run/dae.pid"
SIGNAL_PROGRESS_FILE_PATH = "/var/run/dae.progress"

_FIRST_CHECK_DELAY = 0.5
_POLL_DELAY = 0.2
_PID = re.compile(r"[+-]?[0-9]+")
_FINISHED = (ReloadState.DONE.value, ReloadState.ERROR.value)

_PathLike = Union[str, os.PathLike]


class ProgressFormatError(ValueError):
    """The progress file does not start with a one-character status line."""


def read_signal_progress_file(path: _PathLike = SIGNAL_PROGRESS_FILE_PATH) -> Tuple[str, str]:
    """Return the status character and the message of the progress file."""
    text = Path(path).read_bytes().decode("utf-8", errors="replace")
    first_line, _, content = text.partition("\n")
    if len(first_line) != 1:
        raise ProgressFormatError(f"unexpected format: {text}")
    return first_line, content


def read_pid(path: _PathLike = PID_FILE_PATH) -> int:
    """Read a process id from a pid file; raise ValueError if it is not a number."""
    text = Path(path).read_text().strip()
    if not _PID.fullmatch(text):
        raise ValueError(f"invalid pid: {text!r}")
    return int(text)


def _touch(path: _PathLike) -> None:
    with contextlib.suppress(OSError):
        Path(path).touch()


def _try_read_progress(path: _PathLike) -> Optional[Tuple[str, str]]:
    try:
        return read_signal_progress_file(path)
    except (OSError, ProgressFormatError):
        return None


def reload(
    pid: int,
    abort: bool = False,
    progress_path: _PathLike = SIGNAL_PROGRESS_FILE_PATH,
    abort_path: _PathLike = ABORT_FILE,
) -> str:
    """Ask the running instance ``pid`` to reload its configuration.

    Returns the message to show: the reload result, ``OK`` when the
    instance does not report progress, or a notice that another reload is
    underway. Raises OSError when the signal cannot be sent.
    """
    if abort:
        _touch(abort_path)
    progress = _try_read_progress(progress_path)
    if progress is not None and progress[0] not in _FINISHED:
        return f"{progress_path} shows another reload operation is in progress."
    with contextlib.suppress(OSError):
        Path(progress_path).write_bytes(ReloadState.SEND.value.encode())
    os.kill(pid, signal.SIGUSR1)
    time.sleep(_FIRST_CHECK_DELAY)
    progress = _try_read_progress(progress_path)
    if progress is not None and progress[0] == ReloadState.SEND.value:
        # An instance that does not report progress is running.
        return "OK"
    while True:
        time.sleep(_POLL_DELAY)
        progress = _try_read_progress(progress_path)
        if progress is None:
            return "OK"
        code, content = progress
        if code in _FINISHED:
            return content


def suspend(pid: int, abort: bool = False, abort_path: _PathLike = ABORT_FILE) -> str:
    """Ask the running instance ``pid`` to enter the no-load state."""
    if abort:
        _touch(abort_path)
    os.kill(pid, signal.SIGUSR2)
    return "OK"


def honk() -> None:
    """Ring the terminal bell three times."""
    print("Honk! Honk! Honk! This is dae!")
    for i in range(3):
        if i:
            time.sleep(0.3)
        print("\a\a\a\x1b[1A", flush=True)


def version_text(version: str = VERSION) -> str:
    """Return the text printed by ``--version``."""
    return "\n".join(
        [
            version,
            f"python runtime {platform.python_version()} {sys.platform}/{platform.machine()}",
        ]
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dae",
        usage="dae [flags] [command [argument ...]]",
        description="dae is a high-performance transparent proxy solution.",
    )
    parser.add_argument("-v", "--version", action="version", version=version_text(VERSION))
    commands = parser.add_subparsers(dest="command")

    honk_cmd = commands.add_parser("honk", help="Let dae call for you.")
    honk_cmd.set_defaults(parser=honk_cmd)

    for name, text in (
        ("reload", "To reload config file without interrupt connections."),
        ("suspend", "To suspend dae. This command puts dae into no-load state. "
                    "Recover it by 'dae reload'."),
    ):
        sub = commands.add_parser(name, help=text, description=text)
        sub.add_argument("pid", nargs="?")
        sub.add_argument("-a", "--abort", action="store_true",
                         help="Abort established connections.")
        sub.set_defaults(parser=sub)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 0
    if args.command == "honk":
        honk()
        return 0

    auto_su()
    if args.pid is None:
        try:
            pid = read_pid(PID_FILE_PATH)
        except OSError as exc:
            print("Failed to read pid file:", exc)
            return 1
        except ValueError:
            args.parser.print_help()
            return 1
    else:
        if not _PID.fullmatch(args.pid):
            args.parser.print_help()
            return 1
        pid = int(args.pid)

    try:
        if args.command == "reload":
            message = reload(pid, args.abort)
        else:
            message = suspend(pid, args.abort)
    except OSError as exc:
        print(exc)
        return 1
    print(message)
    return 0


if __name__ == "__main__":
    sys.exit(main())