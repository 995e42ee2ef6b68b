"""Re-running the current command with root privileges when needed."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import sys
from typing import List, Optional, Sequence

logger = logging.getLogger(__name__)

SUDO_PROMPT = "Please enter the password for %u to continue: "


def is_exist_and_executable(path: Optional[str]) -> bool:
    """Return True when ``path`` exists and is executable by user, group and others."""
    if not path:
        return False
    try:
        mode = os.stat(path).st_mode
    except OSError:
        return False
    return mode & 0o111 == 0o111


def try_sudo() -> Optional[List[str]]:
    """Return the sudo command prefix, or None when sudo is unavailable."""
    path = shutil.which("sudo")
    if path is None or not is_exist_and_executable(path):
        return None
    return [path, "-E", "-p", SUDO_PROMPT, "--"]


def try_doas() -> Optional[List[str]]:
    """Return the doas command prefix, or None when doas is unavailable."""
    path = shutil.which("doas")
    if path is None:
        return None
    return [path, "-u", "root"]


def try_polkit() -> Optional[List[str]]:
    """Return a polkit wrapper command prefix (run0, then pkexec), or None."""
    for name in ("run0", "pkexec"):
        path = shutil.which(name)
        if path is None or not is_exist_and_executable(path):
            continue
        if name == "run0":
            return [path]
        return [path, "--keep-cwd", "--user", "root"]
    return None


def auto_su(argv: Optional[Sequence[str]] = None) -> None:
    """Re-run ``argv`` as root through sudo, doas or polkit, then exit with its status.

    Returns without doing anything when already root or when no elevation
    tool is found. ``argv`` defaults to the command line of this process.
    """
    if os.geteuid() == 0:
        return
    prefix = try_sudo() or try_doas() or try_polkit()
    if prefix is None:
        return
    if argv is None:
        argv = [sys.executable, *sys.orig_argv[1:]]
    command = [*prefix, *argv]
    logger.info("use [ %s ] to elevate privileges to run [ %s ]", prefix[0], argv[0] if argv else "")
    try:
        completed = subprocess.run(command)
    except OSError as exc:
        logger.critical("%s", exc)
        sys.exit(1)
    code = completed.returncode
    sys.exit(code if code >= 0 else 255)