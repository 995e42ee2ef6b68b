import os
import subprocess
from unittest import mock

import pytest

from dae.privilege import (
    SUDO_PROMPT,
    auto_su,
    is_exist_and_executable,
    try_doas,
    try_polkit,
    try_sudo,
)


def _tool(directory, name, mode=0o755):
    path = directory / name
    path.write_text("#!/bin/sh\nexit 0\n")
    os.chmod(path, mode)
    return str(path)


@pytest.fixture
def bindir(tmp_path, monkeypatch):
    directory = tmp_path / "bin"
    directory.mkdir()
    monkeypatch.setenv("PATH", str(directory))
    return directory


def test_is_exist_and_executable_empty_and_missing(tmp_path):
    assert is_exist_and_executable("") is False
    assert is_exist_and_executable(str(tmp_path / "missing")) is False


def test_is_exist_and_executable_requires_all_exec_bits(tmp_path):
    assert is_exist_and_executable(_tool(tmp_path, "a", 0o755)) is True
    assert is_exist_and_executable(_tool(tmp_path, "b", 0o744)) is False


def test_try_sudo_found(bindir):
    path = _tool(bindir, "sudo")
    assert try_sudo() == [path, "-E", "-p", SUDO_PROMPT, "--"]


def test_try_sudo_not_world_executable(bindir):
    _tool(bindir, "sudo", 0o700)
    assert try_sudo() is None


def test_try_sudo_missing(bindir):
    assert try_sudo() is None


def test_try_doas_needs_no_mode_check(bindir):
    path = _tool(bindir, "doas", 0o700)
    assert try_doas() == [path, "-u", "root"]


def test_try_polkit_pkexec(bindir):
    path = _tool(bindir, "pkexec")
    assert try_polkit() == [path, "--keep-cwd", "--user", "root"]


def test_try_polkit_prefers_run0(bindir):
    run0 = _tool(bindir, "run0")
    _tool(bindir, "pkexec")
    assert try_polkit() == [run0]


def test_auto_su_as_root_does_nothing(bindir):
    _tool(bindir, "sudo")
    with mock.patch("os.geteuid", return_value=0), mock.patch("subprocess.run") as run:
        assert auto_su(["prog"]) is None
    run.assert_not_called()


def test_auto_su_without_tools_returns(bindir):
    with mock.patch("os.geteuid", return_value=1000), mock.patch("subprocess.run") as run:
        assert auto_su(["prog"]) is None
    run.assert_not_called()


def test_auto_su_runs_through_sudo_and_exits(bindir):
    _tool(bindir, "sudo")
    prefix = try_sudo()
    done = subprocess.CompletedProcess(args=[], returncode=3)
    with mock.patch("os.geteuid", return_value=1000), \
            mock.patch("subprocess.run", return_value=done) as run:
        with pytest.raises(SystemExit) as excinfo:
            auto_su(["prog", "x"])
    assert excinfo.value.code == 3
    assert run.call_args.args[0] == prefix + ["prog", "x"]