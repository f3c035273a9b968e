import os
import shutil
import signal
import subprocess

import pytest

from dhcpsession import elevation
from dhcpsession.elevation import NoElevation, SudoElevation, default_elevation
from dhcpsession.exceptions import DHCPSessionException, ExecutableNotFound, ProcessGone


@pytest.fixture
def sudo_installed(monkeypatch):
    monkeypatch.setattr(shutil, "which", lambda name: f"/usr/bin/{name}")


@pytest.fixture
def unprivileged(monkeypatch):
    monkeypatch.setattr(os, "geteuid", lambda: 1000)


@pytest.fixture
def privileged(monkeypatch):
    monkeypatch.setattr(os, "geteuid", lambda: 0)


def test_default():
    assert isinstance(default_elevation(), SudoElevation)


def test_no_elevation():
    argv = ["udhcpc", "--interface", "eth0"]
    assert NoElevation().command(argv) == argv


def test_no_elevation_missing_process(monkeypatch):
    def kill(pid, signum):
        raise ProcessLookupError

    monkeypatch.setattr(os, "kill", kill)
    with pytest.raises(ProcessGone):
        NoElevation().send_signal(1234, signal.SIGUSR1)


def test_sudo_when_unprivileged(sudo_installed, unprivileged):
    assert SudoElevation().command(["udhcpc", "-f"]) == ["/usr/bin/sudo", "-n", "udhcpc", "-f"]


def test_sudo_skipped_when_root(sudo_installed, privileged):
    assert SudoElevation().command(["udhcpc", "-f"]) == ["udhcpc", "-f"]


def test_sudo_always(sudo_installed, privileged):
    assert SudoElevation(always=True).command(["udhcpc"]) == ["/usr/bin/sudo", "-n", "udhcpc"]


def test_sudo_not_found(monkeypatch, unprivileged):
    monkeypatch.setattr(shutil, "which", lambda name: None)
    with pytest.raises(ExecutableNotFound):
        SudoElevation().command(["udhcpc"])


def test_sudo_signal_direct(monkeypatch, unprivileged):
    sent = []
    monkeypatch.setattr(os, "kill", lambda pid, signum: sent.append((pid, signum)))

    SudoElevation().send_signal(1234, signal.SIGUSR2)
    assert sent == [(1234, signal.SIGUSR2)]


def kill_denied(pid, signum):
    raise PermissionError


def test_sudo_signal_fallback(monkeypatch, sudo_installed, unprivileged):
    commands = []

    def run(args, **kwargs):
        commands.append(args)
        return subprocess.CompletedProcess(args, 0, b"", b"")

    monkeypatch.setattr(os, "kill", kill_denied)
    monkeypatch.setattr(elevation.subprocess, "run", run)

    SudoElevation().send_signal(1234, signal.SIGUSR1)
    assert commands == [["/usr/bin/sudo", "-n", "kill", "-s", "USR1", "--", "1234"]]


def test_sudo_group_kill_skips_direct_kill(monkeypatch, sudo_installed, unprivileged):
    sent = []
    commands = []

    def run(args, **kwargs):
        commands.append(args)
        return subprocess.CompletedProcess(args, 0, b"", b"")

    # Signalling the group directly would succeed, reaching only sudo itself
    monkeypatch.setattr(os, "kill", lambda pid, signum: sent.append((pid, signum)))
    monkeypatch.setattr(elevation.subprocess, "run", run)

    SudoElevation().send_signal(-1234, signal.SIGKILL)
    SudoElevation().send_signal(-1234, signal.SIGTERM)
    SudoElevation().send_signal(1234, signal.SIGKILL)

    assert sent == []
    assert commands == [
        ["/usr/bin/sudo", "-n", "kill", "-s", "KILL", "--", "-1234"],
        ["/usr/bin/sudo", "-n", "kill", "-s", "TERM", "--", "-1234"],
        ["/usr/bin/sudo", "-n", "kill", "-s", "KILL", "--", "1234"],
    ]


def test_root_group_kill_is_direct(monkeypatch, privileged):
    sent = []
    monkeypatch.setattr(os, "kill", lambda pid, signum: sent.append((pid, signum)))
    monkeypatch.setattr(elevation.subprocess, "run", lambda *args, **kwargs: pytest.fail("sudo used as root"))

    SudoElevation().send_signal(-1234, signal.SIGKILL)
    assert sent == [(-1234, signal.SIGKILL)]


def test_sudo_signal_fallback_gone(monkeypatch, sudo_installed, unprivileged):
    def run(args, **kwargs):
        return subprocess.CompletedProcess(args, 1, b"", b"kill: (1234): No such process\n")

    monkeypatch.setattr(os, "kill", kill_denied)
    monkeypatch.setattr(elevation.subprocess, "run", run)

    with pytest.raises(ProcessGone):
        SudoElevation().send_signal(1234, signal.SIGUSR1)


def test_sudo_signal_fallback_failure(monkeypatch, sudo_installed, unprivileged):
    def run(args, **kwargs):
        return subprocess.CompletedProcess(args, 1, b"", b"sudo: a password is required\n")

    monkeypatch.setattr(os, "kill", kill_denied)
    monkeypatch.setattr(elevation.subprocess, "run", run)

    with pytest.raises(DHCPSessionException):
        SudoElevation().send_signal(1234, signal.SIGUSR1)


def test_root_permission_error_propagates(monkeypatch, privileged):
    monkeypatch.setattr(os, "kill", kill_denied)
    with pytest.raises(PermissionError):
        SudoElevation().send_signal(1234, signal.SIGUSR1)
