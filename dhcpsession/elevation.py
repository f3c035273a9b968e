"""
dhcpsession/elevation.py - Privilege elevation strategies

udhcpc needs to run as root to manage the interface. A strategy turns the
command line for udhcpc into one that runs with the required privileges, and
knows how to deliver signals to the resulting process.
"""

import logging
import os
import shutil
import signal
import subprocess

from dhcpsession.exceptions import DHCPSessionException, ExecutableNotFound, ProcessGone


logger = logging.getLogger("elevation")


class NoElevation:
    """
    Run commands as the current user.
    """
    def command(self, argv: list[str]) -> list[str]:
        return list(argv)

    def send_signal(self, pid: int, signum: int) -> None:
        """
        Send ``signum`` to ``pid``. A negative pid addresses a process group.
        """
        try:
            os.kill(pid, signum)
        except ProcessLookupError:
            raise ProcessGone(f"Process {pid} does not exist")


class SudoElevation(NoElevation):
    """
    Run commands through ``sudo -n``.

    By default elevation is skipped when the current process is already root.
    Pass ``always=True`` to wrap every command regardless.
    """
    def __init__(self, always: bool = False, sudo: str = "sudo", timeout: float = 5.0):
        self.always = always
        self.sudo = sudo
        self.timeout = timeout

    @property
    def required(self) -> bool:
        return self.always or os.geteuid() != 0

    def sudo_path(self) -> str:
        path = shutil.which(self.sudo)
        if path is None:
            raise ExecutableNotFound(f"{self.sudo} not found")
        return path

    def command(self, argv: list[str]) -> list[str]:
        if not self.required:
            return list(argv)
        return [self.sudo_path(), "-n"] + list(argv)

    def send_signal(self, pid: int, signum: int) -> None:
        """
        Signal ``pid``, through sudo when needed.

        When elevated, group signals and SIGKILL always go through sudo. A
        group kill from the caller only reaches the sudo front-end, which
        cannot relay SIGKILL, and still reports success.
        """
        if self.required and (pid < 0 or signum == signal.SIGKILL):
            self.sudo_kill(pid, signum)
            return

        try:
            super().send_signal(pid, signum)
            return
        except PermissionError:
            if not self.required:
                raise

        self.sudo_kill(pid, signum)

    def sudo_kill(self, pid: int, signum: int) -> None:
        name = signal.Signals(signum).name.removeprefix("SIG")
        logger.debug(f"Signalling {pid} with {name} through {self.sudo}")
        result = subprocess.run(
            [self.sudo_path(), "-n", "kill", "-s", name, "--", str(pid)],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            timeout=self.timeout,
        )
        if result.returncode != 0:
            error = result.stderr.decode(errors="replace").strip()
            if "No such process" in error:
                raise ProcessGone(f"Process {pid} does not exist")
            raise DHCPSessionException(f"Unable to signal {pid}: {error}")


def default_elevation():
    return SudoElevation()
