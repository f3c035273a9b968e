"""
dhcpsession/config.py - Session configuration
"""

from dataclasses import dataclass, field
from enum import Enum
import os
import signal


DEFAULT_SCRIPT = os.path.join(os.path.dirname(os.path.abspath(__file__)), "udhcpc.sh")


class AddressingMode(Enum):
    STATIC = "static"
    DHCP = "dhcp"


@dataclass
class NetProfile:
    """
    Addressing configuration for an interface, supplied by the network manager.
    """
    interface: str
    mode: AddressingMode = AddressingMode.DHCP


@dataclass
class SessionConfig:
    executable: str = "udhcpc"
    script: str = DEFAULT_SCRIPT
    extra_args: list[str] = field(default_factory=list)
    renew_signal: int = signal.SIGUSR1
    release_signal: int = signal.SIGUSR2
    stop_grace_period: float = 5.0
    max_line_length: int = 256
    channel_size: int = 64

    @classmethod
    def from_environ(cls, environ=None):
        """
        Build a configuration from ``DHCPSESSION_*`` environment variables,
        falling back to the defaults for anything not set.
        """
        if environ is None:
            environ = os.environ

        config = cls()
        if "DHCPSESSION_UDHCPC" in environ:
            config.executable = environ["DHCPSESSION_UDHCPC"]
        if "DHCPSESSION_SCRIPT" in environ:
            config.script = environ["DHCPSESSION_SCRIPT"]
        if "DHCPSESSION_EXTRA_ARGS" in environ:
            config.extra_args = environ["DHCPSESSION_EXTRA_ARGS"].split()
        if "DHCPSESSION_STOP_GRACE" in environ:
            config.stop_grace_period = float(environ["DHCPSESSION_STOP_GRACE"])
        if "DHCPSESSION_MAX_LINE" in environ:
            config.max_line_length = int(environ["DHCPSESSION_MAX_LINE"])
        return config
