"""
DHCP lease events.
"""

from dataclasses import dataclass
from ipaddress import IPv4Interface, ip_interface

from dhcpsession.event import Event


@dataclass
class LeaseEvent(Event):
    interface: str


@dataclass
class LeaseDeconfigured(LeaseEvent):
    pass


@dataclass
class LeaseUpdate(LeaseEvent):
    ip: str
    broadcast: str
    subnet_mask: str
    router: str
    domain: str
    dns_servers: str

    @property
    def address(self) -> IPv4Interface:
        "The leased address in CIDR form"
        mask = self.subnet_mask or "32"
        return ip_interface("%s/%s" % (self.ip, mask))

    @property
    def router_list(self) -> list[str]:
        return self.router.split()

    @property
    def dns_server_list(self) -> list[str]:
        return self.dns_servers.split()


@dataclass
class LeaseBound(LeaseUpdate):
    pass


@dataclass
class LeaseRenewed(LeaseUpdate):
    pass


@dataclass
class LeaseFailed(LeaseEvent):
    reason: str


@dataclass
class LeaseNak(LeaseEvent):
    reason: str


@dataclass
class UnrecognizedCallback(LeaseEvent):
    raw_text: str
    error: str | None = None


@dataclass
class SessionTerminated(LeaseEvent):
    returncode: int | None
