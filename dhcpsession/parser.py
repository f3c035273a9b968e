"""
dhcpsession/parser.py - udhcpc callback line parser

The callback script prints one comma separated line per udhcpc state change::

    deconfig,<iface>
    bound,<iface>,<ip>,<broadcast>,<subnet>,<router>,<domain>,<dns>,<message>
    renew,<iface>,<ip>,<broadcast>,<subnet>,<router>,<domain>,<dns>,<message>
    leasefail,<iface>,<ip>,<broadcast>,<subnet>,<router>,<domain>,<dns>,<message>
    nak,<iface>,<ip>,<broadcast>,<subnet>,<router>,<domain>,<dns>,<message>

udhcpc also writes its own diagnostics to the same stream. Anything that does
not fit one of the shapes above is reported as ``UnrecognizedCallback``.
"""

from dhcpsession.events import (
    LeaseBound,
    LeaseDeconfigured,
    LeaseEvent,
    LeaseFailed,
    LeaseNak,
    LeaseRenewed,
    UnrecognizedCallback,
)
from dhcpsession.exceptions import MalformedCallback


SEPARATOR = ","

# Event name, interface, six lease fields and the message
LEASE_FIELD_COUNT = 9

UPDATE_EVENTS = {
    "bound": LeaseBound,
    "renew": LeaseRenewed,
}

FAILURE_EVENTS = {
    "leasefail": LeaseFailed,
    "nak": LeaseNak,
}


def split_callback_line(line: str) -> list[str]:
    """
    Split a callback line into fields. The trailing message is free text and
    keeps any separators it contains.
    """
    return line.rstrip("\r\n").split(SEPARATOR, LEASE_FIELD_COUNT - 1)


def parse_callback_fields(fields: list[str]) -> LeaseEvent:
    """
    Build an event from already split fields.

    Raises ``MalformedCallback`` if the fields do not match a known shape.
    """
    name = fields[0]
    if name != "deconfig" and name not in UPDATE_EVENTS and name not in FAILURE_EVENTS:
        raise MalformedCallback(f"unknown callback {name!r}")

    if len(fields) < 2 or not fields[1]:
        raise MalformedCallback(f"{name} callback without interface")
    interface = fields[1]

    if name == "deconfig":
        return LeaseDeconfigured(interface)

    if len(fields) != LEASE_FIELD_COUNT:
        raise MalformedCallback(
            f"{name} callback has {len(fields)} fields, expected {LEASE_FIELD_COUNT}"
        )
    ip, broadcast, subnet, router, domain, dns, message = fields[2:]
    if name in UPDATE_EVENTS:
        return UPDATE_EVENTS[name](interface, ip, broadcast, subnet, router, domain, dns)
    return FAILURE_EVENTS[name](interface, message)


def parse_callback_line(line: str, interface: str) -> LeaseEvent:
    """
    Parse one line of callback output. Never raises: malformed or unknown
    lines produce an ``UnrecognizedCallback`` for ``interface``.
    """
    text = line.rstrip("\r\n")
    try:
        return parse_callback_fields(split_callback_line(text))
    except MalformedCallback as e:
        return UnrecognizedCallback(interface, text, str(e))
