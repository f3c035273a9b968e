#!/usr/bin/python3
#
# dhcpsession-monitor -- Run a DHCP client session and report its events
#

import argparse
import asyncio
import logging
import os
import signal
import sys
import systemd.daemon
from systemd.journal import JournalHandler

from dhcpsession.config import SessionConfig
from dhcpsession.elevation import NoElevation, SudoElevation
from dhcpsession.events import LeaseEvent
from dhcpsession.exceptions import DHCPSessionException, ProcessGone
from dhcpsession.session import LeaseSession


logger = logging.getLogger("monitor")


class EventPrinter:
    """
    Writes every lease event to a stream, one per line.
    """
    def __init__(self, stream=None):
        self.stream = stream

    def on_lease_event(self, event: LeaseEvent):
        print(event, file=self.stream or sys.stdout, flush=True)


def setup_logging(debug: bool):
    if "JOURNAL_STREAM" in os.environ:
        handler = JournalHandler()
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("[%(levelname)s:%(name)s] %(msg)s"))

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if debug else logging.INFO)
    root_logger.addHandler(handler)


async def run(argv=None) -> int:
    parser = argparse.ArgumentParser(
        "dhcpsession-monitor", description="Run udhcpc on an interface and report lease events"
    )
    parser.add_argument("interface", help="Interface to run the DHCP client on")
    parser.add_argument("--debug", action="store_true", help="Enable debug output")
    parser.add_argument("--udhcpc", help="udhcpc executable to run")
    parser.add_argument(
        "--sudo",
        choices=("auto", "always", "never"),
        default="auto",
        help="Run udhcpc through sudo when not root, always or never",
    )
    args = parser.parse_args(argv)

    setup_logging(args.debug)

    config = SessionConfig.from_environ()
    if args.udhcpc:
        config.executable = args.udhcpc

    if args.sudo == "never":
        elevation = NoElevation()
    else:
        elevation = SudoElevation(always=args.sudo == "always")

    session = LeaseSession(args.interface, config=config, elevation=elevation)
    session.bus.subscribe(EventPrinter())

    def renew():
        try:
            session.renew()
        except ProcessGone as e:
            logger.warning(str(e))

    # Handlers must be in place before udhcpc is spawned
    loop = asyncio.get_running_loop()
    stopping = asyncio.Event()
    loop.add_signal_handler(signal.SIGINT, stopping.set)
    loop.add_signal_handler(signal.SIGTERM, stopping.set)
    loop.add_signal_handler(signal.SIGHUP, renew)

    try:
        try:
            await session.start()
        except DHCPSessionException as e:
            logger.error(str(e))
            return 1

        systemd.daemon.notify("READY=1")

        try:
            waiters = [
                loop.create_task(session.wait_terminated()),
                loop.create_task(stopping.wait()),
            ]
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
            for waiter in waiters:
                waiter.cancel()
        finally:
            systemd.daemon.notify("STOPPING=1")
            await session.stop()
    finally:
        for signum in (signal.SIGINT, signal.SIGTERM, signal.SIGHUP):
            loop.remove_signal_handler(signum)

    if session.returncode:
        return 1
    return 0


def main():
    try:
        sys.exit(asyncio.run(run()))
    except KeyboardInterrupt:
        pass
