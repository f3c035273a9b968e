"""
dhcpsession/session.py - udhcpc lease session

A ``LeaseSession`` owns one udhcpc process for one interface. udhcpc runs in
the foreground with the shipped callback script, which prints a line per state
change. Those lines are parsed into lease events and published on the session's
``EventBus``. The session never configures the interface itself; subscribers
act on the events.
"""

import asyncio
from contextlib import suppress
from enum import Enum
import functools
import logging
import os
import shutil
import signal

from dhcpsession.bus import EventBus
from dhcpsession.config import AddressingMode, NetProfile, SessionConfig
from dhcpsession.elevation import default_elevation
from dhcpsession.events import (
    LeaseBound,
    LeaseDeconfigured,
    LeaseEvent,
    LeaseFailed,
    LeaseNak,
    LeaseRenewed,
    SessionTerminated,
    UnrecognizedCallback,
)
from dhcpsession.exceptions import DHCPSessionException, ExecutableNotFound, ProcessGone, SpawnFailed
from dhcpsession.libc import set_parent_death_signal
from dhcpsession.parser import parse_callback_line


logger = logging.getLogger("dhcp-session")


class SessionState(Enum):
    STARTING = "starting"
    RUNNING = "running"
    TERMINATED = "terminated"


class LeaseSession:
    """
    Supervises udhcpc on ``interface``.

    Example::

        async with LeaseSession("eth0") as session:
            session.bus.subscribe(manager)
            await session.wait_terminated()
    """
    def __init__(self, interface: str, bus: EventBus | None = None, config: SessionConfig | None = None, elevation=None):
        if not interface:
            raise ValueError("interface not specified")
        self._interface = interface
        self.bus = bus if bus is not None else EventBus()
        self.config = config if config is not None else SessionConfig()
        self.elevation = elevation if elevation is not None else default_elevation()
        self.state = SessionState.STARTING
        self.process: asyncio.subprocess.Process | None = None
        self.returncode: int | None = None

        # Raw lines from the reader to the publisher. None marks end of stream
        self.channel: asyncio.Queue = asyncio.Queue(self.config.channel_size)

        self.reader_task: asyncio.Task | None = None
        self.publisher_task: asyncio.Task | None = None
        self.terminated: asyncio.Event = asyncio.Event()

    @property
    def interface(self) -> str:
        return self._interface

    @property
    def pid(self) -> int | None:
        return self.process.pid if self.process else None

    def event_bus(self) -> EventBus:
        return self.bus

    def command(self) -> list[str]:
        """
        Build the udhcpc command line, without privilege elevation.
        """
        path = shutil.which(self.config.executable)
        if path is None:
            raise ExecutableNotFound(f"{self.config.executable} not found")
        if not os.path.isfile(self.config.script):
            raise ExecutableNotFound(f"Callback script {self.config.script} not found")
        return [
            path,
            "--interface",
            self.interface,
            "--script",
            self.config.script,
            "--foreground",
        ] + list(self.config.extra_args)

    async def start(self):
        """
        Spawn udhcpc and start processing its callbacks.

        Raises ``ExecutableNotFound`` or ``SpawnFailed``.
        """
        if self.process is not None:
            raise RuntimeError(f"Session on {self.interface} already started")

        argv = self.elevation.command(self.command())
        logger.info(f"Starting DHCP client on {self.interface}")
        logger.debug(f"Running {argv}")

        try:
            self.process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                start_new_session=True,
                preexec_fn=functools.partial(set_parent_death_signal, signal.SIGTERM),
            )
        except OSError as e:
            self.state = SessionState.TERMINATED
            self.terminated.set()
            raise SpawnFailed(f"Unable to start {argv[0]}: {e}") from e

        self.state = SessionState.RUNNING
        loop = asyncio.get_running_loop()
        self.reader_task = loop.create_task(self.read_loop())
        self.publisher_task = loop.create_task(self.publish_loop())
        return self

    async def __aenter__(self):
        return await self.start()

    async def __aexit__(self, *exc):
        await self.stop()

    def _signal(self, signum: int):
        if self.state != SessionState.RUNNING or self.process.returncode is not None:
            raise ProcessGone(f"DHCP client on {self.interface} is not running")
        logger.debug(f"Sending {signal.Signals(signum).name} to {self.process.pid}")
        self.elevation.send_signal(self.process.pid, signum)

    def renew(self):
        """
        Ask udhcpc to renew the lease. The result arrives later as an event.
        """
        self._signal(self.config.renew_signal)
        logger.info(f"Requested lease renewal on {self.interface}")

    def release(self):
        """
        Ask udhcpc to release the lease. The address stays on the interface
        until a subscriber removes it in response to the resulting event.
        """
        self._signal(self.config.release_signal)
        logger.info(f"Requested lease release on {self.interface}")

    async def read_loop(self):
        stream = self.process.stdout
        try:
            while True:
                try:
                    line = await stream.readline()
                except ValueError as e:
                    # The stream buffer limit was exceeded. The buffer is
                    # discarded and reading continues with the next data
                    await self.channel.put(UnrecognizedCallback(self.interface, "", str(e)))
                    continue
                if not line:
                    break
                await self.channel.put(line)
        except OSError:
            logger.exception(f"Failure reading DHCP client output on {self.interface}")
        await self.channel.put(None)

    def decode(self, line: bytes) -> LeaseEvent:
        # The limit is in bytes, as udhcpc wrote them
        line = line.rstrip(b"\r\n")
        if len(line) > self.config.max_line_length:
            return UnrecognizedCallback(
                self.interface,
                line[:self.config.max_line_length].decode("utf-8", errors="replace"),
                f"line exceeds {self.config.max_line_length} bytes",
            )
        return parse_callback_line(line.decode("utf-8", errors="replace"), self.interface)

    async def publish_loop(self):
        while True:
            item = await self.channel.get()
            if item is None:
                break
            if isinstance(item, LeaseEvent):
                event = item
            else:
                event = self.decode(item)
            self.log_event(event)
            self.bus.publish(event)

        returncode = await self.process.wait()
        if returncode:
            logger.warning(f"DHCP client on {self.interface} exited with status {returncode}")
        else:
            logger.info(f"DHCP client on {self.interface} exited")
        self.terminate(returncode)

    def log_event(self, event: LeaseEvent):
        if isinstance(event, LeaseDeconfigured):
            logger.info(f"Deconfigure {event.interface}")
        elif isinstance(event, LeaseBound):
            logger.info(f"Bound {event.interface}: IP={event.ip}, dns={event.dns_servers!r}")
        elif isinstance(event, LeaseRenewed):
            logger.info(f"Renew {event.interface}")
        elif isinstance(event, LeaseFailed):
            logger.warning(f"{event.interface}: leasefail {event.reason}")
        elif isinstance(event, LeaseNak):
            logger.warning(f"{event.interface}: NAK {event.reason}")
        elif isinstance(event, UnrecognizedCallback):
            if event.error:
                logger.debug(f"Got info message: {event.raw_text} ({event.error})")
            else:
                logger.debug(f"Got info message: {event.raw_text}")

    def terminate(self, returncode: int | None):
        """
        Enter the terminated state and publish the final event. Only the first
        call has any effect.
        """
        if self.state == SessionState.TERMINATED:
            return
        self.state = SessionState.TERMINATED
        self.returncode = returncode
        self.bus.publish(SessionTerminated(self.interface, returncode))
        self.terminated.set()

    async def wait_terminated(self) -> int | None:
        await self.terminated.wait()
        return self.returncode

    async def stop(self):
        """
        Stop udhcpc. It is asked to terminate first and killed along with its
        process group if it has not exited after the grace period.
        """
        if self.process is None:
            self.terminate(None)
            return

        if self.process.returncode is None:
            logger.info(f"Stopping DHCP client on {self.interface}")
            with suppress(ProcessGone):
                self.elevation.send_signal(self.process.pid, signal.SIGTERM)
            try:
                await asyncio.wait_for(self.process.wait(), self.config.stop_grace_period)
            except asyncio.TimeoutError:
                logger.warning(f"DHCP client on {self.interface} did not exit, killing it")
                try:
                    self.elevation.send_signal(-self.process.pid, signal.SIGKILL)
                except ProcessGone:
                    pass
                except DHCPSessionException as e:
                    logger.error(f"Unable to kill DHCP client on {self.interface}: {e}")
                try:
                    await asyncio.wait_for(self.process.wait(), self.config.stop_grace_period)
                except asyncio.TimeoutError:
                    logger.error(
                        f"DHCP client on {self.interface} (pid {self.process.pid}) "
                        "survived SIGKILL, giving up on it"
                    )

        # Let the publisher flush whatever udhcpc printed before exiting
        if self.publisher_task is not None:
            with suppress(asyncio.TimeoutError):
                await asyncio.wait_for(
                    asyncio.shield(self.publisher_task), self.config.stop_grace_period
                )

        for task in (self.reader_task, self.publisher_task):
            if task is not None and not task.done():
                task.cancel()
                with suppress(asyncio.CancelledError):
                    await task

        self.terminate(self.process.returncode)


async def start_session(interface: str, bus: EventBus | None = None, config: SessionConfig | None = None, elevation=None) -> LeaseSession:
    """
    Start a lease session on ``interface`` and return it.
    """
    session = LeaseSession(interface, bus=bus, config=config, elevation=elevation)
    return await session.start()


async def session_for_profile(profile: NetProfile, **kwargs) -> LeaseSession:
    """
    Start a lease session for a DHCP addressed profile.
    """
    if profile.mode != AddressingMode.DHCP:
        raise ValueError(f"{profile.interface} is not configured for DHCP")
    return await start_session(profile.interface, **kwargs)
