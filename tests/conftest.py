"""
Pytest config
"""

import asyncio
import functools
import inspect
import logging
import os
import pytest
import textwrap
import traceback

from dhcpsession.bus import EventBus
from dhcpsession.config import SessionConfig


logger = logging.getLogger("conftest")


def pytest_configure(config):
    if config.option.logdebug:
        config.option.log_cli_level = "DEBUG"


def pytest_addoption(parser):
    parser.addoption("--logdebug", action="store_true", help="Enable debug logging")


def wrap_async_test(test_fn):
    @functools.wraps(test_fn)
    def wrapped_async_test(*args, **kwargs):
        async def async_test(*args, **kwargs):
            try:
                async with asyncio.timeout(10):
                    await test_fn(*args, **kwargs)
            except asyncio.TimeoutError as e:
                if e.__cause__:
                    frame = traceback.extract_tb(e.__cause__.__traceback__)[-1]
                    errormsg = f"Timed out during test execution at {frame.filename}:{frame.lineno}"
                else:
                    errormsg = "Timed out during test execution"

                logger.error(errormsg)
                pytest.fail(errormsg)
            finally:
                logger.info("Test completed")

        asyncio.run(async_test(*args, **kwargs))

    return wrapped_async_test


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem):
    if hasattr(pyfuncitem.obj, "hypothesis"):
        if inspect.iscoroutinefunction(pyfuncitem.obj.hypothesis.inner_test):
            pyfuncitem.obj.hypothesis.inner_test = wrap_async_test(
                pyfuncitem.obj.hypothesis.inner_test
            )
    elif inspect.iscoroutinefunction(pyfuncitem.obj):
        pyfuncitem.obj = wrap_async_test(pyfuncitem.obj)


class EventRecorder:
    """
    Subscriber that keeps every event it receives.
    """
    def __init__(self):
        self.events = []
        self.changed = asyncio.Event()

    def on_lease_event(self, event):
        self.events.append(event)
        self.changed.set()

    def of_type(self, event_class):
        return [event for event in self.events if isinstance(event, event_class)]

    async def wait_for(self, event_class, count=1):
        """
        Wait until ``count`` events of ``event_class`` have been received and
        return the last of them.
        """
        while len(self.of_type(event_class)) < count:
            self.changed.clear()
            await self.changed.wait()
        return self.of_type(event_class)[count - 1]


@pytest.fixture
def recorder():
    return EventRecorder()


@pytest.fixture
def bus():
    bus = EventBus()
    yield bus
    bus.close()


# Stands in for udhcpc. Arguments are --interface IF --script SCRIPT --foreground
# and state changes are reported through the callback script, like udhcpc does.
FAKE_UDHCPC_HEADER = """\
#!/bin/sh
interface=$2
script=$4
export interface

notify() {
    ip=10.0.0.50 broadcast=10.0.0.255 subnet=255.255.255.0 router=10.0.0.1 \\
    domain=example.com dns="10.0.0.1 10.0.0.2" message="$2" sh "$script" "$1"
}

echo "udhcpc: started, v1.36.1"
"""

FAKE_UDHCPC_DEFAULT = """\
trap 'notify renew "lease renewed"' USR1
trap 'sh "$script" deconfig' USR2
trap 'exit 0' TERM
sh "$script" deconfig
notify bound "lease obtained"
while :; do sleep 0.05; done
"""


@pytest.fixture
def fake_udhcpc(tmp_path):
    """
    Factory writing an executable fake udhcpc. The body runs after the common
    header, which defines ``notify <event> <message>``.
    """
    def factory(body=FAKE_UDHCPC_DEFAULT, name="udhcpc"):
        path = tmp_path / name
        path.write_text(FAKE_UDHCPC_HEADER + textwrap.dedent(body))
        os.chmod(path, 0o755)
        return str(path)

    return factory


@pytest.fixture
def session_config(fake_udhcpc):
    def factory(body=FAKE_UDHCPC_DEFAULT, **kwargs):
        kwargs.setdefault("stop_grace_period", 1.0)
        return SessionConfig(executable=fake_udhcpc(body), **kwargs)

    return factory
