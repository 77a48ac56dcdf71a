"""
Pytest fixtures and configuration for pingrunner tests.
"""
import sys
import threading
import time
from typing import List, Optional

import pytest

from pingrunner.interfaces.process import Invocation, ProcessLauncher
from pingrunner.models import PingSettings
from pingrunner.ping import PingProcess

PING_TEMPLATE = """
Pinging * with 32 bytes of data:
Reply from ::1: time<1ms
Reply from ::1: time<1ms
Reply from ::1: time<1ms
Reply from ::1: time<1ms

Ping statistics for ::1:
    Packets: Sent = 4, Received = 4, Lost = 0 (0% loss),
Approximate round trip times in milli-seconds:
    Minimum = 0ms, Maximum = 0ms, Average = 0ms""".strip()

BAD_HOST = "badaddress"
BAD_HOST_MESSAGE = (
    "Ping request could not find host badaddress. Please check the name and try again."
)


def template_lines(host: str) -> List[str]:
    """The canned transcript for ``host``."""
    lines = PING_TEMPLATE.split("\n")
    lines[0] = lines[0].replace("*", host)
    return lines


class FakeLauncher(ProcessLauncher):
    """
    Replays a canned ping transcript instead of starting a process.

    Keeps the launcher timing contract: lines, then a None sentinel on both
    streams, then the exit code. Waiting is interrupted by the token.
    """

    def __init__(self, delay: float = 0.0, exit_code: int = 0):
        self.delay = delay
        self.exit_code = exit_code
        self.invocations = []
        self.thread_names = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def launch(self, invocation, on_output, on_error, token=None) -> int:
        with self._lock:
            self.invocations.append(invocation)
            self.thread_names.append(threading.current_thread().name)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            host = invocation.arguments[-1]
            if token is not None and token.wait(self.delay):
                _emit(on_output, None)
                _emit(on_error, None)
                return -9
            if token is None and self.delay:
                time.sleep(self.delay)

            if host == BAD_HOST:
                _emit(on_output, BAD_HOST_MESSAGE)
                _emit(on_output, None)
                _emit(on_error, None)
                return 1

            for line in template_lines(host):
                _emit(on_output, line)
            _emit(on_output, None)
            _emit(on_error, None)
            return self.exit_code
        finally:
            with self._lock:
                self.active -= 1


def _emit(sink, line: Optional[str]) -> None:
    if sink is not None:
        sink(line)


@pytest.fixture
def fake_launcher():
    return FakeLauncher()


@pytest.fixture
def pinger(fake_launcher):
    """PingProcess wired to the fake launcher on a POSIX platform."""
    with PingProcess(launcher=fake_launcher, settings=PingSettings(), platform="linux") as p:
        yield p


@pytest.fixture
def python_invocation():
    """Build an invocation that runs a Python snippet in a child process."""
    def build(code: str, **kwargs) -> Invocation:
        return Invocation(sys.executable, ("-c", code), **kwargs)
    return build


@pytest.fixture
def ping_lines():
    """The canned transcript lines for a host."""
    return template_lines


@pytest.fixture
def bad_host_message():
    """What the fake launcher prints for BAD_HOST."""
    return BAD_HOST_MESSAGE


# Markers for test categories
def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "e2e: End-to-end tests (run the real ping binary)")
    config.addinivalue_line("markers", "slow: Slow tests")
