"""
pingrunner - run ping against one or many hosts with streamed output.

Launches the system ping binary, captures its output line by line, supports
cooperative cancellation that kills the process tree, and fans single-host
runs out across many hosts with a combined result.
"""

__version__ = "0.1.0"

from pingrunner.cancellation import CancellationRegistration, CancellationToken
from pingrunner.exceptions import (
    ExecutionError,
    FanOutError,
    InvalidHostsError,
    LaunchError,
    PingError,
    RunCancelledError,
)
from pingrunner.interfaces.process import Invocation, ProcessLauncher
from pingrunner.invocation import build_ping_invocation
from pingrunner.models import PingSettings, load_settings
from pingrunner.ping import PingProcess, PingResult

__all__ = [
    "CancellationRegistration",
    "CancellationToken",
    "ExecutionError",
    "FanOutError",
    "InvalidHostsError",
    "Invocation",
    "LaunchError",
    "PingError",
    "PingProcess",
    "PingResult",
    "PingSettings",
    "ProcessLauncher",
    "RunCancelledError",
    "__version__",
    "build_ping_invocation",
    "load_settings",
]
