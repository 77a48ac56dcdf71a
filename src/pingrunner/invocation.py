"""Build ping invocations for a single host."""

import sys
from typing import Optional

from pingrunner.interfaces.process import Invocation
from pingrunner.models import PingSettings


def is_windows(platform: Optional[str] = None) -> bool:
    """True when ``platform`` (default: the running one) is Windows."""
    return (platform or sys.platform).startswith("win")


def build_ping_invocation(
    host: str,
    settings: Optional[PingSettings] = None,
    platform: Optional[str] = None,
) -> Invocation:
    """
    Return the invocation that pings ``host`` once.

    ``ping -c 1 <host>`` on POSIX, ``ping -n 1 <host>`` on Windows. The host
    is passed through as-is; a name that does not resolve fails in the child.
    """
    if not host or not host.strip():
        raise ValueError("host cannot be empty")

    settings = settings or PingSettings()
    count_flag = "-n" if is_windows(platform) else "-c"

    return Invocation(
        command=settings.command,
        arguments=(count_flag, str(settings.probe_count), host),
    )
