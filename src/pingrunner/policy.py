"""
Exit-code policies applied on top of raw process results.

Both rules here are kept for compatibility with existing callers:

* off Windows, a run whose output contains the reply marker counts as a
  success even if ping exited non-zero;
* a fan-out run reports the sum of its hosts' exit codes.

They live in one place so either can be replaced (e.g. trusting the OS exit
code uniformly, or reporting per-host codes) without touching the runner.
"""

from typing import Iterable, Optional

from pingrunner.invocation import is_windows


def apply_reply_marker_override(
    exit_code: int,
    output: str,
    reply_marker: Optional[str],
    platform: Optional[str] = None,
) -> int:
    """Return 0 when the reply marker appears in ``output`` off Windows."""
    if reply_marker and not is_windows(platform) and reply_marker in output:
        return 0
    return exit_code


def sum_exit_codes(exit_codes: Iterable[int]) -> int:
    """Combine per-host exit codes; 0 only when every host returned 0."""
    return sum(exit_codes)
