"""Exceptions raised by pingrunner."""

from typing import TYPE_CHECKING, Iterable, List, Optional

if TYPE_CHECKING:
    from pingrunner.ping import PingResult


class PingError(Exception):
    """Base class for pingrunner errors."""


class InvalidHostsError(PingError, ValueError):
    """No hosts were given to a fan-out run."""


class ProcessError(PingError):
    """A child process could not be run to completion."""

    action = "running"

    def __init__(self, command_line: str, message: Optional[str] = None):
        self.command_line = command_line
        super().__init__(message or f"Error {self.action} '{command_line}'")


class LaunchError(ProcessError):
    """The OS refused to start the child process."""

    action = "starting"


class ExecutionError(ProcessError):
    """Streaming or waiting on a started child process failed."""


class RunCancelledError(PingError):
    """The run's cancellation token fired before or during the run."""

    def __init__(self, message: str = "Run was cancelled"):
        super().__init__(message)


class FanOutError(PingError):
    """
    One or more hosts of a fan-out run failed.

    Carries every failure (nested fan-out failures are flattened) together
    with the combined result of the hosts that did complete.
    """

    def __init__(self, errors: Iterable[BaseException], result: "PingResult"):
        self.errors: List[BaseException] = list(flatten_errors(errors))
        self.result = result
        summary = "; ".join(f"{type(e).__name__}: {e}" for e in self.errors)
        super().__init__(f"{len(self.errors)} host run(s) failed: {summary}")


def flatten_errors(errors: Iterable[BaseException]) -> Iterable[BaseException]:
    for error in errors:
        if isinstance(error, FanOutError):
            yield from error.errors
        else:
            yield error
