"""Abstract interface for launching a process with line-streamed output."""

import shlex
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, List, Optional, Tuple

if TYPE_CHECKING:
    from pingrunner.cancellation import CancellationToken

# Receives one line (terminator stripped) or None once the stream has closed.
LineSink = Callable[[Optional[str]], None]


@dataclass(frozen=True)
class Invocation:
    """A single, immutable command invocation."""

    command: str
    arguments: Tuple[str, ...] = ()
    capture_stdout: bool = True
    capture_stderr: bool = True
    hide_window: bool = True

    @property
    def argv(self) -> List[str]:
        return [self.command, *self.arguments]

    @property
    def command_line(self) -> str:
        return shlex.join(self.argv)


class ProcessLauncher(ABC):
    """Abstract interface for process execution."""

    @abstractmethod
    def launch(
        self,
        invocation: Invocation,
        on_output: Optional[LineSink],
        on_error: Optional[LineSink],
        token: Optional["CancellationToken"] = None,
    ) -> int:
        """
        Run ``invocation`` to completion and return its exit code.

        Each captured stream delivers its lines to its sink in order and then
        exactly one ``None``; a stream that is not captured delivers only the
        ``None``. Returns only after the process has exited and both sentinels
        have been delivered. Firing ``token`` kills the process tree, including
        descendants still holding a pipe after the process itself has exited;
        the exit code of the process is returned.
        """
        pass
