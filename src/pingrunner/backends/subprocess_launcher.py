"""Subprocess process launcher implementation."""

import os
import signal
import subprocess
import sys
import threading
import time
from typing import IO, Dict, List, Optional

import psutil

from ..cancellation import CancellationRegistration, CancellationToken
from ..exceptions import ExecutionError, LaunchError
from ..interfaces.process import Invocation, LineSink, ProcessLauncher
from ..logging import get_logger

log = get_logger(__name__)

# How often a running process is re-scanned for descendants.
POLL_INTERVAL = 0.1
# After a kill, how long a pipe may stay open before its pump is detached.
DETACH_GRACE = 2.0

_KILL_ERRORS = (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess)


class StreamPump(threading.Thread):
    """
    Read one pipe line by line and hand each line to a sink.

    The sink receives exactly one final ``None``: when the pipe closes
    (exit, crash or kill), or earlier if the pump is detached. If the sink
    raises, the first error is kept on ``error`` and the pipe is still
    drained to EOF so the writer never blocks on a full pipe. The pump
    closes its pipe once it reaches EOF.
    """

    def __init__(self, stream: IO[str], sink: Optional[LineSink], name: str):
        super().__init__(name=name, daemon=True)
        self.stream = stream
        self._sink = sink
        self._sink_lock = threading.Lock()
        self._closed = False
        self.error: Optional[BaseException] = None
        self.lines = 0

    def run(self) -> None:
        try:
            for line in self.stream:
                self.lines += 1
                self._deliver(line.rstrip("\r\n"))
        except (OSError, ValueError) as e:
            self._record(e)
        finally:
            self.detach()
            self.stream.close()

    def detach(self) -> None:
        """Send the sentinel now; lines read after this are dropped."""
        with self._sink_lock:
            if self._closed:
                return
            self._closed = True
            self._call_sink(None)

    def _deliver(self, line: str) -> None:
        with self._sink_lock:
            if not self._closed:
                self._call_sink(line)

    def _call_sink(self, line: Optional[str]) -> None:
        if self._sink is None:
            return
        try:
            self._sink(line)
        except Exception as e:
            self._record(e)

    def _record(self, error: BaseException) -> None:
        if self.error is None:
            self.error = error
            log.warning("stream.failed", stream=self.name, error=str(error), error_type=type(error).__name__)


class ProcessTree:
    """
    A started process plus every descendant seen while it ran.

    Descendants are remembered even after they are re-parented, so killing
    the tree still reaches a grandchild whose parent has already exited. On
    POSIX the child leads its own session, and its process group is killed
    as well.
    """

    def __init__(self, proc: subprocess.Popen):
        self._pid = proc.pid
        self._lock = threading.Lock()
        self._known: Dict[int, psutil.Process] = {}
        try:
            self._root: Optional[psutil.Process] = psutil.Process(proc.pid)
        except _KILL_ERRORS:
            self._root = None
        self.refresh()

    def refresh(self) -> None:
        """Add the root's current descendants to the snapshot."""
        if self._root is None:
            return
        try:
            if not self._root.is_running():
                return
            found = [self._root] + self._root.children(recursive=True)
        except _KILL_ERRORS:
            return
        with self._lock:
            for proc in found:
                self._known.setdefault(proc.pid, proc)

    def kill(self) -> None:
        """Kill the group and every known process, descendants first."""
        self.refresh()
        if sys.platform != "win32":
            try:
                os.killpg(self._pid, signal.SIGKILL)
            except (ProcessLookupError, PermissionError) as e:
                log.debug("process.killpg_failed", pgid=self._pid, error=str(e))

        with self._lock:
            victims = list(self._known.values())
        for proc in reversed(victims):
            try:
                proc.kill()
            except _KILL_ERRORS as e:
                log.debug("process.kill_failed", pid=proc.pid, error=str(e))


def kill_process_tree(pid: int) -> None:
    """Kill ``pid`` and all of its descendants, children first."""
    try:
        root = psutil.Process(pid)
        victims = root.children(recursive=True) + [root]
    except (psutil.NoSuchProcess, psutil.ZombieProcess):
        return
    except psutil.AccessDenied as e:
        log.debug("process.kill_failed", pid=pid, error=str(e))
        return

    for proc in victims:
        try:
            proc.kill()
        except _KILL_ERRORS as e:
            log.debug("process.kill_failed", pid=proc.pid, error=str(e))


def _creation_flags(invocation: Invocation) -> int:
    if invocation.hide_window and sys.platform.startswith("win"):
        return subprocess.CREATE_NO_WINDOW
    return 0


class SubprocessLauncher(ProcessLauncher):
    """Launch processes with the subprocess module, pumping output on threads."""

    def launch(
        self,
        invocation: Invocation,
        on_output: Optional[LineSink],
        on_error: Optional[LineSink],
        token: Optional[CancellationToken] = None,
    ) -> int:
        """Run ``invocation`` and return its exit code once fully drained."""
        command_line = invocation.command_line

        try:
            proc = subprocess.Popen(
                invocation.argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE if invocation.capture_stdout else subprocess.DEVNULL,
                stderr=subprocess.PIPE if invocation.capture_stderr else subprocess.DEVNULL,
                shell=False,
                text=True,
                errors="replace",
                start_new_session=True,
                creationflags=_creation_flags(invocation),
            )
        except (OSError, ValueError) as e:
            log.warning("process.launch_failed", command=command_line, error=str(e))
            raise LaunchError(command_line) from e

        log.debug("process.started", pid=proc.pid, command=command_line)
        tree = ProcessTree(proc)
        registration = CancellationRegistration()
        pumps: List[StreamPump] = []
        completed = False

        try:
            if token is not None:
                registration = token.register(tree.kill)
            pumps = self._start_pumps(proc, on_output, on_error)
            exit_code = self._wait(proc, tree)
            self._drain(pumps, tree, token)
            completed = True
        except Exception as e:
            raise ExecutionError(command_line) from e
        finally:
            registration.dispose()
            if not completed:
                tree.kill()
                self._settle(pumps)
            self._release(proc, pumps)

        failed = [pump.error for pump in pumps if pump.error is not None]
        if failed:
            raise ExecutionError(command_line) from failed[0]

        log.debug(
            "process.exited",
            pid=proc.pid,
            exit_code=exit_code,
            lines=sum(pump.lines for pump in pumps),
        )
        return exit_code

    def _start_pumps(
        self,
        proc: subprocess.Popen,
        on_output: Optional[LineSink],
        on_error: Optional[LineSink],
    ) -> List[StreamPump]:
        pumps = []
        for stream, sink, label in ((proc.stdout, on_output, "stdout"), (proc.stderr, on_error, "stderr")):
            if stream is not None:
                pumps.append(StreamPump(stream, sink, name=f"{label}-{proc.pid}"))
            elif sink is not None:
                # Not captured: the stream is closed from the start.
                sink(None)
        for pump in pumps:
            pump.start()
        return pumps

    def _wait(self, proc: subprocess.Popen, tree: ProcessTree) -> int:
        while True:
            try:
                return proc.wait(timeout=POLL_INTERVAL)
            except subprocess.TimeoutExpired:
                tree.refresh()

    def _drain(
        self,
        pumps: List[StreamPump],
        tree: ProcessTree,
        token: Optional[CancellationToken],
    ) -> None:
        """
        Wait for every pump to reach EOF.

        A descendant can keep a pipe open after the root exits. Once the token
        fires the tree is killed; a pipe still open after DETACH_GRACE has its
        pump detached and left to finish in the background.
        """
        while any(pump.is_alive() for pump in pumps):
            for pump in pumps:
                pump.join(POLL_INTERVAL)
            if token is None or not token.is_cancelled:
                continue
            tree.kill()
            self._settle(pumps)
            return

    def _settle(self, pumps: List[StreamPump]) -> None:
        deadline = time.monotonic() + DETACH_GRACE
        for pump in pumps:
            pump.join(max(0.0, deadline - time.monotonic()))
            if pump.is_alive():
                log.warning("stream.detached", stream=pump.name)
                pump.detach()

    def _release(self, proc: subprocess.Popen, pumps: List[StreamPump]) -> None:
        # Pumps close their own pipes; a pipe without a started pump is closed here.
        owned = [pump.stream for pump in pumps]
        for stream in (proc.stdout, proc.stderr):
            if stream is not None and all(stream is not s for s in owned):
                stream.close()
        proc.wait()
