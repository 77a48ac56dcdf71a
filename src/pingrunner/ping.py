"""
Run ping against one or many hosts.

PingProcess.run is the synchronous primitive: it launches one ping process,
collects every line it prints and returns a PingResult once the process has
exited and both of its streams have closed. The async methods offload that
primitive onto a worker pool or a dedicated thread, and run_many_async fans
it out across several hosts.
"""

import asyncio
import functools
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterator, List, Optional, Sequence, TypeVar, Union

from pingrunner.backends.subprocess_launcher import SubprocessLauncher
from pingrunner.cancellation import CancellationToken, linked_token
from pingrunner.exceptions import FanOutError, InvalidHostsError, RunCancelledError
from pingrunner.interfaces.process import Invocation, LineSink, ProcessLauncher
from pingrunner.invocation import build_ping_invocation
from pingrunner.logging import configure_from_settings, get_logger, log_operation
from pingrunner.models import PingSettings, load_settings
from pingrunner.policy import apply_reply_marker_override, sum_exit_codes

log = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class PingResult:
    """Exit code and captured output of a run."""

    exit_code: int
    std_output: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    def __iter__(self) -> Iterator[Any]:
        return iter((self.exit_code, self.std_output))


class _LineCollector:
    """Sink that keeps every non-sentinel line, in arrival order."""

    def __init__(self):
        self._lines: List[str] = []
        self._lock = threading.Lock()

    def __call__(self, line: Optional[str]) -> None:
        if line is not None:
            with self._lock:
                self._lines.append(line)

    def text(self) -> str:
        with self._lock:
            return "\n".join(self._lines)


def _run_on_dedicated_thread(func: Callable[[], T], name: str) -> "asyncio.Future[T]":
    """Run ``func`` on a new daemon thread and expose it as an awaitable."""
    loop = asyncio.get_running_loop()
    future = loop.create_future()

    def settle(result: Any, error: Optional[BaseException]) -> None:
        if future.cancelled():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(result)

    def target() -> None:
        result, error = None, None
        try:
            result = func()
        except BaseException as e:
            error = e
        try:
            loop.call_soon_threadsafe(settle, result, error)
        except RuntimeError:
            log.debug("dedicated_thread.loop_closed", thread=name)

    threading.Thread(target=target, name=name, daemon=True).start()
    return future


class PingProcess:
    """
    Ping hosts, synchronously or from asyncio code.

    Usage:
        with PingProcess() as pinger:
            result = pinger.run("localhost")
            result = asyncio.run(pinger.run_many_async(["localhost", "127.0.0.1"]))
    """

    def __init__(
        self,
        launcher: Optional[ProcessLauncher] = None,
        settings: Optional[PingSettings] = None,
        platform: Optional[str] = None,
    ):
        self.launcher = launcher or SubprocessLauncher()
        self.settings = settings or PingSettings()
        self.platform = platform
        self._executor: Optional[ThreadPoolExecutor] = None
        self._lock = threading.Lock()

    @classmethod
    def from_config(
        cls,
        config_file: Optional[Path] = None,
        launcher: Optional[ProcessLauncher] = None,
        configure_logging: bool = False,
    ) -> "PingProcess":
        """
        Create a PingProcess from a YAML config file and the environment.

        ``log_level`` and ``log_json`` only take effect when logging is
        configured from the settings: pass ``configure_logging=True`` here, or
        call ``configure_from_settings`` yourself. Library code never touches
        logging configuration on its own.
        """
        settings = load_settings(config_file)
        if configure_logging:
            configure_from_settings(settings)
        return cls(launcher=launcher, settings=settings)

    @property
    def executor(self) -> ThreadPoolExecutor:
        """Shared worker pool, created on first use."""
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.settings.max_workers,
                    thread_name_prefix="pingrunner",
                )
            return self._executor

    def close(self) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)

    def __enter__(self) -> "PingProcess":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def build_invocation(self, host: str) -> Invocation:
        return build_ping_invocation(host, self.settings, self.platform)

    def run(self, host: str, token: Optional[CancellationToken] = None) -> PingResult:
        """Ping ``host`` once and wait for the result."""
        invocation = self.build_invocation(host)
        collector = _LineCollector()

        with log_operation(log, "ping", host=host) as oplog:
            exit_code = self._execute(invocation, collector, collector, token)
            output = collector.text()
            exit_code = apply_reply_marker_override(
                exit_code, output, self.settings.reply_marker, self.platform
            )
            oplog.debug("ping.result", exit_code=exit_code)

        return PingResult(exit_code, output)

    async def run_task_async(self, host: str) -> PingResult:
        """Run ``run(host)`` on the worker pool."""
        return await self._offload(functools.partial(self.run, host), None)

    async def run_async(
        self, host: str, token: Optional[CancellationToken] = None
    ) -> PingResult:
        """
        Run ``run(host)`` on the worker pool, honoring ``token``.

        Raises RunCancelledError if the token fired before or during the run,
        even when the process managed to finish.
        """
        return await self._offload(functools.partial(self.run, host), token)

    async def run_long_running_async(
        self, host: str, token: Optional[CancellationToken] = None
    ) -> PingResult:
        """Like run_async, but on a dedicated thread outside the pool."""
        return await self._offload(
            functools.partial(self.run, host), token, dedicated_thread=f"ping-{host}"
        )

    async def run_invocation_long_running_async(
        self,
        invocation: Invocation,
        on_output: Optional[LineSink] = None,
        on_error: Optional[LineSink] = None,
        token: Optional[CancellationToken] = None,
    ) -> int:
        """Run a raw invocation on a dedicated thread and return its exit code."""
        return await self._offload(
            functools.partial(self._execute, invocation, on_output, on_error),
            token,
            dedicated_thread=f"run-{invocation.command}",
        )

    async def run_many_async(
        self,
        hosts: Union[Sequence[str], str],
        token: Optional[CancellationToken] = None,
    ) -> PingResult:
        """
        Ping every host concurrently and combine the results.

        The combined output joins each host's output in completion order; the
        combined exit code is the sum of the hosts' codes. If any host fails,
        FanOutError carries every failure and the combined partial result.
        """
        if isinstance(hosts, str):
            hosts = [hosts]
        if not hosts:
            raise InvalidHostsError("At least one host must be provided.")

        outputs: List[str] = []
        outputs_lock = threading.Lock()

        def run_one(host: str, child: CancellationToken) -> int:
            result = self.run(host, child)
            if result.std_output and result.std_output.strip():
                with outputs_lock:
                    outputs.append(result.std_output)
            return result.exit_code

        with log_operation(log, "ping_many", hosts=len(hosts)) as oplog:
            outcomes = await asyncio.gather(
                *(self._offload(functools.partial(run_one, host), token) for host in hosts),
                return_exceptions=True,
            )

            errors = [o for o in outcomes if isinstance(o, BaseException)]
            exit_code = sum_exit_codes(o for o in outcomes if not isinstance(o, BaseException))
            with outputs_lock:
                result = PingResult(exit_code, "\n".join(outputs))

            if token is not None and token.is_cancelled:
                raise RunCancelledError("Fan-out run was cancelled")
            if errors:
                raise FanOutError(errors, result)
            oplog.info("ping_many.result", exit_code=exit_code)

        return result

    def _execute(
        self,
        invocation: Invocation,
        on_output: Optional[LineSink],
        on_error: Optional[LineSink],
        token: Optional[CancellationToken],
    ) -> int:
        if token is not None:
            token.raise_if_cancelled()
        exit_code = self.launcher.launch(invocation, on_output, on_error, token)
        if token is not None:
            token.raise_if_cancelled()
        return exit_code

    async def _offload(
        self,
        func: Callable[[CancellationToken], T],
        token: Optional[CancellationToken],
        dedicated_thread: Optional[str] = None,
    ) -> T:
        """
        Run ``func(child_token)`` off the event loop and await it.

        ``child_token`` fires with ``token`` and also when the awaiting task is
        cancelled, so an abandoned await never leaves a process running.
        """
        if token is not None:
            token.raise_if_cancelled()

        with linked_token(token) as child:
            if dedicated_thread:
                future = _run_on_dedicated_thread(functools.partial(func, child), dedicated_thread)
            else:
                loop = asyncio.get_running_loop()
                future = loop.run_in_executor(self.executor, func, child)
            try:
                result = await future
            except asyncio.CancelledError:
                child.cancel()
                raise

        if token is not None:
            token.raise_if_cancelled()
        return result
