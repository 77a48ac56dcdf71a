"""
Cooperative cancellation for process runs.

A CancellationToken is a fire-once signal shared between the caller that
wants a run abandoned and the code that owns the running process. Callbacks
registered on the token run exactly once when it fires, or immediately if it
already has, and can be unregistered through the returned registration.
"""

import itertools
import threading
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, Optional

from pingrunner.exceptions import RunCancelledError
from pingrunner.logging import get_logger

log = get_logger(__name__)


class CancellationRegistration:
    """Handle for one callback registered on a token."""

    def __init__(self, token: Optional["CancellationToken"] = None, key: Optional[int] = None):
        self._token = token
        self._key = key

    def dispose(self) -> None:
        """Unregister the callback. Safe to call any number of times."""
        token, self._token = self._token, None
        if token is not None and self._key is not None:
            token._unregister(self._key)

    @property
    def disposed(self) -> bool:
        return self._token is None

    def __enter__(self) -> "CancellationRegistration":
        return self

    def __exit__(self, *exc_info) -> None:
        self.dispose()


class CancellationToken:
    """
    Thread-safe, fire-once cancellation signal.

    Usage:
        token = CancellationToken()
        with token.register(lambda: proc.kill()):
            ...
        token.cancel()  # from any thread
    """

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: Dict[int, Callable[[], None]] = {}
        self._keys = itertools.count()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        """Fire the token. Only the first call runs the callbacks."""
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks.values())
            self._callbacks.clear()

        for callback in callbacks:
            _invoke(callback)

    def register(self, callback: Callable[[], None]) -> CancellationRegistration:
        """
        Register ``callback`` to run when the token fires.

        If the token has already fired the callback runs right away on the
        calling thread and the returned registration is already disposed.
        """
        with self._lock:
            if not self._event.is_set():
                key = next(self._keys)
                self._callbacks[key] = callback
                return CancellationRegistration(self, key)

        _invoke(callback)
        return CancellationRegistration()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RunCancelledError()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the token fires; returns False on timeout."""
        return self._event.wait(timeout)

    @property
    def registered_count(self) -> int:
        with self._lock:
            return len(self._callbacks)

    def _unregister(self, key: int) -> None:
        with self._lock:
            self._callbacks.pop(key, None)


def _invoke(callback: Callable[[], None]) -> None:
    # A failing callback must not stop the others or escape into cancel().
    try:
        callback()
    except Exception as e:
        log.warning("cancellation.callback_failed", error=str(e), error_type=type(e).__name__)


@contextmanager
def linked_token(parent: Optional[CancellationToken] = None) -> Iterator[CancellationToken]:
    """
    Yield a child token that fires when ``parent`` does.

    Cancelling the child leaves the parent untouched. The link to the parent
    is removed when the block exits.
    """
    child = CancellationToken()
    if parent is None:
        yield child
        return

    with parent.register(child.cancel):
        yield child
