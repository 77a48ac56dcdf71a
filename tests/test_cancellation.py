"""Tests for cancellation tokens and registrations."""
import threading

import pytest

from pingrunner.cancellation import CancellationToken, linked_token
from pingrunner.exceptions import RunCancelledError


class TestCancellationToken:
    """Test CancellationToken."""

    def test_starts_uncancelled(self):
        token = CancellationToken()

        assert token.is_cancelled is False
        token.raise_if_cancelled()

    def test_cancel_runs_callbacks_once(self):
        token = CancellationToken()
        calls = []
        token.register(lambda: calls.append("a"))
        token.register(lambda: calls.append("b"))

        token.cancel()
        token.cancel()

        assert calls == ["a", "b"]
        assert token.is_cancelled is True
        assert token.registered_count == 0

    def test_register_after_cancel_runs_immediately(self):
        token = CancellationToken()
        token.cancel()
        calls = []

        registration = token.register(lambda: calls.append("late"))

        assert calls == ["late"]
        assert registration.disposed is True

    def test_disposed_callback_not_run(self):
        token = CancellationToken()
        calls = []
        registration = token.register(lambda: calls.append("x"))

        registration.dispose()
        token.cancel()

        assert calls == []

    def test_dispose_twice_is_safe(self):
        token = CancellationToken()
        registration = token.register(lambda: None)

        registration.dispose()
        registration.dispose()

        assert token.registered_count == 0

    def test_registration_as_context_manager(self):
        token = CancellationToken()

        with token.register(lambda: None):
            assert token.registered_count == 1

        assert token.registered_count == 0

    def test_failing_callback_does_not_stop_others(self):
        token = CancellationToken()
        calls = []

        def boom():
            raise PermissionError("cannot kill")

        token.register(boom)
        token.register(lambda: calls.append("ok"))

        token.cancel()

        assert calls == ["ok"]

    def test_raise_if_cancelled(self):
        token = CancellationToken()
        token.cancel()

        with pytest.raises(RunCancelledError):
            token.raise_if_cancelled()

    def test_wait_returns_when_cancelled_from_other_thread(self):
        token = CancellationToken()
        timer = threading.Timer(0.05, token.cancel)
        timer.start()

        assert token.wait(timeout=5) is True
        timer.join()

    def test_wait_timeout(self):
        assert CancellationToken().wait(timeout=0.01) is False

    def test_concurrent_cancel_runs_callback_once(self):
        token = CancellationToken()
        calls = []
        lock = threading.Lock()

        def record():
            with lock:
                calls.append(1)

        token.register(record)
        threads = [threading.Thread(target=token.cancel) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert calls == [1]


class TestLinkedToken:
    """Test linked_token."""

    def test_child_fires_with_parent(self):
        parent = CancellationToken()

        with linked_token(parent) as child:
            parent.cancel()
            assert child.is_cancelled is True

    def test_child_cancel_leaves_parent(self):
        parent = CancellationToken()

        with linked_token(parent) as child:
            child.cancel()

        assert parent.is_cancelled is False

    def test_link_removed_on_exit(self):
        parent = CancellationToken()

        with linked_token(parent):
            assert parent.registered_count == 1

        assert parent.registered_count == 0

    def test_already_cancelled_parent(self):
        parent = CancellationToken()
        parent.cancel()

        with linked_token(parent) as child:
            assert child.is_cancelled is True

    def test_no_parent(self):
        with linked_token(None) as child:
            assert child.is_cancelled is False
