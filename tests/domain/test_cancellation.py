"""Tests for cooperative cancellation tokens."""

import threading

import pytest

from stageforge.domain.cancellation import CancellationToken
from stageforge.domain.exceptions import OperationCancelled


class TestCancellationToken:
    """Tests for CancellationToken."""

    def test_initially_not_cancelled(self):
        token = CancellationToken()
        assert not token.cancelled
        assert token.reason is None
        token.raise_if_cancelled()

    def test_cancel_sets_reason(self):
        token = CancellationToken()
        token.cancel("user request")
        assert token.cancelled
        assert token.reason == "user request"

    def test_second_cancel_keeps_first_reason(self):
        token = CancellationToken()
        token.cancel("first")
        token.cancel("second")
        assert token.reason == "first"

    def test_raise_if_cancelled(self):
        token = CancellationToken()
        token.cancel("stop")
        with pytest.raises(OperationCancelled, match="stop"):
            token.raise_if_cancelled()

    def test_cancel_propagates_to_children(self):
        parent = CancellationToken()
        child = parent.child()
        grandchild = child.child()
        parent.cancel("workflow cancelled")
        assert child.cancelled
        assert grandchild.reason == "workflow cancelled"

    def test_child_cancel_does_not_reach_parent(self):
        parent = CancellationToken()
        child = parent.child()
        child.cancel()
        assert not parent.cancelled

    def test_child_of_cancelled_parent_starts_cancelled(self):
        parent = CancellationToken()
        parent.cancel("late")
        assert parent.child().reason == "late"

    def test_on_cancel_callback(self):
        token = CancellationToken()
        reasons = []
        token.on_cancel(reasons.append)
        token.cancel("why")
        assert reasons == ["why"]

    def test_on_cancel_after_cancel_runs_immediately(self):
        token = CancellationToken()
        token.cancel("done")
        reasons = []
        token.on_cancel(reasons.append)
        assert reasons == ["done"]

    def test_wait_returns_when_cancelled_from_other_thread(self):
        token = CancellationToken()
        timer = threading.Timer(0.05, token.cancel)
        timer.start()
        try:
            assert token.wait(5.0) is True
        finally:
            timer.cancel()

    def test_wait_times_out(self):
        assert CancellationToken().wait(0.01) is False
