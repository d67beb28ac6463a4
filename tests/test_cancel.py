"""Tests for cancellation tokens and visibility capabilities."""

from sselink.client.cancel import CancelToken
from sselink.client.visibility import ManualVisibility, NullVisibility


class TestCancelToken:
    def test_callbacks_run_once(self):
        token = CancelToken()
        calls = []
        token.add_callback(lambda: calls.append(1))
        token.cancel("first")
        token.cancel("second")
        assert calls == [1]
        assert token.cancelled
        assert token.reason == "first"

    def test_callback_after_cancel_runs_immediately(self):
        token = CancelToken()
        token.cancel()
        calls = []
        token.add_callback(lambda: calls.append(1))
        assert calls == [1]

    def test_remove_callback(self):
        token = CancelToken()
        calls = []
        remove = token.add_callback(lambda: calls.append(1))
        remove()
        remove()
        token.cancel()
        assert calls == []

    def test_failing_callback_does_not_block_others(self):
        token = CancelToken()
        calls = []

        def broken():
            raise RuntimeError("broken")

        token.add_callback(broken)
        token.add_callback(lambda: calls.append(1))
        token.cancel()
        assert calls == [1]


class TestVisibility:
    def test_null_visibility(self):
        visibility = NullVisibility()
        assert not visibility.is_hidden()
        unsubscribe = visibility.subscribe(lambda: None)
        unsubscribe()

    def test_manual_visibility_notifies_on_change(self):
        visibility = ManualVisibility()
        seen = []
        unsubscribe = visibility.subscribe(lambda: seen.append(visibility.is_hidden()))
        visibility.set_hidden(True)
        visibility.set_hidden(True)
        visibility.set_hidden(False)
        assert seen == [True, False]

        unsubscribe()
        unsubscribe()
        visibility.set_hidden(True)
        assert seen == [True, False]
        assert visibility.listener_count == 0
