"""CancelToken tests."""

from __future__ import annotations

import threading

from rcopy_runner.runtime.cancellation import CancelToken


class TestCancelToken:
    """Test the cancellation token."""

    def test_initial_state(self):
        token = CancelToken()

        assert token.is_cancelled is False
        assert repr(token) == "CancelToken(cancelled=False)"

    def test_cancel_is_idempotent(self):
        token = CancelToken()
        calls: list[int] = []
        token.register(lambda: calls.append(1))

        assert token.cancel() is True
        assert token.cancel() is False
        assert token.is_cancelled is True
        assert calls == [1]

    def test_callbacks_run_in_registration_order(self):
        token = CancelToken()
        order: list[str] = []
        token.register(lambda: order.append("first"))
        token.register(lambda: order.append("second"))

        token.cancel()

        assert order == ["first", "second"]

    def test_register_after_cancel_runs_immediately(self):
        token = CancelToken()
        token.cancel()
        calls: list[int] = []

        unregister = token.register(lambda: calls.append(1))

        assert calls == [1]
        unregister()

    def test_unregister(self):
        token = CancelToken()
        calls: list[int] = []
        unregister = token.register(lambda: calls.append(1))

        unregister()
        unregister()
        token.cancel()

        assert calls == []

    def test_failing_callback_does_not_block_others(self):
        token = CancelToken()
        calls: list[str] = []

        def broken() -> None:
            raise RuntimeError("boom")

        token.register(broken)
        token.register(lambda: calls.append("ok"))

        assert token.cancel() is True
        assert calls == ["ok"]

    def test_concurrent_cancel_fires_once(self):
        token = CancelToken()
        calls: list[int] = []
        lock = threading.Lock()

        def record() -> None:
            with lock:
                calls.append(1)

        token.register(record)
        barrier = threading.Barrier(8)
        results: list[bool] = []

        def worker() -> None:
            barrier.wait()
            results.append(token.cancel())

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 1
        assert calls == [1]

    def test_callback_may_register_without_deadlock(self):
        token = CancelToken()
        calls: list[str] = []

        def outer() -> None:
            token.register(lambda: calls.append("inner"))
            calls.append("outer")

        token.register(outer)
        token.cancel()

        assert calls == ["inner", "outer"]
