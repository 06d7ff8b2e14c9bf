"""Tests for cooperative streaming cancellation."""

from __future__ import annotations

import threading

import pytest

from lotus.core.streaming import StreamingCancellationToken, StreamingCancelledError


class TestStreamingCancellationToken:
    def test_starts_active(self):
        token = StreamingCancellationToken()
        assert not token.is_cancellation_requested
        assert not token.check_cancellation()
        assert token.cancellation_reason is None
        token.throw_if_cancellation_requested()

    def test_cancel_with_reason(self):
        token = StreamingCancellationToken()
        token.cancel("Stop button")

        assert token.is_cancellation_requested
        assert token.check_cancellation()
        assert token.cancellation_reason == "Stop button"
        with pytest.raises(StreamingCancelledError) as exc_info:
            token.throw_if_cancellation_requested()
        assert exc_info.value.reason == "Stop button"
        assert str(exc_info.value) == "Streaming cancelled: Stop button"

    def test_cancel_without_reason(self):
        token = StreamingCancellationToken()
        token.cancel()

        assert token.cancellation_reason is None
        with pytest.raises(StreamingCancelledError, match="Streaming cancelled: User requested"):
            token.throw_if_cancellation_requested()

    def test_first_reason_wins(self):
        token = StreamingCancellationToken()
        token.cancel("first")
        token.cancel("second")
        assert token.cancellation_reason == "first"

    def test_cancel_is_idempotent_without_reason(self):
        token = StreamingCancellationToken()
        token.cancel()
        token.cancel("late reason")
        assert token.is_cancellation_requested
        assert token.cancellation_reason is None

    def test_check_never_raises(self):
        token = StreamingCancellationToken()
        token.cancel("x")
        for _ in range(3):
            assert token.check_cancellation() is True

    def test_cancel_from_many_threads(self):
        token = StreamingCancellationToken()
        threads = [threading.Thread(target=token.cancel, args=(f"r{i}",)) for i in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert token.is_cancellation_requested
        assert token.cancellation_reason in {f"r{i}" for i in range(10)}
