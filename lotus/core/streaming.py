"""Cooperative cancellation for streamed generations.

Two ways to observe a cancellation request:
- ``check_cancellation()`` never raises; poll it inside per-chunk callbacks.
- ``throw_if_cancellation_requested()`` raises ``StreamingCancelledError``;
  call it at coarse points, after the stream has returned.

Content accumulated before the request is kept by the caller.
"""

from __future__ import annotations

import threading

DEFAULT_CANCEL_REASON = "User requested"


class StreamingCancelledError(Exception):
    """A streamed generation was cancelled on request."""

    def __init__(self, reason: str | None = None) -> None:
        self.reason = reason
        super().__init__(f"Streaming cancelled: {reason or DEFAULT_CANCEL_REASON}")


class StreamingCancellationToken:
    """One-way flag: active until ``cancel()``, then cancelled for good."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._cancelled = False
        self._reason: str | None = None

    def cancel(self, reason: str | None = None) -> None:
        """Request cancellation. Later calls keep the first reason."""
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            self._reason = reason

    @property
    def is_cancellation_requested(self) -> bool:
        return self._cancelled

    @property
    def cancellation_reason(self) -> str | None:
        return self._reason

    def check_cancellation(self) -> bool:
        """Non-raising poll."""
        return self._cancelled

    def throw_if_cancellation_requested(self) -> None:
        if self._cancelled:
            raise StreamingCancelledError(self._reason)
