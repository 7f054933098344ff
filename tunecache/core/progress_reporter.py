"""
Rate-limits progress notifications for a single download.
"""

import asyncio
import time
from collections.abc import Callable


class ProgressReporter:
    """
    Coalesces frequent byte-count updates into bounded-frequency callbacks.

    Only the most recent values are delivered. The first report is scheduled
    for the next loop iteration; later ones are spaced at least `interval_ms`
    apart. Must be used from inside a running event loop.
    """

    DEFAULT_INTERVAL_MS = 500

    def __init__(
        self,
        callback: Callable[[int, int], None],
        interval_ms: int = DEFAULT_INTERVAL_MS,
    ):
        self._callback = callback
        self._interval = interval_ms / 1000
        self._downloaded_bytes = 0
        self._elapsed_ms = 0
        self._pending: asyncio.TimerHandle | None = None
        self._last_report_time: float | None = None
        self._closed = False

    def update(self, downloaded_bytes: int, elapsed_ms: int) -> None:
        if self._closed:
            return
        self._downloaded_bytes = downloaded_bytes
        self._elapsed_ms = elapsed_ms
        if self._pending is not None:
            return

        delay = 0.0
        if self._last_report_time is not None:
            since_last = time.monotonic() - self._last_report_time
            delay = max(self._interval - since_last, 0.0)
        self._pending = asyncio.get_running_loop().call_later(delay, self._report)

    def _report(self) -> None:
        self._pending = None
        self._last_report_time = time.monotonic()
        self._callback(self._downloaded_bytes, self._elapsed_ms)

    def flush(self) -> None:
        """Delivers a pending report right away."""
        if self._pending is not None and not self._closed:
            self._pending.cancel()
            self._report()

    def close(self) -> None:
        """Drops any pending report; later updates are ignored."""
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None
        self._closed = True
