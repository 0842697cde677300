"""Per-interval upload and download byte counters."""

from __future__ import annotations

import threading
from typing import Optional


class Traffic:
    """Counts bytes and publishes the totals of the last full interval."""

    def __init__(self, interval: float = 1.0) -> None:
        self.interval = interval
        self._lock = threading.Lock()
        self._up_count = 0
        self._down_count = 0
        self._up_total = 0
        self._down_total = 0
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def up(self, n: int) -> None:
        """Record ``n`` uploaded bytes."""
        with self._lock:
            self._up_count += n

    def down(self, n: int) -> None:
        """Record ``n`` downloaded bytes."""
        with self._lock:
            self._down_count += n

    def tick(self) -> None:
        """Close the current interval: its counts become the totals."""
        with self._lock:
            self._up_total, self._up_count = self._up_count, 0
            self._down_total, self._down_count = self._down_count, 0

    def now(self) -> tuple[int, int]:
        """Bytes (up, down) counted in the last closed interval."""
        with self._lock:
            return self._up_total, self._down_total

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Tick every ``interval`` seconds in a background thread."""
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop the background ticking and wait for it to end."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval):
            self.tick()

    def __enter__(self) -> "Traffic":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()