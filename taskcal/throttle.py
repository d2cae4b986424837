from __future__ import annotations

import threading
import time
from typing import Callable, TypeVar

T = TypeVar("T")


class CallSpacer:
    """Serialize remote calls so consecutive calls start at least ``min_interval_ms`` apart."""

    def __init__(
        self,
        min_interval_ms: int,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.min_interval = max(0, int(min_interval_ms)) / 1000.0
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last_call_at: float | None = None

    def _wait_for_slot(self) -> None:
        with self._lock:
            now = self._clock()
            if self._last_call_at is None:
                wait = 0.0
            else:
                wait = max(0.0, self.min_interval - (now - self._last_call_at))
            # Reserve the slot before sleeping so concurrent callers queue behind it.
            self._last_call_at = now + wait
        if wait > 0:
            self._sleep(wait)

    def call(self, fn: Callable[..., T], *args: object, **kwargs: object) -> T:
        self._wait_for_slot()
        return fn(*args, **kwargs)
