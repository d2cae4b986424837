from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, wait
from dataclasses import dataclass, field
from typing import Any, Callable

from taskcal.models import TaskSnapshot

logger = logging.getLogger(__name__)


@dataclass
class _TaskSyncState:
    timer: threading.Timer | None = None
    waiters: list[Future] = field(default_factory=list)
    in_flight: Future | None = None

    @property
    def idle(self) -> bool:
        return self.timer is None and not self.waiters and self.in_flight is None


class SyncCoordinator:
    """
    Debounce task edits and run at most one sync per task path at a time.

    Every ``schedule`` call returns a Future. Calls that land inside the same debounce
    window share the outcome of the single sync that finally runs. When the timer fires
    while an earlier sync for the path is still running, the new sync waits for it
    (ignoring its outcome) and only then re-reads the task, so it always works on the
    latest snapshot.
    """

    def __init__(
        self,
        load_task: Callable[[str], TaskSnapshot | None],
        run_sync: Callable[[TaskSnapshot], Any],
        *,
        debounce_ms: int = 500,
    ) -> None:
        self.load_task = load_task
        self.run_sync = run_sync
        self.debounce_seconds = max(0, int(debounce_ms)) / 1000.0
        self._lock = threading.Lock()
        self._states: dict[str, _TaskSyncState] = {}
        self._destroyed = False

    def schedule(self, path: str) -> Future:
        waiter: Future = Future()
        with self._lock:
            if self._destroyed:
                raise RuntimeError("SyncCoordinator has been destroyed")
            state = self._states.setdefault(path, _TaskSyncState())
            if state.timer is not None:
                state.timer.cancel()
            state.waiters.append(waiter)
            timer = threading.Timer(self.debounce_seconds, self._fire, args=(path,))
            timer.daemon = True
            state.timer = timer
            # Start under the lock so _fire always sees this timer registered.
            timer.start()
        return waiter

    def pending_paths(self) -> list[str]:
        with self._lock:
            return sorted(path for path, state in self._states.items() if state.timer is not None)

    def in_flight_paths(self) -> list[str]:
        with self._lock:
            return sorted(path for path, state in self._states.items() if state.in_flight is not None)

    def _fire(self, path: str) -> None:
        current = threading.current_thread()
        operation: Future = Future()
        with self._lock:
            state = self._states.get(path)
            # A superseded or cancelled timer may still get here.
            if state is None or state.timer is not current or self._destroyed:
                return
            state.timer = None
            waiters, state.waiters = state.waiters, []
            previous = state.in_flight
            state.in_flight = operation
            operation.set_running_or_notify_cancel()

        try:
            if previous is not None:
                wait([previous])
            task = self.load_task(path)
            result = self.run_sync(task) if task is not None else None
        except Exception as exc:
            logger.warning("Debounced sync failed for %s: %s", path, exc)
            operation.set_exception(exc)
            for waiter in waiters:
                if waiter.set_running_or_notify_cancel():
                    waiter.set_exception(exc)
        else:
            operation.set_result(result)
            for waiter in waiters:
                if waiter.set_running_or_notify_cancel():
                    waiter.set_result(result)
        finally:
            with self._lock:
                state = self._states.get(path)
                if state is not None:
                    if state.in_flight is operation:
                        state.in_flight = None
                    if state.idle:
                        self._states.pop(path, None)

    def destroy(self) -> None:
        with self._lock:
            self._destroyed = True
            states = list(self._states.values())
            for state in states:
                if state.timer is not None:
                    state.timer.cancel()
                    state.timer = None
                for waiter in state.waiters:
                    waiter.cancel()
                state.waiters = []
            self._states = {path: state for path, state in self._states.items() if state.in_flight is not None}
