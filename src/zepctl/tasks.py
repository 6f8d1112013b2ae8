"""Async task tracking. Polls a server-side task until it completes, fails, or times out."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict

from .errors import TaskFailed, WaitCancelled, WaitTimeout

log = logging.getLogger(__name__)

# Terminal statuses. Anything else (including values we don't recognise)
# means the task is still running.
COMPLETED = "completed"
FAILED = "failed"
TASK_STATUSES = ("pending", "processing", COMPLETED, FAILED)

DEFAULT_TIMEOUT = 300.0
DEFAULT_POLL_INTERVAL = 1.0


class TaskRecord(BaseModel):
    """Snapshot of a server-side task. Owned by the service; we only observe it."""

    model_config = ConfigDict(extra="allow")

    task_id: str = ""
    status: str = ""
    type: str | None = None
    error_message: str | None = None
    created_at: str | None = None
    started_at: str | None = None
    completed_at: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "TaskRecord":
        """Build from an API response, flattening ``error: {message}``."""
        data = dict(data or {})
        err = data.pop("error", None)
        if isinstance(err, dict) and err.get("message"):
            data.setdefault("error_message", err["message"])
        return cls.model_validate(data)

    @property
    def is_terminal(self) -> bool:
        return self.status in (COMPLETED, FAILED)


Fetch = Callable[[str], TaskRecord]
Notify = Callable[[str], None]


class TaskWaiter:
    """Poll one task at a fixed cadence, racing each tick against a deadline.

    The first poll happens one interval after ``wait`` starts, then once per
    interval. If the fetch runs long, missed ticks are dropped. When the
    next tick would not come before the deadline, the waiter sleeps out the
    remaining time and raises WaitTimeout without fetching again. A
    fetch that returns at or after the deadline also ends in WaitTimeout,
    whatever status it carried.

    ``stop`` is an optional threading.Event; setting it from another thread
    ends the wait with WaitCancelled at the next sleep boundary.
    """

    def __init__(self, fetch: Fetch, notify: Notify | None = None, *,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], bool] | None = None,
                 stop: threading.Event | None = None):
        self.fetch = fetch
        self.notify = notify
        self.clock = clock
        self.stop = stop or threading.Event()
        # sleep(seconds) -> True if the wait was cancelled while sleeping
        self._sleep = sleep or self.stop.wait
        self.polls = 0

    def wait(self, task_id: str, timeout: float = DEFAULT_TIMEOUT,
             poll_interval: float = DEFAULT_POLL_INTERVAL) -> TaskRecord:
        """Block until the task reaches a terminal status.

        Returns the completed TaskRecord. Raises TaskFailed, WaitTimeout,
        WaitCancelled, or whatever ``fetch`` raises.
        """
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")
        if poll_interval <= 0:
            raise ValueError(f"poll interval must be positive, got {poll_interval}")

        self.polls = 0
        start = self.clock()
        deadline = start + timeout
        next_tick = start + poll_interval
        self._emit(f"Waiting for task {task_id}...")

        while True:
            now = self.clock()
            if next_tick >= deadline:
                if self._pause(deadline - now):
                    raise WaitCancelled(task_id)
                raise WaitTimeout(task_id, timeout)

            if self._pause(next_tick - now):
                raise WaitCancelled(task_id)

            task = self.fetch(task_id)
            self.polls += 1
            log.debug("task %s poll %d: status=%r", task_id, self.polls, task.status)
            if self.clock() >= deadline:
                # A status that arrives after the deadline is discarded
                raise WaitTimeout(task_id, timeout)

            if task.status == COMPLETED:
                self._emit(f"Task {task_id} completed successfully")
                return task
            if task.status == FAILED:
                raise TaskFailed(task_id, task.error_message or "unknown error")
            self._emit(f"Status: {task.status}")

            next_tick += poll_interval
            after = self.clock()
            if next_tick < after:
                # Ticker semantics: drop the ticks we missed, fire once now
                next_tick = after

    def _pause(self, seconds: float) -> bool:
        if self.stop.is_set():
            return True
        if seconds <= 0:
            return False
        return bool(self._sleep(seconds))

    def _emit(self, message: str) -> None:
        if self.notify is None:
            return
        try:
            self.notify(message)
        except Exception:
            log.debug("status sink failed for %r", message, exc_info=True)


def wait_for_task(fetch: Fetch, task_id: str, timeout: float = DEFAULT_TIMEOUT,
                  poll_interval: float = DEFAULT_POLL_INTERVAL,
                  notify: Notify | None = None) -> TaskRecord:
    """One-shot convenience wrapper around TaskWaiter."""
    return TaskWaiter(fetch, notify).wait(task_id, timeout, poll_interval)
