"""Tests for the task polling protocol."""

from __future__ import annotations

import threading

import pytest

from zepctl.errors import TaskFailed, TransportError, WaitCancelled, WaitTimeout
from zepctl.tasks import TaskRecord, TaskWaiter, wait_for_task


def _waiter(fetch, clock, messages=None):
    notify = messages.append if messages is not None else None
    return TaskWaiter(fetch, notify, clock=clock, sleep=clock.sleep)


class TestTaskRecord:
    def test_from_api_flattens_error(self):
        t = TaskRecord.from_api({"task_id": "t1", "status": "failed",
                                 "error": {"code": "X", "message": "boom"}})
        assert t.error_message == "boom"
        assert t.is_terminal

    def test_from_api_keeps_unknown_fields(self):
        t = TaskRecord.from_api({"task_id": "t1", "status": "pending", "progress": 3})
        assert t.model_extra == {"progress": 3}
        assert not t.is_terminal

    def test_from_api_empty(self):
        assert TaskRecord.from_api({}).status == ""


class TestWait:
    def test_completes_after_two_polls(self, clock, scripted):
        fetch = scripted("processing", "completed")
        w = _waiter(fetch, clock)
        task = w.wait("t1", timeout=10, poll_interval=1)
        assert task.status == "completed"
        assert fetch.calls == ["t1", "t1"]
        assert w.polls == 2
        assert clock.now - 1000.0 == pytest.approx(2.0)

    def test_first_poll_waits_one_interval(self, clock, scripted):
        fetch = scripted("completed")
        _waiter(fetch, clock).wait("t1", timeout=10, poll_interval=2.5)
        assert clock.sleeps == [2.5]

    def test_failed_carries_message(self, clock, scripted):
        fetch = scripted("pending", "failed", error="boom")
        with pytest.raises(TaskFailed) as exc:
            _waiter(fetch, clock).wait("t1", timeout=10, poll_interval=1)
        assert "boom" in str(exc.value)
        assert exc.value.error_message == "boom"
        assert exc.value.task_id == "t1"

    def test_failed_without_message(self, clock, scripted):
        with pytest.raises(TaskFailed, match="unknown error"):
            _waiter(scripted("failed"), clock).wait("t1", timeout=10, poll_interval=1)

    def test_timeout_when_always_pending(self, clock, scripted):
        fetch = scripted("pending")
        with pytest.raises(WaitTimeout) as exc:
            _waiter(fetch, clock).wait("t1", timeout=2.5, poll_interval=1)
        assert len(fetch.calls) == 2
        assert clock.now - 1000.0 == pytest.approx(2.5)
        assert "t1" in str(exc.value)
        assert "2.5s" in str(exc.value)

    def test_no_poll_when_deadline_before_first_tick(self, clock, scripted):
        fetch = scripted("completed")
        with pytest.raises(WaitTimeout):
            _waiter(fetch, clock).wait("t1", timeout=0.5, poll_interval=1)
        assert fetch.calls == []

    def test_deadline_wins_tie_with_tick(self, clock, scripted):
        fetch = scripted("pending", "completed")
        with pytest.raises(WaitTimeout):
            _waiter(fetch, clock).wait("t1", timeout=2, poll_interval=1)
        assert len(fetch.calls) == 1

    def test_unknown_status_keeps_waiting(self, clock, scripted):
        fetch = scripted("queued", "mystery", "completed")
        assert _waiter(fetch, clock).wait("t1", timeout=10, poll_interval=1).status == "completed"
        assert len(fetch.calls) == 3

    def test_slow_fetch_drops_missed_ticks(self, clock, scripted):
        fetch = scripted("pending", "pending", "completed", clock=clock, fetch_cost=2.5)
        _waiter(fetch, clock).wait("t1", timeout=60, poll_interval=1)
        # poll at t=1 returns at t=3.5; the next poll fires right away, not three times
        assert len(fetch.calls) == 3

    def test_status_after_deadline_is_discarded(self, clock, scripted):
        fetch = scripted("completed", clock=clock, fetch_cost=5.0)
        with pytest.raises(WaitTimeout):
            _waiter(fetch, clock).wait("t1", timeout=2, poll_interval=1)
        assert len(fetch.calls) == 1

    def test_failure_after_deadline_is_a_timeout(self, clock, scripted):
        fetch = scripted("failed", error="boom", clock=clock, fetch_cost=1.5)
        with pytest.raises(WaitTimeout):
            _waiter(fetch, clock).wait("t1", timeout=2, poll_interval=1)

    def test_slow_fetch_inside_deadline_still_counts(self, clock, scripted):
        fetch = scripted("completed", clock=clock, fetch_cost=0.5)
        task = _waiter(fetch, clock).wait("t1", timeout=2, poll_interval=1)
        assert task.status == "completed"

    def test_transport_error_propagates(self, clock):
        calls = []

        def fetch(task_id):
            calls.append(task_id)
            raise TransportError("GET /tasks/t1: connection refused")

        with pytest.raises(TransportError):
            _waiter(fetch, clock).wait("t1", timeout=10, poll_interval=1)
        assert len(calls) == 1

    def test_progress_messages(self, clock, scripted):
        messages: list[str] = []
        _waiter(scripted("pending", "processing", "completed"), clock, messages).wait(
            "t1", timeout=10, poll_interval=1)
        assert messages == [
            "Waiting for task t1...",
            "Status: pending",
            "Status: processing",
            "Task t1 completed successfully",
        ]

    def test_broken_sink_does_not_change_outcome(self, clock, scripted):
        def notify(message):
            raise RuntimeError("sink closed")

        w = TaskWaiter(scripted("pending", "completed"), notify, clock=clock, sleep=clock.sleep)
        assert w.wait("t1", timeout=10, poll_interval=1).status == "completed"

    @pytest.mark.parametrize("timeout, interval", [(0, 1), (-1, 1), (10, 0), (10, -0.5)])
    def test_preconditions(self, clock, scripted, timeout, interval):
        with pytest.raises(ValueError):
            _waiter(scripted("completed"), clock).wait("t1", timeout, interval)

    def test_repeatable(self, clock, scripted):
        w = _waiter(scripted("completed"), clock)
        w.wait("a", timeout=5, poll_interval=1)
        w.wait("b", timeout=5, poll_interval=1)
        assert w.polls == 1


class TestCancellation:
    def test_stop_before_start(self, scripted):
        stop = threading.Event()
        stop.set()
        fetch = scripted("pending")
        with pytest.raises(WaitCancelled):
            TaskWaiter(fetch, stop=stop).wait("t1", timeout=5, poll_interval=0.01)
        assert fetch.calls == []

    def test_stop_from_another_thread(self, scripted):
        stop = threading.Event()
        fetch = scripted("pending")
        timer = threading.Timer(0.05, stop.set)
        timer.start()
        try:
            with pytest.raises(WaitCancelled):
                TaskWaiter(fetch, stop=stop).wait("t1", timeout=30, poll_interval=0.01)
        finally:
            timer.cancel()


class TestRealClock:
    def test_completes(self, scripted):
        fetch = scripted("processing", "completed")
        task = wait_for_task(fetch, "t1", timeout=5, poll_interval=0.01)
        assert task.status == "completed"
        assert len(fetch.calls) == 2

    def test_times_out(self, scripted):
        fetch = scripted("pending")
        with pytest.raises(WaitTimeout):
            wait_for_task(fetch, "t1", timeout=0.1, poll_interval=0.04)
        assert len(fetch.calls) <= 2
