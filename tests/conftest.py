"""Shared test fixtures."""

from __future__ import annotations

import pytest

from zepctl.config import Config, load_config
from zepctl.tasks import TaskRecord


class FakeClock:
    """Monotonic clock that only moves when something sleeps on it."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> bool:
        self.sleeps.append(seconds)
        self.now += seconds
        return False


class ScriptedTasks:
    """Task-status accessor that replays a list of statuses, repeating the last."""

    def __init__(self, *statuses: str, error: str | None = None, clock: FakeClock | None = None,
                 fetch_cost: float = 0.0):
        self.statuses = list(statuses)
        self.error = error
        self.clock = clock
        self.fetch_cost = fetch_cost
        self.calls: list[str] = []

    def __call__(self, task_id: str) -> TaskRecord:
        i = min(len(self.calls), len(self.statuses) - 1)
        self.calls.append(task_id)
        if self.clock is not None:
            self.clock.now += self.fetch_cost
        return TaskRecord(task_id=task_id, status=self.statuses[i], error_message=self.error)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config_path(tmp_path, monkeypatch):
    """Isolated config file location; environment overrides cleared."""
    for var in ("ZEP_API_KEY", "ZEP_API_URL", "ZEP_PROFILE", "ZEP_OUTPUT"):
        monkeypatch.delenv(var, raising=False)
    path = tmp_path / ".zepctl" / "config.yaml"
    monkeypatch.setenv("ZEPCTL_CONFIG", str(path))
    return path


@pytest.fixture
def config(config_path) -> Config:
    return load_config(config_path)


@pytest.fixture
def scripted():
    """Factory for ScriptedTasks accessors."""
    return ScriptedTasks
