"""Tests for zepctl CLI commands."""

from __future__ import annotations

import argparse
import json
import os
import subprocess
import sys

import pytest
import yaml

from zepctl import __version__
from zepctl.cli import main, parse_duration
from zepctl.tasks import TaskRecord


def run(*args, env=None):
    return subprocess.run(
        [sys.executable, "-m", "zepctl.cli", *args],
        capture_output=True, text=True, timeout=30, env=env,
    )


@pytest.fixture
def bare_env(tmp_path):
    """Environment with no API key and a private config location."""
    env = {k: v for k, v in os.environ.items() if not k.startswith("ZEP")}
    env["ZEPCTL_CONFIG"] = str(tmp_path / "config.yaml")
    return env


class FakeClient:
    """Stands in for ZepClient; records calls, answers from canned data."""

    instances: list["FakeClient"] = []
    tasks: list[TaskRecord] = []
    task_status: dict[str, str] = {}
    batch_response: dict = {}

    def __init__(self, *args, **kwargs):
        self.calls: list[tuple] = []
        FakeClient.instances.append(self)

    @classmethod
    def from_settings(cls, settings):
        return cls(settings)

    def search(self, query):
        self.calls.append(("search", query))
        return {"edges": [{"uuid": "e1", "fact": "Alice works at Acme", "valid_at": "2024-01-02"}]}

    def get_task(self, task_id):
        self.calls.append(("get_task", task_id))
        if task_id in self.task_status:
            return TaskRecord(task_id=task_id, status=self.task_status[task_id],
                              error_message="ingest failed")
        i = min(len([c for c in self.calls if c[0] == "get_task"]) - 1, len(self.tasks) - 1)
        return self.tasks[i]

    def clone_graph(self, **target):
        self.calls.append(("clone_graph", target))
        return {"graph_id": "copy", "task_id": "t-clone"}

    def add_data_batch(self, episodes, **owner):
        self.calls.append(("add_data_batch", episodes, owner))
        return self.batch_response

    def add_messages(self, thread_id, messages, batch=False):
        self.calls.append(("add_messages", thread_id, messages, batch))
        return {"task_id": "t-msg"} if batch else {}


@pytest.fixture
def fake_client(monkeypatch, config_path):
    monkeypatch.setenv("ZEP_API_KEY", "test-key")
    FakeClient.instances = []
    FakeClient.tasks = []
    FakeClient.task_status = {}
    FakeClient.batch_response = {}
    monkeypatch.setattr("zepctl.client.ZepClient", FakeClient)
    return FakeClient


class TestVersion:
    def test_version(self):
        r = run("--version")
        assert r.returncode == 0
        assert __version__ in r.stdout

    def test_group_without_action_prints_help(self, capsys):
        assert main(["graph"]) == 0
        assert "search" in capsys.readouterr().out


class TestFailFast:
    def test_bad_property_filter_before_any_request(self, bare_env):
        r = run("graph", "search", "who", "--graph", "g1",
                "--property-filter", "status:LIKE:x", env=bare_env)
        assert r.returncode == 1
        assert "invalid comparison operator 'LIKE'" in r.stderr
        assert "API key" not in r.stderr

    def test_unknown_date_field(self, bare_env):
        r = run("graph", "search", "who", "--graph", "g1",
                "--date-filter", "updated_at:>:2024-01-01", env=bare_env)
        assert r.returncode == 1
        assert "unknown field 'updated_at'" in r.stderr

    def test_missing_key_reported(self, bare_env):
        r = run("graph", "search", "who", "--graph", "g1", env=bare_env)
        assert r.returncode == 1
        assert "no API key configured" in r.stderr

    def test_search_needs_owner(self, fake_client, capsys):
        assert main(["graph", "search", "who"]) == 1
        assert "--user or --graph" in capsys.readouterr().err
        assert fake_client.instances == []


class TestGraphSearch:
    def test_filters_in_request(self, fake_client, capsys):
        code = main([
            "graph", "search", "who works where", "--user", "u1", "--limit", "5",
            "--property-filter", "age:>:30",
            "--property-filter", "verified_at:IS NOT NULL",
            "--date-filter", "created_at:>:2024-01-01",
            "--date-filter", "created_at:<:2023-01-01",
            "--exclude-node-labels", "Bot,Spam",
        ])
        assert code == 0
        (name, query), = fake_client.instances[0].calls
        assert name == "search"
        assert query["user_id"] == "u1"
        assert query["limit"] == 5
        assert query["scope"] == "edges"
        assert query["search_filters"] == {
            "exclude_node_labels": ["Bot", "Spam"],
            "property_filters": [
                {"property_name": "age", "comparison_operator": ">", "property_value": 30},
                {"property_name": "verified_at", "comparison_operator": "IS NOT NULL"},
            ],
            "created_at": [
                [{"comparison_operator": ">", "date": "2024-01-01"}],
                [{"comparison_operator": "<", "date": "2023-01-01"}],
            ],
        }
        out = capsys.readouterr().out
        assert "FACT" in out and "Alice works at Acme" in out

    def test_no_filters_omitted(self, fake_client):
        assert main(["graph", "search", "q", "--graph", "g1", "-o", "json"]) == 0
        (_, query), = fake_client.instances[0].calls
        assert "search_filters" not in query
        assert query["graph_id"] == "g1"

    def test_json_output(self, fake_client, capsys):
        main(["graph", "search", "q", "--graph", "g1", "-o", "json"])
        data = json.loads(capsys.readouterr().out)
        assert data["edges"][0]["uuid"] == "e1"


class TestTaskWait:
    def test_completes(self, fake_client, capsys):
        fake_client.tasks = [TaskRecord(task_id="t1", status="processing"),
                             TaskRecord(task_id="t1", status="completed")]
        code = main(["task", "wait", "t1", "--poll-interval", "10ms", "--timeout", "5s"])
        assert code == 0
        err = capsys.readouterr().err
        assert "Waiting for task t1..." in err
        assert "Status: processing" in err
        assert "Task t1 completed successfully" in err

    def test_failed(self, fake_client, capsys):
        fake_client.tasks = [TaskRecord(task_id="t1", status="failed", error_message="boom")]
        assert main(["task", "wait", "t1", "--poll-interval", "10ms"]) == 1
        assert "Error: task t1 failed: boom" in capsys.readouterr().err

    def test_timeout(self, fake_client, capsys):
        fake_client.tasks = [TaskRecord(task_id="t1", status="pending")]
        assert main(["task", "wait", "t1", "--poll-interval", "20ms", "--timeout", "50ms"]) == 1
        assert "timeout waiting for task t1" in capsys.readouterr().err

    def test_quiet_suppresses_progress(self, fake_client, capsys):
        fake_client.tasks = [TaskRecord(task_id="t1", status="completed")]
        assert main(["task", "wait", "t1", "--poll-interval", "10ms", "-q"]) == 0
        assert capsys.readouterr().err == ""

    def test_clone_wait(self, fake_client, capsys):
        fake_client.tasks = [TaskRecord(task_id="t-clone", status="completed")]
        code = main(["graph", "clone", "--source-graph", "g1", "--target-graph", "copy",
                     "--wait", "--poll-interval", "10ms", "-o", "json"])
        assert code == 0
        calls = fake_client.instances[0].calls
        assert calls[0] == ("clone_graph", {"source_graph_id": "g1", "target_graph_id": "copy"})
        assert ("get_task", "t-clone") in calls
        assert json.loads(capsys.readouterr().out)["graph_id"] == "copy"


class TestBatchWait:
    @pytest.fixture
    def episodes_file(self, tmp_path):
        path = tmp_path / "episodes.json"
        path.write_text(json.dumps({"episodes": [
            {"type": "text", "data": "Alice joined Acme"},
            {"type": "text", "data": "Bob left Acme"},
            {"type": "json", "data": "{\"team\": \"core\"}"},
        ]}))
        return path

    @pytest.fixture
    def messages_file(self, tmp_path):
        path = tmp_path / "messages.yaml"
        path.write_text("messages:\n  - role: user\n    content: hello\n")
        return path

    def _task_calls(self, client):
        return [c[1] for c in client.calls if c[0] == "get_task"]

    def test_graph_add_waits_once_per_task(self, fake_client, episodes_file):
        fake_client.batch_response = {"episodes": [
            {"uuid": "ep1", "task_id": "t-b"},
            {"uuid": "ep2", "task_id": "t-a"},
            {"uuid": "ep3", "task_id": "t-b"},
            {"uuid": "ep4"},
        ]}
        fake_client.task_status = {"t-a": "completed", "t-b": "completed"}
        code = main(["graph", "add", "g1", "--batch", "--file", str(episodes_file),
                     "--wait", "--poll-interval", "10ms", "-o", "json"])
        assert code == 0
        client = fake_client.instances[0]
        name, episodes, owner = client.calls[0]
        assert name == "add_data_batch"
        assert [e["type"] for e in episodes] == ["text", "text", "json"]
        assert owner == {"graph_id": "g1", "user_id": ""}
        assert self._task_calls(client) == ["t-b", "t-a"]

    def test_graph_add_failed_task_exits_nonzero(self, fake_client, episodes_file, capsys):
        fake_client.batch_response = {"episodes": [{"uuid": "ep1", "task_id": "t-a"},
                                                   {"uuid": "ep2", "task_id": "t-b"}]}
        fake_client.task_status = {"t-a": "failed", "t-b": "completed"}
        code = main(["graph", "add", "g1", "--batch", "--file", str(episodes_file),
                     "--wait", "--poll-interval", "10ms"])
        assert code == 1
        assert "Error: task t-a failed: ingest failed" in capsys.readouterr().err
        assert self._task_calls(fake_client.instances[0]) == ["t-a"]

    def test_graph_add_without_wait_does_not_poll(self, fake_client, episodes_file):
        fake_client.batch_response = {"episodes": [{"uuid": "ep1", "task_id": "t-a"}]}
        code = main(["graph", "add", "--user", "u1", "--batch", "--file", str(episodes_file),
                     "-o", "json"])
        assert code == 0
        client = fake_client.instances[0]
        assert client.calls[0][2] == {"graph_id": "", "user_id": "u1"}
        assert self._task_calls(client) == []

    def test_add_messages_batch_wait(self, fake_client, messages_file, capsys):
        fake_client.task_status = {"t-msg": "completed"}
        code = main(["thread", "add-messages", "th1", "--file", str(messages_file),
                     "--batch", "--wait", "--poll-interval", "10ms", "-o", "json"])
        assert code == 0
        client = fake_client.instances[0]
        assert client.calls[0] == ("add_messages", "th1",
                                   [{"role": "user", "content": "hello"}], True)
        assert self._task_calls(client) == ["t-msg"]
        err = capsys.readouterr().err
        assert "Batch task started: t-msg" in err
        assert "Batch processing completed" in err

    def test_add_messages_batch_failed(self, fake_client, messages_file, capsys):
        fake_client.task_status = {"t-msg": "failed"}
        code = main(["thread", "add-messages", "th1", "--file", str(messages_file),
                     "--batch", "--wait", "--poll-interval", "10ms"])
        assert code == 1
        assert "task t-msg failed" in capsys.readouterr().err

    def test_add_messages_batch_without_wait(self, fake_client, messages_file):
        code = main(["thread", "add-messages", "th1", "--file", str(messages_file),
                     "--batch", "-o", "json"])
        assert code == 0
        assert self._task_calls(fake_client.instances[0]) == []


class TestConfigCommands:
    def test_profile_lifecycle(self, config_path, capsys):
        assert main(["config", "add-profile", "prod", "--api-url", "https://zep.internal/api/v2",
                     "--api-key-env", "PROD_KEY"]) == 0
        assert main(["config", "add-profile", "dev"]) == 0
        data = yaml.safe_load(config_path.read_text())
        assert data["current_profile"] == "prod"
        assert [p["name"] for p in data["profiles"]] == ["prod", "dev"]

        assert main(["config", "use-profile", "dev"]) == 0
        assert yaml.safe_load(config_path.read_text())["current_profile"] == "dev"

        capsys.readouterr()
        assert main(["config", "get-profiles"]) == 0
        out = capsys.readouterr().out
        assert "prod" in out and "https://zep.internal/api/v2" in out

        assert main(["config", "delete-profile", "prod", "--force"]) == 0
        assert [p["name"] for p in yaml.safe_load(config_path.read_text())["profiles"]] == ["dev"]

    def test_use_unknown_profile(self, config_path, capsys):
        assert main(["config", "use-profile", "ghost"]) == 1
        assert "profile 'ghost' not found" in capsys.readouterr().err

    def test_view(self, config_path, capsys):
        main(["config", "add-profile", "prod"])
        capsys.readouterr()
        assert main(["config", "view"]) == 0
        assert yaml.safe_load(capsys.readouterr().out)["current_profile"] == "prod"


class TestParseDuration:
    @pytest.mark.parametrize("text, seconds", [
        ("90", 90.0), ("1.5s", 1.5), ("500ms", 0.5), ("5m", 300.0), ("1h", 3600.0),
    ])
    def test_valid(self, text, seconds):
        assert parse_duration(text) == pytest.approx(seconds)

    @pytest.mark.parametrize("text", ["", "0", "-1s", "5 minutes", "1d"])
    def test_invalid(self, text):
        with pytest.raises(argparse.ArgumentTypeError):
            parse_duration(text)
