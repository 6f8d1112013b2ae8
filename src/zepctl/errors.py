"""Error types raised by zepctl. The CLI reports any ZepctlError and exits 1."""

from __future__ import annotations


class ZepctlError(Exception):
    """Base class for errors surfaced to the user."""


class ConfigError(ZepctlError):
    """Missing or unusable configuration (no API key, unknown profile, bad file)."""


# ── filter expressions ─────────────────────────────────────────────────

class FilterError(ZepctlError, ValueError):
    """A filter expression could not be parsed."""

    def __init__(self, expr: str, message: str):
        self.expr = expr
        super().__init__(message)


class MalformedFilter(FilterError):
    """Wrong number of parts, or an empty property/field name."""


class InvalidOperator(FilterError):
    """Comparison operator token is not one of the supported operators."""


class UnknownField(FilterError):
    """Date filter names a field outside the fixed set."""


# ── transport ──────────────────────────────────────────────────────────

class TransportError(ZepctlError):
    """The API request itself failed (network error or non-2xx response)."""

    def __init__(self, message: str, status: int | None = None, body: str = ""):
        self.status = status
        self.body = body
        super().__init__(message)


# ── task waiting ───────────────────────────────────────────────────────

class WaitError(ZepctlError):
    """A task wait ended without the task completing."""

    def __init__(self, task_id: str, message: str):
        self.task_id = task_id
        super().__init__(message)


class WaitTimeout(WaitError):
    def __init__(self, task_id: str, timeout: float):
        self.timeout = timeout
        super().__init__(task_id, f"timeout waiting for task {task_id} after {_fmt_seconds(timeout)}")


class TaskFailed(WaitError):
    def __init__(self, task_id: str, error_message: str):
        self.error_message = error_message
        super().__init__(task_id, f"task {task_id} failed: {error_message}")


class WaitCancelled(WaitError):
    def __init__(self, task_id: str):
        super().__init__(task_id, f"wait for task {task_id} cancelled")


def _fmt_seconds(seconds: float) -> str:
    if seconds == int(seconds):
        return f"{int(seconds)}s"
    return f"{seconds:g}s"
