"""Render API responses as tables, JSON or YAML."""

from __future__ import annotations

import datetime
import json
import sys
from pathlib import Path
from typing import Any, Iterable, TextIO

import yaml
from pydantic import BaseModel


def _json_default(obj):
    if isinstance(obj, (datetime.date, datetime.datetime)):
        return obj.isoformat()
    if isinstance(obj, Path):
        return str(obj)
    if isinstance(obj, set):
        return sorted(obj)
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")
    raise TypeError(f"Not JSON serializable: {type(obj)}")


def dumps(obj, **kw) -> str:
    return json.dumps(obj, default=_json_default, **kw)


def truncate(text: str | None, width: int) -> str:
    text = (text or "").replace("\n", " ")
    if len(text) > width:
        return text[:width] + "..."
    return text


class Printer:
    """Writes results to stdout and status messages to stderr.

    Table and wide formats are drawn by callers with ``table()``; a plain
    ``print()`` in those formats falls back to JSON.
    """

    def __init__(self, fmt: str = "table", quiet: bool = False,
                 out: TextIO | None = None, err: TextIO | None = None):
        self.format = fmt
        self.quiet = quiet
        self.out = out or sys.stdout
        self.err = err or sys.stderr

    @property
    def tabular(self) -> bool:
        return self.format in ("table", "wide")

    def print(self, data: Any) -> None:
        if isinstance(data, BaseModel):
            data = data.model_dump(mode="json", exclude_none=True)
        if self.format == "yaml":
            # Round-trip through JSON so dates and models serialize the same way
            plain = json.loads(dumps(data))
            self.out.write(yaml.safe_dump(plain, default_flow_style=False, sort_keys=False))
        else:
            self.out.write(dumps(data, indent=2) + "\n")

    def table(self, headers: Iterable[str], rows: Iterable[Iterable[Any]]) -> None:
        headers = [str(h) for h in headers]
        cells = [["" if v is None else str(v) for v in row] for row in rows]
        widths = [len(h) for h in headers]
        for row in cells:
            for i, v in enumerate(row):
                if i < len(widths):
                    widths[i] = max(widths[i], len(v))
                else:
                    widths.append(len(v))
        for row in [headers] + cells:
            line = "  ".join(v.ljust(widths[i]) for i, v in enumerate(row))
            self.out.write(line.rstrip() + "\n")

    def fields(self, pairs: Iterable[tuple[str, Any]]) -> None:
        """FIELD/VALUE table, skipping empty values."""
        self.table(["FIELD", "VALUE"], [(k, v) for k, v in pairs if v not in (None, "")])

    def info(self, message: str) -> None:
        if not self.quiet:
            print(message, file=self.err)

    def warn(self, message: str) -> None:
        print(f"Warning: {message}", file=self.err)

    def error(self, message: str) -> None:
        print(f"Error: {message}", file=self.err)
