"""Typed payloads: metadata mappings, ontology files, and scalar inference."""

from __future__ import annotations

import json
import re
import sys
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, JsonValue, TypeAdapter, ValidationError

from .errors import ZepctlError

# Scalars a filter or metadata literal may infer to
Scalar = bool | int | float | str | None

# Metadata attached to users, threads and messages: string keys, JSON values
Metadata = dict[str, JsonValue]

_metadata_adapter: TypeAdapter[Metadata] = TypeAdapter(Metadata)

_INT_RE = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(2 ** 63)
_INT64_MAX = 2 ** 63 - 1


def infer_scalar(token: str) -> Scalar:
    """Infer a typed value from its textual form.

    Priority: true/false → bool, null or empty → None, base-10 integer,
    float, then the raw string unchanged. Integers outside the signed 64-bit
    range fall through to float.
    """
    if token == "true":
        return True
    if token == "false":
        return False
    if token in ("null", ""):
        return None
    if _INT_RE.fullmatch(token):
        n = int(token, 10)
        if _INT64_MIN <= n <= _INT64_MAX:
            return n
    if token.isascii() and token == token.strip() and "_" not in token:
        try:
            return float(token)
        except ValueError:
            pass
    return token


def load_document(text: str, path: str | Path | None = None) -> Any:
    """Parse YAML when the path says so, JSON otherwise."""
    suffix = Path(path).suffix.lower() if path else ""
    try:
        if suffix in (".yaml", ".yml"):
            return yaml.safe_load(text)
        return json.loads(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        kind = "YAML" if suffix in (".yaml", ".yml") else "JSON"
        raise ZepctlError(f"parsing {kind}: {e}") from e


def read_source(path: str | None = None, inline: str | None = None,
                stdin: bool = False) -> str:
    """Return text from an inline string, a file, or stdin (first one set wins)."""
    if inline:
        return inline
    if path:
        try:
            return Path(path).expanduser().read_text()
        except OSError as e:
            raise ZepctlError(f"reading file: {e}") from e
    if stdin:
        return sys.stdin.read()
    return ""


def parse_metadata(text: str, path: str | Path | None = None) -> Metadata:
    """Parse and validate a metadata document into a string-keyed mapping."""
    return validate_metadata(load_document(text, path))


def validate_metadata(data: Any) -> Metadata:
    try:
        return _metadata_adapter.validate_python(data)
    except ValidationError as e:
        raise ZepctlError(f"metadata must be a mapping of string keys to JSON values: {e}") from e


# ── ontology ───────────────────────────────────────────────────────────

class FieldDefinition(BaseModel):
    description: str = ""


class EntityDefinition(BaseModel):
    description: str = ""
    fields: dict[str, FieldDefinition] = Field(default_factory=dict)


class EdgeDefinition(BaseModel):
    description: str = ""
    fields: dict[str, FieldDefinition] = Field(default_factory=dict)
    source_types: list[str] = Field(default_factory=list)
    target_types: list[str] = Field(default_factory=list)


class OntologyDefinition(BaseModel):
    """Custom entity and edge types, as written in an ontology YAML/JSON file.

    Example::

        entities:
          Customer:
            description: A paying customer
            fields:
              tier: {description: Subscription tier}
        edges:
          PURCHASED:
            description: Customer bought a product
            source_types: [Customer]
            target_types: [Product]
    """

    entities: dict[str, EntityDefinition] = Field(default_factory=dict)
    edges: dict[str, EdgeDefinition] = Field(default_factory=dict)

    @classmethod
    def from_text(cls, text: str, path: str | Path | None = None) -> "OntologyDefinition":
        data = load_document(text, path) or {}
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ZepctlError(f"invalid ontology definition: {e}") from e

    def to_request(self) -> dict[str, Any]:
        """Build the entity-types request body.

        Every field becomes a Text property. Edge source/target constraints
        are the cross product of source_types and target_types, and are only
        sent when both lists are non-empty.
        """
        entity_types = []
        for name, entity in self.entities.items():
            et: dict[str, Any] = {"name": name, "description": entity.description}
            if entity.fields:
                et["properties"] = _properties(entity.fields)
            entity_types.append(et)

        edge_types = []
        for name, edge in self.edges.items():
            ed: dict[str, Any] = {"name": name, "description": edge.description}
            if edge.fields:
                ed["properties"] = _properties(edge.fields)
            if edge.source_types and edge.target_types:
                ed["source_targets"] = [
                    {"source": s, "target": t}
                    for s in edge.source_types for t in edge.target_types
                ]
            edge_types.append(ed)

        return {"entity_types": entity_types, "edge_types": edge_types}


def _properties(fields: dict[str, FieldDefinition]) -> list[dict[str, str]]:
    return [
        {"name": fname, "description": f.description, "type": "Text"}
        for fname, f in fields.items()
    ]
