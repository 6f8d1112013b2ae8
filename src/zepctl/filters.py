"""Search filter expressions. Parses `name:op:value` strings into search filters.

Grammar::

    FILTER := NAME ":" OP ":" VALUE
            | NAME ":IS NULL"
            | NAME ":IS NOT NULL"
    OP     := "=" | "==" | "<>" | "!=" | ">" | "<" | ">=" | "<="

Property filters collect into a flat list. Date filters go into one of four
date fields; every parsed date filter becomes its own OR-group, so repeating
``--date-filter created_at:...`` widens the match rather than narrowing it.

All functions here are pure except ``parse_date_filter``, which appends to
the SearchFilterSet it is given.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Iterable

from pydantic import BaseModel, Field

from .errors import InvalidOperator, MalformedFilter, UnknownField
from .values import Scalar, infer_scalar


class ComparisonOperator(str, Enum):
    EQUALS = "="
    NOT_EQUALS = "<>"
    GREATER_THAN = ">"
    LESS_THAN = "<"
    GREATER_THAN_EQUAL = ">="
    LESS_THAN_EQUAL = "<="
    IS_NULL = "IS NULL"
    IS_NOT_NULL = "IS NOT NULL"

    @property
    def takes_value(self) -> bool:
        return self not in (ComparisonOperator.IS_NULL, ComparisonOperator.IS_NOT_NULL)


_OPERATORS: dict[str, ComparisonOperator] = {
    "=": ComparisonOperator.EQUALS,
    "==": ComparisonOperator.EQUALS,
    "<>": ComparisonOperator.NOT_EQUALS,
    "!=": ComparisonOperator.NOT_EQUALS,
    ">": ComparisonOperator.GREATER_THAN,
    "<": ComparisonOperator.LESS_THAN,
    ">=": ComparisonOperator.GREATER_THAN_EQUAL,
    "<=": ComparisonOperator.LESS_THAN_EQUAL,
    "IS NULL": ComparisonOperator.IS_NULL,
    "IS NOT NULL": ComparisonOperator.IS_NOT_NULL,
}

DATE_FIELDS = ("created_at", "valid_at", "invalid_at", "expired_at")

_SHAPE = "expected NAME:OP:VALUE, NAME:IS NULL or NAME:IS NOT NULL"


class PropertyFilter(BaseModel, frozen=True):
    """Comparison against a node or edge attribute."""

    property_name: str
    comparison_operator: ComparisonOperator
    property_value: Scalar = None

    def to_wire(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "property_name": self.property_name,
            "comparison_operator": self.comparison_operator.value,
        }
        if self.comparison_operator.takes_value:
            d["property_value"] = self.property_value
        return d


class DateFilter(BaseModel, frozen=True):
    """Comparison against one of the temporal fields."""

    field: str
    comparison_operator: ComparisonOperator
    date: str | None = None

    def to_wire(self) -> dict[str, Any]:
        d: dict[str, Any] = {"comparison_operator": self.comparison_operator.value}
        if self.date is not None:
            d["date"] = self.date
        return d


class SearchFilterSet(BaseModel):
    """Everything that narrows a graph search.

    Date fields hold OR-groups: the outer list is OR'd, each inner list AND'd.
    """

    node_labels: list[str] = Field(default_factory=list)
    edge_types: list[str] = Field(default_factory=list)
    exclude_node_labels: list[str] = Field(default_factory=list)
    exclude_edge_types: list[str] = Field(default_factory=list)
    property_filters: list[PropertyFilter] = Field(default_factory=list)
    created_at: list[list[DateFilter]] = Field(default_factory=list)
    valid_at: list[list[DateFilter]] = Field(default_factory=list)
    invalid_at: list[list[DateFilter]] = Field(default_factory=list)
    expired_at: list[list[DateFilter]] = Field(default_factory=list)

    def date_groups(self, field: str) -> list[list[DateFilter]]:
        if field not in DATE_FIELDS:
            raise KeyError(field)
        return getattr(self, field)

    def is_empty(self) -> bool:
        return not any(getattr(self, name) for name in type(self).model_fields)

    def to_wire(self) -> dict[str, Any]:
        """Request body shape for ``search_filters``; empty parts are omitted."""
        d: dict[str, Any] = {}
        for name in ("node_labels", "edge_types", "exclude_node_labels", "exclude_edge_types"):
            if getattr(self, name):
                d[name] = list(getattr(self, name))
        if self.property_filters:
            d["property_filters"] = [pf.to_wire() for pf in self.property_filters]
        for name in DATE_FIELDS:
            groups = getattr(self, name)
            if groups:
                d[name] = [[df.to_wire() for df in group] for group in groups]
        return d


def parse_comparison_operator(token: str) -> ComparisonOperator:
    """Map an operator token to its ComparisonOperator."""
    try:
        return _OPERATORS[token]
    except KeyError:
        raise InvalidOperator(
            token,
            f"invalid comparison operator {token!r}: expected one of "
            "=, ==, <>, !=, >, <, >=, <=, IS NULL, IS NOT NULL",
        ) from None


def _split(expr: str) -> tuple[str, ComparisonOperator, str | None]:
    """Split a filter into (name, operator, raw value or None for the null checks)."""
    for marker, op in ((":IS NOT NULL", ComparisonOperator.IS_NOT_NULL),
                       (":IS NULL", ComparisonOperator.IS_NULL)):
        if marker in expr:
            name = expr.split(marker, 1)[0]
            if not name:
                raise MalformedFilter(expr, f"invalid filter {expr!r}: name is empty")
            return name, op, None

    parts = expr.split(":", 2)
    if len(parts) != 3:
        raise MalformedFilter(expr, f"invalid filter {expr!r}: {_SHAPE}")
    name, op_token, raw = parts
    if not name:
        raise MalformedFilter(expr, f"invalid filter {expr!r}: name is empty")
    return name, parse_comparison_operator(op_token), raw


def parse_property_filter(expr: str) -> PropertyFilter:
    """Parse ``name:op:value`` (or a null check) into a PropertyFilter.

    >>> parse_property_filter("age:>:30").property_value
    30
    """
    name, op, raw = _split(expr)
    value = None if raw is None else infer_scalar(raw)
    return PropertyFilter(property_name=name, comparison_operator=op, property_value=value)


def parse_date_filter(expr: str, into: SearchFilterSet) -> DateFilter:
    """Parse a date filter and append it to ``into`` as a new OR-group.

    The field must be one of DATE_FIELDS. Comparison operators need a
    non-empty date (``created_at:>:`` is MalformedFilter); ``IS NULL`` and
    ``IS NOT NULL`` take none.
    """
    field, op, raw = _split(expr)
    if field not in DATE_FIELDS:
        raise UnknownField(
            expr,
            f"invalid date filter {expr!r}: unknown field {field!r}, "
            f"expected one of {', '.join(DATE_FIELDS)}",
        )
    if raw is not None and not raw:
        raise MalformedFilter(expr, f"invalid date filter {expr!r}: date is empty")
    df = DateFilter(field=field, comparison_operator=op, date=raw)
    into.date_groups(field).append([df])
    return df


def build_search_filters(property_exprs: Iterable[str] = (),
                         date_exprs: Iterable[str] = (),
                         node_labels: Iterable[str] = (),
                         edge_types: Iterable[str] = (),
                         exclude_node_labels: Iterable[str] = (),
                         exclude_edge_types: Iterable[str] = ()) -> SearchFilterSet:
    """Assemble a SearchFilterSet from command-line values.

    Raises the first FilterError encountered; nothing is partially returned.
    """
    sf = SearchFilterSet(
        node_labels=_clean(node_labels),
        edge_types=_clean(edge_types),
        exclude_node_labels=_clean(exclude_node_labels),
        exclude_edge_types=_clean(exclude_edge_types),
    )
    for expr in property_exprs:
        sf.property_filters.append(parse_property_filter(expr))
    for expr in date_exprs:
        parse_date_filter(expr, sf)
    return sf


def _clean(items: Iterable[str]) -> list[str]:
    return [s.strip() for s in items if s and s.strip()]
