"""Condition trees for WHERE, HAVING and ON clauses.

A condition is either a leaf (raw SQL, a column/value hash, a comparison, IN,
BETWEEN, LIKE, EXISTS) or a composite (an AND/OR group, a NOT). Conditions are
pydantic models, so two trees built the same way compare equal; combining
them with ``&``, ``|`` and ``~`` builds new trees without touching the
operands.

Plain values are accepted wherever a condition is expected: a string is raw
SQL and a dict is a hash condition (``{"status": 1, "email": None}``).
"""

from __future__ import annotations

from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, Field


class Condition(BaseModel):
    """Base type for all condition nodes."""

    model_config = {"arbitrary_types_allowed": True}

    def __and__(self, other: Any) -> Condition:
        return and_(self, other)

    def __or__(self, other: Any) -> Condition:
        return or_(self, other)

    def __invert__(self) -> Condition:
        return Not(condition=self)


class Raw(Condition):
    """Verbatim SQL, with ``{{table}}`` / ``[[column]]`` quoting markers and ``:name`` placeholders."""

    sql: str
    params: dict[str, Any] = Field(default_factory=dict)


class Hash(Condition):
    """Column/value pairs ANDed together: None is IS NULL, a sequence or query is IN."""

    columns: dict[str, Any]


class Compare(Condition):
    """A binary comparison between a column and a bound value (or sub-query)."""

    operator: Literal["=", "!=", "<>", "<", "<=", ">", ">="]
    column: str
    value: Any


class In(Condition):
    """Membership of one column, or of a tuple of columns, in a list of values or a sub-query.

    For a tuple of columns, each value is a tuple (or a dict keyed by column) and
    a row matches only when every column is equal.
    """

    columns: Union[str, tuple[str, ...]]
    values: Any
    negate: bool = False


class Between(Condition):
    column: str
    low: Any
    high: Any
    negate: bool = False


class Like(Condition):
    """LIKE against one or more patterns; wildcards are escaped and the pattern wrapped in ``%`` unless escape is False."""

    column: str
    patterns: tuple[str, ...]
    negate: bool = False
    conjunction: Literal["AND", "OR"] = "AND"
    escape: bool = True


class Exists(Condition):
    query: Any
    negate: bool = False


class Group(Condition):
    """Conditions joined by AND or OR."""

    operator: Literal["AND", "OR"]
    conditions: tuple[Any, ...]


class Not(Condition):
    condition: Any


def to_condition(value: Any) -> Optional[Condition]:
    """Normalize a string, dict or Condition into a Condition (None stays None)."""
    if value is None or isinstance(value, Condition):
        return value
    if isinstance(value, str):
        return Raw(sql=value)
    if isinstance(value, dict):
        return Hash(columns=value)
    raise TypeError(f"Cannot use {type(value).__name__} as a condition: {value!r}")


def _group(operator: str, conditions: tuple) -> Optional[Condition]:
    normalized = tuple(
        condition
        for condition in map(to_condition, conditions)
        if condition is not None
    )
    if not normalized:
        return None
    if len(normalized) == 1:
        return normalized[0]
    return Group(operator=operator, conditions=normalized)


def and_(*conditions: Any) -> Optional[Condition]:
    """AND the given conditions together, ignoring None."""
    return _group("AND", conditions)


def or_(*conditions: Any) -> Optional[Condition]:
    """OR the given conditions together, ignoring None."""
    return _group("OR", conditions)


def not_(condition: Any) -> Condition:
    return Not(condition=to_condition(condition))


def raw(sql: str, **params: Any) -> Raw:
    """Build a Raw condition, e.g. ``raw("[[total]] > :minimum", minimum=50)``."""
    return Raw(sql=sql, params=params)


def compare(column: str, operator: str, value: Any) -> Compare:
    return Compare(operator=operator, column=column, value=value)


def in_(columns: Union[str, list[str], tuple[str, ...]], values: Any) -> In:
    if not isinstance(columns, str):
        columns = tuple(columns)
    return In(columns=columns, values=values)


def not_in(columns: Union[str, list[str], tuple[str, ...]], values: Any) -> In:
    condition = in_(columns, values)
    condition.negate = True
    return condition


def between(column: str, low: Any, high: Any) -> Between:
    return Between(column=column, low=low, high=high)


def like(column: str, *patterns: str, escape: bool = True) -> Like:
    return Like(column=column, patterns=patterns, escape=escape)


def exists(query: Any) -> Exists:
    return Exists(query=query)


__all__ = [
    "Condition",
    "Raw",
    "Hash",
    "Compare",
    "In",
    "Between",
    "Like",
    "Exists",
    "Group",
    "Not",
    "to_condition",
    "and_",
    "or_",
    "not_",
    "raw",
    "compare",
    "in_",
    "not_in",
    "between",
    "like",
    "exists",
]
