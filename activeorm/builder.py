"""Turns Query models into SQL text and bound parameters."""

import re
from typing import Any, Optional

from .conditions import (Between, Compare, Exists, Group, Hash, In, Like, Not,
                         Raw, to_condition)
from .dialects import Dialect
from .query import JoinClause, Query, UnionClause, split_alias


_COLUMN_ALIAS = re.compile(r"^(.*?)(?i:\s+as\s+|\s+)([\w\-_\.]+)$")


class QueryBuilder:
    """Builds SELECT statements for one dialect.

    Parameters are collected into a single dict shared by the whole statement
    (sub-queries included); values bound by the builder get placeholder names
    ``qp0``, ``qp1``... so that they never clash with user parameters.
    """

    SEPARATOR = " "

    def __init__(self, dialect: Dialect):
        self.dialect = dialect

    def build(self, query: Query, params: Optional[dict[str, Any]] = None) -> tuple[str, dict[str, Any]]:
        """Return ``(sql, params)`` for query; params, when given, is extended in place."""
        query = query.prepare(self)
        if params is None:
            params = {}
        params.update(query.params_value)

        clauses = [
            self.build_select(query.select_columns, params, query.distinct_value, query.select_option),
            self.build_from(query.from_tables, params),
            self.build_join(query.join_clauses, params),
            self.build_where(query.where_condition, params),
            self.build_group_by(query.group_by_columns, params),
            self.build_having(query.having_condition, params),
        ]
        sql = self.SEPARATOR.join(clause for clause in clauses if clause)
        sql = self._build_order_by_and_limit(sql, query.order_by_columns, query.limit_value,
                                             query.offset_value, params)

        if query.union_queries:
            sql = self.dialect.wrap_union_operand(sql) + self.SEPARATOR + self.build_union(query.union_queries, params)
            sql = self._build_order_by_and_limit(sql, query.union_order_by_columns, query.union_limit_value,
                                                 query.union_offset_value, params)
        return sql, params

    def _build_order_by_and_limit(self, sql: str, columns: dict, limit: Optional[int],
                                  offset: Optional[int], params: dict[str, Any]) -> str:
        order_by = self.build_order_by(columns, params)
        if order_by:
            sql += self.SEPARATOR + order_by
        limit_sql = self.dialect.build_limit(limit, offset)
        if limit_sql:
            sql += self.SEPARATOR + limit_sql
        return sql

    # SELECT

    def build_select(self, columns: list, params: dict[str, Any], distinct: bool = False,
                     select_option: Optional[str] = None) -> str:
        select = "SELECT DISTINCT" if distinct else "SELECT"
        if select_option:
            select += " " + select_option
        if not columns:
            return select + " *"
        return select + " " + ", ".join(self._build_select_column(column, params) for column in columns)

    def _build_select_column(self, column: Any, params: dict[str, Any]) -> str:
        if isinstance(column, tuple):
            alias, expression = column
            return self._build_expression(expression, params) + " AS " + self.dialect.quote_column_name(alias)
        if isinstance(column, str) and "(" not in column:
            match = _COLUMN_ALIAS.match(column)
            if match:
                return (self.dialect.quote_column_name(match.group(1))
                        + " AS " + self.dialect.quote_column_name(match.group(2)))
        return self._build_expression(column, params)

    def _build_expression(self, expression: Any, params: dict[str, Any]) -> str:
        """A column name, raw SQL or a parenthesized sub-query."""
        if isinstance(expression, Query):
            sql, _ = self.build(expression, params)
            return f"({sql})"
        if isinstance(expression, Raw):
            return self.build_condition(expression, params)
        if isinstance(expression, str):
            return self.dialect.quote_column_name(expression)
        raise TypeError(f"Cannot use {type(expression).__name__} as a column expression: {expression!r}")

    # FROM / JOIN

    def build_from(self, tables: dict[str, Any], params: dict[str, Any]) -> str:
        if not tables:
            return ""
        return "FROM " + self._quote_tables(tables, params)

    def _quote_tables(self, tables: dict[str, Any], params: dict[str, Any]) -> str:
        parts = []
        for alias, table in tables.items():
            if isinstance(table, Query):
                sql, _ = self.build(table, params)
                parts.append(f"({sql}) {self.dialect.quote_table_name(alias)}")
            elif isinstance(table, Raw):
                parts.append(f"{self.build_condition(table, params)} {self.dialect.quote_table_name(alias)}")
            elif alias == table or "(" in table:
                parts.append(self.dialect.quote_table_name(table))
            else:
                parts.append(f"{self.dialect.quote_table_name(table)} {self.dialect.quote_table_name(alias)}")
        return ", ".join(parts)

    def build_join(self, joins: list[JoinClause], params: dict[str, Any]) -> str:
        parts = []
        for join in joins:
            sql = f"{join.type} {self._build_join_target(join.table, params)}"
            on = self.build_condition(join.on, params)
            if on:
                sql += " ON " + on
            parts.append(sql)
        return self.SEPARATOR.join(parts)

    def _build_join_target(self, table: Any, params: dict[str, Any]) -> str:
        if isinstance(table, dict):
            return self._quote_tables(table, params)
        if isinstance(table, str):
            if "(" in table:
                return table
            name, alias = split_alias(table)
            return self._quote_tables({alias or name: name}, params)
        raise ValueError(f"A joined sub-query needs an alias, pass {{alias: query}} instead of {table!r}")

    # WHERE / GROUP BY / HAVING / ORDER BY / UNION

    def build_where(self, condition: Any, params: dict[str, Any]) -> str:
        where = self.build_condition(condition, params)
        return "WHERE " + where if where else ""

    def build_group_by(self, columns: list, params: dict[str, Any]) -> str:
        if not columns:
            return ""
        return "GROUP BY " + ", ".join(self._build_expression(column, params) for column in columns)

    def build_having(self, condition: Any, params: dict[str, Any]) -> str:
        having = self.build_condition(condition, params)
        return "HAVING " + having if having else ""

    def build_order_by(self, columns: dict[str, Optional[str]], params: dict[str, Any]) -> str:
        if not columns:
            return ""
        parts = []
        for column, direction in columns.items():
            if direction is None:
                parts.append(self.dialect.quote_sql(column))
            else:
                parts.append(f"{self.dialect.quote_column_name(column)} {direction}")
        return "ORDER BY " + ", ".join(parts)

    def build_union(self, unions: list[UnionClause], params: dict[str, Any]) -> str:
        parts = []
        for union in unions:
            if isinstance(union.query, Query):
                sql, _ = self.build(union.query, params)
            else:
                sql = union.query
            keyword = "UNION ALL" if union.all else "UNION"
            parts.append(f"{keyword} {self.dialect.wrap_union_operand(sql)}")
        return self.SEPARATOR.join(parts)

    # conditions

    def bind_value(self, value: Any, params: dict[str, Any]) -> str:
        """Store value under a fresh ``qpN`` name and return its placeholder."""
        index = len(params)
        while f"qp{index}" in params:
            index += 1
        name = f"qp{index}"
        params[name] = value
        return ":" + name

    def build_condition(self, condition: Any, params: dict[str, Any]) -> str:
        """Return the SQL for a condition tree; an empty string means "no condition"."""
        condition = to_condition(condition)
        if condition is None:
            return ""
        for condition_type, method in (
            (Raw, self._build_raw),
            (Hash, self._build_hash),
            (Compare, self._build_compare),
            (In, self._build_in),
            (Between, self._build_between),
            (Like, self._build_like),
            (Exists, self._build_exists),
            (Group, self._build_group),
            (Not, self._build_not),
        ):
            if isinstance(condition, condition_type):
                return method(condition, params)
        raise TypeError(f"Unsupported condition type: {type(condition).__name__}")

    def _build_raw(self, condition: Raw, params: dict[str, Any]) -> str:
        params.update({name.lstrip(":"): value for name, value in condition.params.items()})
        return self.dialect.quote_sql(condition.sql)

    def _build_hash(self, condition: Hash, params: dict[str, Any]) -> str:
        parts = []
        for column, value in condition.columns.items():
            if isinstance(value, (list, tuple, set, frozenset, Query)):
                parts.append(self._build_in(In(columns=column, values=value), params))
            elif value is None:
                parts.append(f"{self.dialect.quote_column_name(column)} IS NULL")
            else:
                parts.append(f"{self.dialect.quote_column_name(column)} = {self.bind_value(value, params)}")
        if len(parts) == 1:
            return parts[0]
        return "(" + ") AND (".join(parts) + ")" if parts else ""

    def _build_compare(self, condition: Compare, params: dict[str, Any]) -> str:
        column = self.dialect.quote_column_name(condition.column)
        value = condition.value
        if value is None:
            if condition.operator == "=":
                return f"{column} IS NULL"
            if condition.operator in ("!=", "<>"):
                return f"{column} IS NOT NULL"
        if isinstance(value, Query):
            sql, _ = self.build(value, params)
            return f"{column} {condition.operator} ({sql})"
        return f"{column} {condition.operator} {self.bind_value(value, params)}"

    def _build_in(self, condition: In, params: dict[str, Any]) -> str:
        operator = "NOT IN" if condition.negate else "IN"
        columns = condition.columns
        if isinstance(condition.values, Query):
            sql, _ = self.build(condition.values, params)
            if isinstance(columns, str):
                quoted = self.dialect.quote_column_name(columns)
            else:
                quoted = "(" + ", ".join(self.dialect.quote_column_name(column) for column in columns) + ")"
            return f"{quoted} {operator} ({sql})"

        values = list(condition.values)
        if not isinstance(columns, str):
            if len(columns) > 1:
                return self._build_composite_in(condition, values, params)
            columns = columns[0]

        column = self.dialect.quote_column_name(columns)
        placeholders = []
        has_null = False
        for value in values:
            if isinstance(value, dict):
                value = value.get(columns)
            if value is None:
                has_null = True
            else:
                placeholders.append(self.bind_value(value, params))
        if not placeholders and not has_null:
            return "1=1" if condition.negate else "0=1"

        parts = []
        if placeholders:
            parts.append(f"{column} {operator} ({', '.join(placeholders)})")
        if has_null:
            parts.append(f"{column} IS NOT NULL" if condition.negate else f"{column} IS NULL")
        if len(parts) == 1:
            return parts[0]
        return "(" + (" AND " if condition.negate else " OR ").join(parts) + ")"

    def _build_composite_in(self, condition: In, values: list, params: dict[str, Any]) -> str:
        columns = list(condition.columns)
        alternatives = []
        for value in values:
            if isinstance(value, dict):
                value = [value.get(column) for column in columns]
            terms = []
            for column, item in zip(columns, value):
                quoted = self.dialect.quote_column_name(column)
                if item is None:
                    terms.append(f"{quoted} IS NULL")
                else:
                    terms.append(f"{quoted} = {self.bind_value(item, params)}")
            alternatives.append("(" + " AND ".join(terms) + ")")
        if not alternatives:
            return "1=1" if condition.negate else "0=1"
        sql = " OR ".join(alternatives)
        return f"NOT ({sql})" if condition.negate else f"({sql})"

    def _build_between(self, condition: Between, params: dict[str, Any]) -> str:
        operator = "NOT BETWEEN" if condition.negate else "BETWEEN"
        low = self.bind_value(condition.low, params)
        high = self.bind_value(condition.high, params)
        return f"{self.dialect.quote_column_name(condition.column)} {operator} {low} AND {high}"

    def _build_like(self, condition: Like, params: dict[str, Any]) -> str:
        if not condition.patterns:
            return "" if condition.negate else "0=1"
        operator = "NOT LIKE" if condition.negate else "LIKE"
        column = self.dialect.quote_column_name(condition.column)
        parts = []
        for pattern in condition.patterns:
            if condition.escape:
                pattern = f"%{self.dialect.escape_like(pattern)}%"
                suffix = self.dialect.LIKE_ESCAPE_CLAUSE
            else:
                suffix = ""
            parts.append(f"{column} {operator} {self.bind_value(pattern, params)}{suffix}")
        return f" {condition.conjunction} ".join(parts)

    def _build_exists(self, condition: Exists, params: dict[str, Any]) -> str:
        sql, _ = self.build(condition.query, params)
        operator = "NOT EXISTS" if condition.negate else "EXISTS"
        return f"{operator} ({sql})"

    def _build_group(self, condition: Group, params: dict[str, Any]) -> str:
        parts = [self.build_condition(item, params) for item in condition.conditions]
        parts = [part for part in parts if part]
        if not parts:
            return ""
        return "(" + f") {condition.operator} (".join(parts) + ")"

    def _build_not(self, condition: Not, params: dict[str, Any]) -> str:
        inner = self.build_condition(condition.condition, params)
        return f"NOT ({inner})" if inner else ""


__all__ = ["QueryBuilder"]
