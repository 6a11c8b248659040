"""The Query model: a mutable, fluent description of a SELECT statement.

Every mutator returns the query itself, so calls chain::

    rows = (Query()
            .select("id", "name")
            .from_("customer")
            .where({"status": 1})
            .order_by("id DESC")
            .limit(10)
            .all())

Terminal operations (``one``, ``all``, ``count``, ...) take an optional
``connection``; without one, the query's own ``connection`` is used, then the
``"default"`` connection registered with ``activeorm.connect``.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Callable, Iterator, Optional, Union

from pydantic import BaseModel, Field

from .conditions import Raw, and_, or_, to_condition
from .connection import Connection, get_connection

logger = logging.getLogger("activeorm")


ALIAS_SEPARATOR = "__"

_TABLE_ALIAS = re.compile(r"^(.*?)(?i:\s+as|)\s+([^ ]+)$")
_ORDER_DIRECTION = re.compile(r"^(.*?)\s+(asc|desc)$", re.IGNORECASE)
_SELECT_ALIAS = re.compile(r"^(.*?)(?i:\s+as\s+|\s+)([\w\-\.]+)$")


def split_alias(table: str) -> tuple[str, Optional[str]]:
    """Split ``"customer c"`` / ``"customer AS c"`` into ``("customer", "c")``."""
    table = table.strip()
    if "(" not in table:
        match = _TABLE_ALIAS.match(table)
        if match:
            return match.group(1), match.group(2)
    return table, None


def split_list(text: str) -> list[str]:
    """Split a comma-separated list of SQL fragments, ignoring commas inside parentheses."""
    parts = []
    depth = 0
    current = ""
    for character in text:
        if character == "(":
            depth += 1
        elif character == ")":
            depth -= 1
        if character == "," and depth == 0:
            parts.append(current)
            current = ""
        else:
            current += character
    parts.append(current)
    return [part.strip() for part in parts if part.strip()]


def nest_row(row: dict[str, Any], separator: str = ALIAS_SEPARATOR) -> dict[str, Any]:
    """Turn ``{"customer__name": "x"}`` into ``{"customer": {"name": "x"}}``."""
    result: dict[str, Any] = {}
    for key, value in row.items():
        *path, leaf = key.split(separator)
        target = result
        for part in path:
            target = target.setdefault(part, {})
        target[leaf] = value
    return result


def select_columns_of(source: Any, alias: Union[bool, str] = False,
                      separator: str = ALIAS_SEPARATOR) -> list[Any]:
    """Return the columns of source qualified with its table, for select() and add_select().

    source is a record class, an ActiveQuery (its select list, else the
    fields of its record class) or a ``{table: [columns]}`` mapping. With
    alias=True every column is aliased ``<table><separator><column>``, which
    as_subattributes() turns back into nested dicts; a string alias is used
    in place of the table name in those aliases.
    """
    if isinstance(source, dict):
        tables = source
    elif isinstance(source, Query):
        record_class = getattr(source, "record_class", None)
        if record_class is None:
            raise TypeError("select_columns_of() needs a query bound to a record class")
        table, table_alias = split_alias(record_class.table_name())
        tables = {table_alias or table: source.select_columns or list(record_class.model_fields)}
    elif isinstance(source, type) and hasattr(source, "table_name"):
        table, table_alias = split_alias(source.table_name())
        tables = {table_alias or table: list(source.model_fields)}
    else:
        raise TypeError(f"Cannot select the columns of {source!r}")

    result: list[Any] = []
    for table, columns in tables.items():
        prefix = alias if isinstance(alias, str) else table
        for column in columns:
            if isinstance(column, tuple):
                result.append(dict([column]))
                continue
            if not isinstance(column, str):
                result.append(column)
                continue
            match = _SELECT_ALIAS.match(column)
            name, column_alias = (match.group(1), match.group(2)) if match else (column, None)
            if "(" in name or "." in name:
                expression = name
            else:
                expression = "{{%s}}.[[%s]]" % (table, name)
            if alias is not False:
                column_alias = prefix + separator + (column_alias or name.rpartition(".")[2])
            result.append({column_alias: expression} if column_alias else expression)
    return result


class JoinClause(BaseModel):
    """One ``(type, target, on)`` join triple; target is a table name or ``{alias: table_or_query}``."""

    model_config = {"arbitrary_types_allowed": True}

    type: str
    table: Any
    on: Any = None


class UnionClause(BaseModel):
    model_config = {"arbitrary_types_allowed": True}

    query: Any
    all: bool = False


# clause fields copied by Query.create()
_CLAUSE_FIELDS = (
    "select_columns", "select_option", "distinct_value", "from_tables", "join_clauses",
    "where_condition", "group_by_columns", "having_condition", "order_by_columns",
    "limit_value", "offset_value", "union_queries", "union_order_by_columns",
    "union_limit_value", "union_offset_value", "params_value", "index_by_value",
    "as_subattributes_value", "connection",
)


class Query(BaseModel):
    """A SELECT statement under construction."""

    model_config = {"arbitrary_types_allowed": True}

    select_columns: list[Any] = Field(default_factory=list)
    select_option: Optional[str] = None
    distinct_value: bool = False
    from_tables: dict[str, Any] = Field(default_factory=dict)
    join_clauses: list[JoinClause] = Field(default_factory=list)
    where_condition: Any = None
    group_by_columns: list[Any] = Field(default_factory=list)
    having_condition: Any = None
    order_by_columns: dict[str, Optional[str]] = Field(default_factory=dict)
    # stored as *_value to avoid shadowing the limit() / offset() methods
    limit_value: Optional[int] = None
    offset_value: Optional[int] = None
    union_queries: list[UnionClause] = Field(default_factory=list)
    union_order_by_columns: dict[str, Optional[str]] = Field(default_factory=dict)
    union_limit_value: Optional[int] = None
    union_offset_value: Optional[int] = None
    params_value: dict[str, Any] = Field(default_factory=dict)
    index_by_value: Any = None
    as_subattributes_value: bool = False
    connection: Optional[Connection] = None
    before_find_hooks: list[Callable] = Field(default_factory=list)
    after_find_hooks: list[Callable] = Field(default_factory=list)

    @classmethod
    def create(cls, source: Query) -> Query:
        """Return a plain Query holding a copy of source's clauses."""
        values = {}
        for name in _CLAUSE_FIELDS:
            value = getattr(source, name)
            if isinstance(value, (list, dict)):
                value = value.copy()
            values[name] = value
        return Query.model_construct(**values)

    # SELECT

    def select(self, *columns: Any, option: Optional[str] = None) -> Query:
        """Set the select list: names (``"id, name"``, ``"name AS n"``), Raw expressions or ``{alias: expression}``."""
        self.select_columns = self._normalize_columns(columns)
        self.select_option = option
        return self

    def add_select(self, *columns: Any) -> Query:
        self.select_columns = self.select_columns + self._normalize_columns(columns)
        return self

    def distinct(self, value: bool = True) -> Query:
        self.distinct_value = value
        return self

    @classmethod
    def _normalize_columns(cls, columns) -> list[Any]:
        result = []
        for column in columns:
            if isinstance(column, str):
                result.extend(split_list(column))
            elif isinstance(column, dict):
                result.extend(column.items())
            elif isinstance(column, (list, tuple)):
                result.extend(cls._normalize_columns(column))
            elif column is not None:
                result.append(column)
        return result

    # FROM

    def from_(self, *tables: Any) -> Query:
        """Set the FROM clause: ``"customer"``, ``"customer c"`` or ``{alias: table_or_query}``."""
        self.from_tables = self._normalize_tables(tables)
        return self

    @classmethod
    def _normalize_tables(cls, tables) -> dict[str, Any]:
        result = {}
        for table in tables:
            if isinstance(table, dict):
                result.update(table)
            elif isinstance(table, str):
                for part in split_list(table):
                    name, alias = split_alias(part)
                    result[alias or name] = name
            elif isinstance(table, (list, tuple)):
                result.update(cls._normalize_tables(table))
            elif isinstance(table, Query):
                raise ValueError("A sub-query in FROM needs an alias, pass {alias: query}")
            else:
                raise TypeError(f"Cannot use {type(table).__name__} as a table: {table!r}")
        return result

    # WHERE

    def where(self, condition: Any, params: Optional[dict[str, Any]] = None) -> Query:
        self.where_condition = to_condition(condition)
        return self.add_params(params)

    def and_where(self, condition: Any, params: Optional[dict[str, Any]] = None) -> Query:
        self.where_condition = and_(self.where_condition, condition)
        return self.add_params(params)

    def or_where(self, condition: Any, params: Optional[dict[str, Any]] = None) -> Query:
        self.where_condition = or_(self.where_condition, condition)
        return self.add_params(params)

    # JOIN

    def join(self, type: str, table: Any, on: Any = None, params: Optional[dict[str, Any]] = None) -> Query:
        """Append a join; table is a name (``"order o"``) or ``{alias: table_or_query}``."""
        self.join_clauses.append(JoinClause(type=type, table=table, on=to_condition(on)))
        return self.add_params(params)

    def inner_join(self, table: Any, on: Any = None, params: Optional[dict[str, Any]] = None) -> Query:
        return self.join("INNER JOIN", table, on, params)

    def left_join(self, table: Any, on: Any = None, params: Optional[dict[str, Any]] = None) -> Query:
        return self.join("LEFT JOIN", table, on, params)

    def right_join(self, table: Any, on: Any = None, params: Optional[dict[str, Any]] = None) -> Query:
        return self.join("RIGHT JOIN", table, on, params)

    # GROUP BY / HAVING

    def group_by(self, *columns: Any) -> Query:
        self.group_by_columns = self._normalize_columns(columns)
        return self

    def add_group_by(self, *columns: Any) -> Query:
        self.group_by_columns = self.group_by_columns + self._normalize_columns(columns)
        return self

    def having(self, condition: Any, params: Optional[dict[str, Any]] = None) -> Query:
        self.having_condition = to_condition(condition)
        return self.add_params(params)

    def and_having(self, condition: Any, params: Optional[dict[str, Any]] = None) -> Query:
        self.having_condition = and_(self.having_condition, condition)
        return self.add_params(params)

    def or_having(self, condition: Any, params: Optional[dict[str, Any]] = None) -> Query:
        self.having_condition = or_(self.having_condition, condition)
        return self.add_params(params)

    # ORDER BY / LIMIT / OFFSET

    def order_by(self, *columns: Any) -> Query:
        """Set the ordering: ``"name DESC, id"``, ``{"name": "DESC"}`` or Raw expressions."""
        self.order_by_columns = self._normalize_order_by(columns)
        return self

    def add_order_by(self, *columns: Any) -> Query:
        self.order_by_columns = {**self.order_by_columns, **self._normalize_order_by(columns)}
        return self

    @classmethod
    def _normalize_order_by(cls, columns) -> dict[str, Optional[str]]:
        result: dict[str, Optional[str]] = {}
        for column in columns:
            if isinstance(column, dict):
                for name, direction in column.items():
                    result[name] = direction.upper() if isinstance(direction, str) else direction
            elif isinstance(column, str):
                for part in split_list(column):
                    match = _ORDER_DIRECTION.match(part)
                    if match:
                        result[match.group(1)] = match.group(2).upper()
                    else:
                        result[part] = "ASC"
            elif isinstance(column, Raw):
                result[column.sql] = None
            elif isinstance(column, (list, tuple)):
                result.update(cls._normalize_order_by(column))
            else:
                raise TypeError(f"Cannot order by {type(column).__name__}: {column!r}")
        for name, direction in result.items():
            if direction not in (None, "ASC", "DESC"):
                raise ValueError(f"Invalid sort direction for `{name}`: {direction!r}")
        return result

    def limit(self, limit: Optional[int]) -> Query:
        self.limit_value = limit
        return self

    def offset(self, offset: Optional[int]) -> Query:
        self.offset_value = offset
        return self

    # UNION

    def union(self, query: Union[Query, str], all: bool = False) -> Query:
        self.union_queries.append(UnionClause(query=query, all=all))
        return self

    def union_order_by(self, *columns: Any) -> Query:
        self.union_order_by_columns = self._normalize_order_by(columns)
        return self

    def union_limit(self, limit: Optional[int]) -> Query:
        self.union_limit_value = limit
        return self

    def union_offset(self, offset: Optional[int]) -> Query:
        self.union_offset_value = offset
        return self

    # params / result shaping / hooks

    def params(self, params: Optional[dict[str, Any]]) -> Query:
        self.params_value = {}
        return self.add_params(params)

    def add_params(self, params: Optional[dict[str, Any]]) -> Query:
        """Merge bound parameters; a leading ``:`` in names is ignored."""
        if params:
            self.params_value = {
                **self.params_value,
                **{name.lstrip(":"): value for name, value in params.items()},
            }
        return self

    def index_by(self, column: Union[str, Callable, None]) -> Query:
        """Key the result of all() by a column name or by ``callback(row)``."""
        self.index_by_value = column
        return self

    def as_subattributes(self, value: bool = True) -> Query:
        """Nest ``a__b`` columns of plain row results into ``{"a": {"b": ...}}``."""
        self.as_subattributes_value = value
        return self

    def on_before_find(self, callback: Callable[[Query], Any]) -> Query:
        """Register ``callback(query)``; returning False cancels the find."""
        self.before_find_hooks.append(callback)
        return self

    def on_after_find(self, callback: Callable[[Any], Any]) -> Query:
        """Register ``callback(result)``; a non-None return value replaces the result."""
        self.after_find_hooks.append(callback)
        return self

    def _before_find(self) -> bool:
        for callback in self.before_find_hooks:
            if callback(self) is False:
                logger.debug("Find cancelled by %r", callback)
                return False
        return True

    def _after_find(self, result: Any) -> Any:
        for callback in self.after_find_hooks:
            replacement = callback(result)
            if replacement is not None:
                result = replacement
        return result

    # building

    def prepare(self, builder=None) -> Query:
        """Hook called by QueryBuilder.build() right before generating SQL."""
        return self

    def _resolve_connection(self, connection: Optional[Connection] = None) -> Connection:
        if connection is not None:
            return connection
        if self.connection is not None:
            return self.connection
        return get_connection()

    def _build(self, connection: Connection) -> tuple[str, dict[str, Any]]:
        return connection.query_builder.build(self)

    def build_sql(self, connection: Optional[Connection] = None) -> tuple[str, dict[str, Any]]:
        """Return ``(sql, params)`` without executing anything."""
        return self._build(self._resolve_connection(connection))

    def get_raw_sql(self, connection: Optional[Connection] = None) -> str:
        """Return the SQL with parameter values inlined; for logging and debugging only."""
        sql, params = self.build_sql(connection)
        for name in sorted(params, key=len, reverse=True):
            sql = re.sub(rf":{re.escape(name)}\b", lambda _, value=params[name]: _sql_literal(value), sql)
        return sql

    # terminal operations

    def populate(self, rows: list[dict[str, Any]]) -> Any:
        """Turn raw rows into the final result of all()."""
        if self.as_subattributes_value:
            rows = [nest_row(row) for row in rows]
        if self.index_by_value is not None:
            rows = {self.index_key(row): row for row in rows}
        return self._after_find(rows)

    def index_key(self, row: Any) -> Any:
        if callable(self.index_by_value):
            return self.index_by_value(row)
        if isinstance(row, dict):
            return row[self.index_by_value]
        return getattr(row, self.index_by_value)

    def all(self, connection: Optional[Connection] = None) -> Any:
        """Return every row (a list, or a dict when index_by() was used)."""
        if not self._before_find():
            return {} if self.index_by_value is not None else []
        connection = self._resolve_connection(connection)
        sql, params = self._build(connection)
        return self.populate(connection.query_all(sql, params))

    def one(self, connection: Optional[Connection] = None) -> Any:
        """Return the first row, or None."""
        if not self._before_find():
            return None
        connection = self._resolve_connection(connection)
        sql, params = self._build(connection)
        row = connection.query_one(sql, params)
        if row is None:
            return None
        result = self.populate([row])
        if isinstance(result, dict):
            result = list(result.values())
        return result[0] if result else None

    def scalar(self, connection: Optional[Connection] = None) -> Any:
        """Return the first column of the first row."""
        if not self._before_find():
            return None
        connection = self._resolve_connection(connection)
        sql, params = self._build(connection)
        return connection.query_scalar(sql, params)

    def column(self, connection: Optional[Connection] = None) -> Any:
        """Return the first column of every row (a dict when index_by() was used)."""
        if not self._before_find():
            return []
        connection = self._resolve_connection(connection)
        if self.index_by_value is None:
            sql, params = self._build(connection)
            return connection.query_column(sql, params)
        select = self.select_columns
        if isinstance(self.index_by_value, str) and len(select) == 1:
            self.select_columns = select + [self.index_by_value]
        try:
            sql, params = self._build(connection)
        finally:
            self.select_columns = select
        result = {}
        for row in connection.query_all(sql, params):
            result[self.index_key(row)] = next(iter(row.values()))
        return result

    def count(self, expression: str = "*", connection: Optional[Connection] = None) -> int:
        return self._query_scalar(f"COUNT({expression})", connection)

    def sum(self, expression: str, connection: Optional[Connection] = None) -> Any:
        return self._query_scalar(f"SUM({expression})", connection)

    def average(self, expression: str, connection: Optional[Connection] = None) -> Any:
        return self._query_scalar(f"AVG({expression})", connection)

    def min(self, expression: str, connection: Optional[Connection] = None) -> Any:
        return self._query_scalar(f"MIN({expression})", connection)

    def max(self, expression: str, connection: Optional[Connection] = None) -> Any:
        return self._query_scalar(f"MAX({expression})", connection)

    def exists(self, connection: Optional[Connection] = None) -> bool:
        """Whether the query returns at least one row."""
        if not self._before_find():
            return False
        connection = self._resolve_connection(connection)
        select = self.select_columns
        self.select_columns = [Raw(sql="1")]
        try:
            sql, params = self._build(connection)
        finally:
            self.select_columns = select
        return connection.query_scalar(sql, params) is not None

    def _query_scalar(self, expression: str, connection: Optional[Connection] = None) -> Any:
        """Evaluate an aggregate expression over the query, leaving its clauses untouched."""
        if not self._before_find():
            return None
        connection = self._resolve_connection(connection)
        if (self.group_by_columns or self.having_condition is not None
                or self.union_queries or self.distinct_value):
            wrapper = Query().select(Raw(sql=expression)).from_({"c": self})
            sql, params = connection.query_builder.build(wrapper)
            return connection.query_scalar(sql, params)
        select, limit, offset = self.select_columns, self.limit_value, self.offset_value
        self.select_columns = [Raw(sql=expression)]
        self.limit_value = None
        self.offset_value = None
        try:
            sql, params = self._build(connection)
        finally:
            self.select_columns, self.limit_value, self.offset_value = select, limit, offset
        return connection.query_scalar(sql, params)

    def batch(self, batch_size: int = 100, connection: Optional[Connection] = None) -> Iterator[Any]:
        """Yield the result in chunks of at most batch_size rows, each shaped like all()."""
        if not self._before_find():
            return
        connection = self._resolve_connection(connection)
        sql, params = self._build(connection)
        for rows in connection.iterate(sql, params, batch_size):
            yield self.populate(rows)

    def each(self, batch_size: int = 100, connection: Optional[Connection] = None) -> Iterator[Any]:
        """Yield rows one at a time, fetching batch_size rows per round-trip."""
        for rows in self.batch(batch_size, connection):
            if isinstance(rows, dict):
                rows = rows.values()
            yield from rows


def _sql_literal(value: Any) -> str:
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        return str(value)
    return "'" + str(value).replace("'", "''") + "'"


__all__ = ["Query", "JoinClause", "UnionClause", "ALIAS_SEPARATOR", "split_alias", "split_list", "nest_row",
           "select_columns_of"]
