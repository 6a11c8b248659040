"""ActiveQuery: a Query bound to a record class, with relation context and eager loading."""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional, Union

from pydantic import Field

from .conditions import In, and_, or_, to_condition
from .connection import Connection
from .eager import find_with, get_model_key, resolve_pivot
from .exceptions import ConfigurationError
from .join import build_join_with, get_query_table_name
from .query import Query, nest_row
from .utils.make_hashable import make_hashable

logger = logging.getLogger("activeorm")


JoinType = Union[str, dict[str, str]]


def normalize_with(relations) -> dict[str, Optional[Callable]]:
    """Turn ``"a"``, ``["a", "b.c"]`` or ``{"a": callback}`` into an ordered path -> callback dict."""
    result: dict[str, Optional[Callable]] = {}
    for relation in relations:
        if isinstance(relation, str):
            result[relation] = None
        elif isinstance(relation, dict):
            result.update(relation)
        elif isinstance(relation, (list, tuple)):
            result.update(normalize_with(relation))
        else:
            raise TypeError(f"Cannot use {type(relation).__name__} as a relation path: {relation!r}")
    return result


class ActiveQuery(Query):
    """A query returning records of record_class.

    Besides the clauses of Query, it carries:

    - eager-load requests (``with_``, ``join_with``);
    - a relation context when it was built from a relation descriptor:
      the link, the multiplicity, the pivot (``via``), the ``on`` condition,
      the inverse relation name and, for lazy loading, the primary record.
    """

    record_class: Any
    with_relations: dict[str, Any] = Field(default_factory=dict)
    join_with_requests: list[tuple] = Field(default_factory=list)
    as_array_value: Optional[bool] = None
    raw_sql: Optional[str] = None
    on: Any = None
    link: Optional[dict[str, str]] = None
    multiple: bool = False
    primary_model: Any = None
    owner_class: Any = None
    via_relation: Any = None
    inverse_name: Optional[str] = None

    # eager loading

    def with_(self, *relations: Any) -> ActiveQuery:
        """Request eager loading of relation paths (``"orders"``, ``"orders.items"``).

        A path may map to ``callback(relation_query)`` to customize the query
        that loads it; declaring the same path again replaces its callback.
        """
        self.with_relations = {**self.with_relations, **normalize_with(relations)}
        return self

    def join_with(self, relations: Any, eager_loading: Union[bool, list[str]] = True,
                  join_type: JoinType = "LEFT JOIN") -> ActiveQuery:
        """Join the tables of relation paths into this query.

        eager_loading is True (populate every joined relation), False (join
        only, e.g. to filter) or a list of the paths to populate. join_type is
        a join keyword for every path, or a dict path -> keyword where
        unlisted paths are INNER JOINed.
        """
        self.join_with_requests.append((normalize_with([relations]), eager_loading, join_type))
        return self

    def inner_join_with(self, relations: Any, eager_loading: Union[bool, list[str]] = True) -> ActiveQuery:
        return self.join_with(relations, eager_loading, "INNER JOIN")

    def as_array(self, value: bool = True) -> ActiveQuery:
        """Return plain row dicts instead of records."""
        self.as_array_value = value
        return self

    # relation context

    def via(self, relation_name: str, callback: Optional[Callable] = None) -> ActiveQuery:
        """Reach the target through another relation of the owner class."""
        owner = type(self.primary_model) if self.primary_model is not None else self.owner_class
        if owner is None:
            raise ConfigurationError("via() needs a relation query built from a record class")
        relation = owner.relation(relation_name).create_query(owner, self.primary_model)
        self.via_relation = (relation_name, relation)
        if callback is not None:
            callback(relation)
        return self

    def via_table(self, table_name: str, link: dict[str, str], callback: Optional[Callable] = None) -> ActiveQuery:
        """Reach the target through a pivot table; link maps pivot columns to owner attributes."""
        owner = type(self.primary_model) if self.primary_model is not None else (self.owner_class or self.record_class)
        pivot = ActiveQuery(record_class=owner, owner_class=owner, link=dict(link), multiple=True,
                            as_array_value=True).from_(table_name)
        self.via_relation = pivot
        if callback is not None:
            callback(pivot)
        return self

    def on_condition(self, condition: Any, params: Optional[dict[str, Any]] = None) -> ActiveQuery:
        self.on = to_condition(condition)
        return self.add_params(params)

    def and_on_condition(self, condition: Any, params: Optional[dict[str, Any]] = None) -> ActiveQuery:
        self.on = and_(self.on, condition)
        return self.add_params(params)

    def or_on_condition(self, condition: Any, params: Optional[dict[str, Any]] = None) -> ActiveQuery:
        self.on = or_(self.on, condition)
        return self.add_params(params)

    def inverse_of(self, relation_name: str) -> ActiveQuery:
        """Name the relation of the target class that points back to the owner."""
        self.inverse_name = relation_name
        return self

    def clone(self) -> ActiveQuery:
        """Return a copy that can be modified without affecting this query."""
        update = {}
        for name, value in self:
            if isinstance(value, (list, dict)):
                update[name] = value.copy()
        if isinstance(self.via_relation, ActiveQuery):
            update["via_relation"] = self.via_relation.clone()
        elif isinstance(self.via_relation, tuple):
            via_name, via_query = self.via_relation
            update["via_relation"] = (via_name, via_query.clone())
        return self.model_copy(update=update)

    # building

    def prepare(self, builder=None) -> Query:
        """Resolve join_with() requests and the relation context into a plain Query."""
        if self.join_with_requests:
            build_join_with(self)
            self.join_with_requests = []

        if not self.from_tables:
            self.from_(self.record_class.table_name())

        if not self.select_columns and self.join_clauses:
            _, alias = get_query_table_name(self)
            self.select_columns = [f"{alias}.*"]

        if self.primary_model is None:
            query = Query.create(self)
        else:
            # lazy relational query: narrow a copy of WHERE to the primary record
            where = self.where_condition
            try:
                self._filter_by_primary_model()
                query = Query.create(self)
            finally:
                self.where_condition = where

        if self.on is not None:
            query.and_where(self.on)
        return query

    def _filter_by_primary_model(self) -> None:
        via = self.via_relation
        if isinstance(via, tuple):
            via_name, via_query = via
            if via_query.multiple:
                via_models = via_query.all()
                if isinstance(via_models, dict):
                    via_models = list(via_models.values())
                self.primary_model.populate_relation(via_name, via_models)
            else:
                via_model = via_query.one()
                self.primary_model.populate_relation(via_name, via_model)
                via_models = [] if via_model is None else [via_model]
            self.filter_by_models(via_models)
        elif via is not None:
            self.filter_by_models(via.clone().find_pivot_rows([self.primary_model]))
        else:
            self.filter_by_models([self.primary_model])

    def filter_by_models(self, models: Any) -> ActiveQuery:
        """Narrow WHERE to the rows whose link columns match the given records or row dicts."""
        if not self.link:
            raise ConfigurationError(f"Relation query on {self.record_class.__name__} has an empty link")
        if isinstance(models, dict):
            models = list(models.values())
        columns = list(self.link)
        attributes = list(self.link.values())

        if self.join_clauses or self.join_with_requests:
            _, alias = get_query_table_name(self)
            columns = [column if "." in column else f"{alias}.{column}" for column in columns]

        if len(attributes) == 1:
            values = []
            for model in models:
                value = _model_value(model, attributes[0])
                if isinstance(value, (list, tuple)):
                    values.extend(value)
                elif value is not None:
                    values.append(value)
            unique = {}
            for value in values:
                unique.setdefault(make_hashable(value), value)
            return self.and_where(In(columns=columns[0], values=list(unique.values())))

        unique = {}
        for model in models:
            key = get_model_key(model, attributes)
            if key is not None:
                unique.setdefault(key, tuple(_model_value(model, attribute) for attribute in attributes))
        return self.and_where(In(columns=tuple(columns), values=list(unique.values())))

    def find_pivot_rows(self, primary_models: list) -> list[dict[str, Any]]:
        """Query the pivot rows of this pivot query linked to primary_models."""
        return [row for row, _ in resolve_pivot(self, primary_models)]

    def find_for(self, name: str, model: Any) -> Any:
        """Load relation name of model: a list for multiple relations, else a record or None.

        The query is bound to model, so it is narrowed to the records
        related to it and the inverse relation of each result points back
        at it.
        """
        type(model).relation(name)
        if self.primary_model is not model:
            self.primary_model = model
            self.owner_class = type(model)
            if isinstance(self.via_relation, tuple):
                self.via_relation[1].primary_model = model
        return self.all() if self.multiple else self.one()

    # terminal operations

    def _resolve_connection(self, connection: Optional[Connection] = None) -> Connection:
        if connection is not None:
            return connection
        if self.connection is not None:
            return self.connection
        return self.record_class.get_connection()

    def _build(self, connection: Connection) -> tuple[str, dict[str, Any]]:
        if self.raw_sql is not None:
            return self.raw_sql, dict(self.params_value)
        return super()._build(connection)

    def _before_find(self) -> bool:
        if self.record_class.before_find(self) is False:
            return False
        return super()._before_find()

    def _query_scalar(self, expression: str, connection: Optional[Connection] = None) -> Any:
        if self.raw_sql is None:
            return super()._query_scalar(expression, connection)
        if not self._before_find():
            return None
        connection = self._resolve_connection(connection)
        sql = f"SELECT {expression} FROM ({self.raw_sql}) c"
        return connection.query_scalar(sql, dict(self.params_value))

    def populate(self, rows: list[dict[str, Any]]) -> Any:
        """Turn raw rows into records (or dicts), deduplicate, eager-load and index them."""
        if not rows:
            return {} if self.index_by_value is not None else []
        if self.as_subattributes_value and self.as_array_value:
            rows = [nest_row(row) for row in rows]
        models = self._create_models(rows)
        if self.join_clauses and self.index_by_value is None:
            models = self.remove_duplicated_models(models)
        if self.with_relations:
            find_with(self, self.with_relations, models)
        if self.inverse_name is not None and self.primary_model is not None:
            self._add_inverse_relations(models)
        if not self.as_array_value:
            for model in models:
                model.after_find()
        if self.index_by_value is not None:
            models = {self.index_key(model): model for model in models}
        return self._after_find(models)

    def _create_models(self, rows: list[dict[str, Any]]) -> list:
        if self.as_array_value:
            return [dict(row) for row in rows]
        models = []
        for row in rows:
            model = self.record_class.instantiate(row)
            type(model).populate_record(model, row)
            models.append(model)
        return models

    def remove_duplicated_models(self, models: list) -> list:
        """Keep the first record (or row dict) of every primary key, in order.

        Rows whose primary-key columns are missing from the projection, or
        NULL, are kept as they are.
        """
        primary_key = self.record_class.primary_key()
        if not primary_key:
            raise ConfigurationError(f"Primary key of '{self.record_class.__name__}' can not be empty.")
        seen = set()
        result = []
        for model in models:
            key = get_model_key(model, primary_key)
            if key is None or None in key:
                result.append(model)
                continue
            if key in seen:
                continue
            seen.add(key)
            result.append(model)
        if len(result) != len(models):
            logger.debug("Removed %d duplicated %s rows", len(models) - len(result), self.record_class.__name__)
        return result

    def _add_inverse_relations(self, models: list) -> None:
        inverse = self.record_class.relation(self.inverse_name)
        value = [self.primary_model] if inverse.multiple else self.primary_model
        for model in models:
            if isinstance(model, dict):
                model[self.inverse_name] = value
            else:
                model.populate_relation(self.inverse_name, value)


def _model_value(model: Any, attribute: str) -> Any:
    if isinstance(model, dict):
        return model.get(attribute)
    return model.get_attribute(attribute)


__all__ = ["ActiveQuery", "normalize_with"]
