"""Translates join_with() relation paths into JOIN clauses of the primary query."""

import logging
from typing import Any, Union

from .conditions import Raw, and_
from .query import split_alias
from .utils.make_hashable import make_hashable

logger = logging.getLogger("activeorm")


def build_join_with(query) -> None:
    """Turn query.join_with_requests into joins (and eager-load requests).

    Joins composed from relations come first, in request order, with
    structurally identical joins collapsed; joins that were already present
    on the query follow them.
    """
    existing_joins = query.join_clauses
    query.join_clauses = []

    for relations, eager_loading, join_type in query.join_with_requests:
        join_with_relations(query, query.record_class, relations, join_type)
        if isinstance(eager_loading, (list, tuple, set)):
            relations = {path: callback for path, callback in relations.items() if path in eager_loading}
        elif not eager_loading:
            relations = {}
        # a callback given to with_() for the same path is kept
        query.with_({path: callback for path, callback in relations.items()
                     if callback is not None or path not in query.with_relations})

    unique_joins = {}
    for join in query.join_clauses:
        unique_joins.setdefault(make_hashable(join), join)
    query.join_clauses = list(unique_joins.values()) + existing_joins


def join_with_relations(query, record_class: type, relations: dict, join_type: Union[str, dict]) -> None:
    """Emit the joins for every path of relations, each prefix once."""
    resolved = {}
    for path, callback in relations.items():
        parent_class = record_class
        parent = query
        prefix = ""
        segments = path.split(".")
        for position, segment in enumerate(segments):
            prefix = f"{prefix}.{segment}" if prefix else segment
            relation = resolved.get(prefix)
            if relation is None:
                relation = parent_class.relation(segment).create_query(parent_class)
                resolved[prefix] = relation
                if position == len(segments) - 1:
                    if callback is not None:
                        callback(relation)
                    if relation.join_with_requests:
                        build_join_with(relation)
                        relation.join_with_requests = []
                join_with_relation(query, parent, relation, get_join_type(join_type, prefix))
            parent_class = relation.record_class
            parent = relation


def get_join_type(join_type: Union[str, dict], path: str) -> str:
    if isinstance(join_type, dict):
        return join_type.get(path, "INNER JOIN")
    return join_type


def get_query_table_name(query) -> tuple[str, str]:
    """Return ``(table, alias)`` of the first FROM entry, or of the record's table."""
    if not query.from_tables:
        table, alias = split_alias(query.record_class.table_name())
        return table, alias or table
    alias, table = next(iter(query.from_tables.items()))
    if not isinstance(table, str):
        return alias, alias
    return table, alias


def join_with_relation(query, parent, child, join_type: str) -> None:
    """Join child (a relation query of parent) into query, merging its clauses."""
    via = child.via_relation
    if via is not None:
        child.via_relation = None
        via_query = via[1] if isinstance(via, tuple) else via
        join_with_relation(query, parent, via_query, join_type)
        join_with_relation(query, via_query, child, join_type)
        return

    _, parent_alias = get_query_table_name(parent)
    child_table, child_alias = get_query_table_name(child)

    if child.link:
        terms = []
        for child_column, parent_column in child.link.items():
            if "." not in parent_column:
                parent_column = f"{{{{{parent_alias}}}}}.[[{parent_column}]]"
            if "." not in child_column:
                child_column = f"{{{{{child_alias}}}}}.[[{child_column}]]"
            terms.append(f"{parent_column} = {child_column}")
        on: Any = Raw(sql=" AND ".join(terms))
        if child.on is not None:
            on = and_(on, child.on)
    else:
        on = child.on

    target = dict(child.from_tables) if child.from_tables else child_table
    query.join(join_type, target, on)
    logger.debug("Joined %s %s to %s", join_type, child_alias, parent_alias)

    if child.where_condition is not None:
        query.and_where(child.where_condition)
    if child.having_condition is not None:
        query.and_having(child.having_condition)
    if child.order_by_columns:
        query.add_order_by(child.order_by_columns)
    if child.group_by_columns:
        query.add_group_by(child.group_by_columns)
    if child.params_value:
        query.add_params(child.params_value)
    if child.join_clauses:
        query.join_clauses.extend(child.join_clauses)
    if child.union_queries:
        query.union_queries.extend(child.union_queries)
