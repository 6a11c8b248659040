"""Eager loading: batched relation queries matched back onto a set of primary records.

For every relation requested with ``with_()``, one query fetches the related
rows of all primary records at once (``WHERE link IN (...)``); the rows are
then partitioned by link key and stored in each primary record's relation
cache. Nested paths (``"orders.items"``) become ``with_()`` requests of the
relation query, so each level costs one query whatever the number of
records. Pivot relations cost one more query per pivot.

Primary "records" may also be plain row dicts (``as_array()``), in which
case the related rows are stored under the relation name as dict keys.
"""

import logging
from collections import defaultdict
from typing import Any, Optional

from .exceptions import ConfigurationError
from .utils.make_hashable import make_hashable

logger = logging.getLogger("activeorm")


def has_value(model: Any, attribute: str) -> bool:
    if isinstance(model, dict):
        return attribute in model
    return model.has_attribute(attribute)


def get_value(model: Any, attribute: str) -> Any:
    if isinstance(model, dict):
        return model.get(attribute)
    return model.get_attribute(attribute)


def get_model_key(model: Any, attributes: list[str]) -> Optional[tuple]:
    """Return the hashable key of model over attributes.

    None when one of the attributes is not loaded: an incomplete key never
    matches anything.
    """
    key = []
    for attribute in attributes:
        if not has_value(model, attribute):
            return None
        key.append(make_hashable(get_value(model, attribute)))
    return tuple(key)


def get_cached(model: Any, name: str) -> Any:
    """Return the cached value of relation name, without lazy loading."""
    if isinstance(model, dict):
        return model.get(name)
    return model.related_records.get(name)


def set_cached(model: Any, name: str, value: Any) -> None:
    if isinstance(model, dict):
        model[name] = value
    else:
        model.populate_relation(name, value)


def as_list(value: Any, multiple: bool) -> list:
    """A cached relation value as a list of records (or row dicts)."""
    if value is None:
        return []
    if not multiple:
        return [value]
    if isinstance(value, dict):
        return list(value.values())
    return list(value)


def normalize_relations(record_class: type, relations: dict) -> dict:
    """Build one relation query per top-level name, forwarding nested paths to its with_()."""
    queries = {}
    for path, callback in relations.items():
        name, _, child_path = path.partition(".")
        query = queries.get(name)
        if query is None:
            query = record_class.relation(name).create_query(record_class)
            queries[name] = query
        if child_path:
            query.with_({child_path: callback})
        elif callback is not None:
            callback(query)
    return queries


def find_with(query, relations: dict, models: list) -> None:
    """Populate the requested relations on models, in place."""
    if not models:
        return
    first = models[0]
    record_class = query.record_class if isinstance(first, dict) else type(first)
    for name, relation in normalize_relations(record_class, relations).items():
        if relation.as_array_value is None:
            relation.as_array(query.as_array_value)
        populate_relation(relation, name, models)


def populate_relation(relation, name: str, primary_models: list) -> list:
    """Load relation for every primary model and store the result under name.

    Returns the related records (each one once, in query order).
    """
    if not relation.link:
        raise ConfigurationError(f"Relation `{name}` has an empty link: map target columns to local attributes")

    via = relation.via_relation
    pairs = None
    if isinstance(via, tuple):
        via_name, via_query = via
        via_query.primary_model = None
        if via_query.as_array_value is None:
            via_query.as_array(relation.as_array_value)
        populate_relation(via_query, via_name, primary_models)
        pairs = _pairs_from_relation(primary_models, via_name, via_query.multiple)
    elif via is not None:
        pairs = resolve_pivot(via, primary_models)

    relation.filter_by_models(primary_models if pairs is None else [row for row, _ in pairs])

    index_by = relation.index_by_value
    relation.index_by_value = None
    try:
        models = relation.all()
    finally:
        relation.index_by_value = index_by

    target_columns = list(relation.link)
    if pairs is None:
        _assign_direct(relation, name, primary_models, models, target_columns)
    else:
        _assign_through_pivot(relation, name, primary_models, models, target_columns, pairs)

    if relation.inverse_name is not None:
        populate_inverse_relation(primary_models, name, relation)

    logger.debug("Populated `%s` for %d primary records with %d related records",
                 name, len(primary_models), len(models))
    return models


def _assign_direct(relation, name: str, primary_models: list, models: list, target_columns: list[str]) -> None:
    buckets = defaultdict(list)
    for model in models:
        key = get_model_key(model, target_columns)
        if key is not None:
            buckets[key].append(model)

    local_attributes = list(relation.link.values())
    for primary in primary_models:
        values = None
        if relation.multiple and len(local_attributes) == 1:
            value = get_value(primary, local_attributes[0])
            if isinstance(value, (list, tuple)):
                values = value
        if values is not None:
            # array-valued link: every listed key contributes
            bucket = []
            for value in values:
                bucket.extend(buckets.get((make_hashable(value),), ()))
        else:
            key = get_model_key(primary, local_attributes)
            bucket = buckets.get(key, []) if key is not None else []
        _assign(relation, name, primary, bucket)


def _assign_through_pivot(relation, name: str, primary_models: list, models: list,
                          target_columns: list[str], pairs: list) -> None:
    owners_by_key = defaultdict(list)
    pivot_attributes = list(relation.link.values())
    for row, owners in pairs:
        key = get_model_key(row, pivot_attributes)
        if key is None:
            continue
        indices = owners_by_key[key]
        for index in owners:
            if index not in indices:
                indices.append(index)

    buckets = defaultdict(list)
    for model in models:
        key = get_model_key(model, target_columns)
        for index in owners_by_key.get(key, ()) if key is not None else ():
            buckets[index].append(model)

    for index, primary in enumerate(primary_models):
        _assign(relation, name, primary, buckets.get(index, []))


def _assign(relation, name: str, primary: Any, bucket: list) -> None:
    if relation.multiple:
        if relation.index_by_value is not None:
            value = {relation.index_key(model): model for model in bucket}
        else:
            value = list(bucket)
    else:
        value = bucket[0] if bucket else None
    set_cached(primary, name, value)


def _pairs_from_relation(primary_models: list, via_name: str, multiple: bool) -> list[tuple[Any, list[int]]]:
    """Pair each intermediate record of a populated via relation with the indices of its primary records."""
    pairs = {}
    for index, primary in enumerate(primary_models):
        for model in as_list(get_cached(primary, via_name), multiple):
            pairs.setdefault(id(model), (model, []))[1].append(index)
    return list(pairs.values())


def resolve_pivot(pivot, primary_models: list) -> list[tuple[Any, list[int]]]:
    """Query the rows of a pivot query linked to primary_models.

    Returns ``(row, indices)`` pairs where indices are the positions in
    primary_models of the records the row belongs to. A pivot may itself go
    through another pivot table or relation; those are resolved first.
    """
    if not pivot.link:
        raise ConfigurationError("A pivot table link can not be empty")

    inner = pivot.via_relation
    local_attributes = list(pivot.link.values())
    owners = defaultdict(list)
    if inner is None:
        pivot.filter_by_models(primary_models)
        for index, primary in enumerate(primary_models):
            key = get_model_key(primary, local_attributes)
            if key is not None:
                owners[key].append(index)
    else:
        if isinstance(inner, tuple):
            inner_name, inner_query = inner
            inner_query.primary_model = None
            populate_relation(inner_query, inner_name, primary_models)
            inner_pairs = _pairs_from_relation(primary_models, inner_name, inner_query.multiple)
        else:
            inner_pairs = resolve_pivot(inner, primary_models)
        pivot.filter_by_models([row for row, _ in inner_pairs])
        for row, indices in inner_pairs:
            key = get_model_key(row, local_attributes)
            if key is None:
                continue
            for index in indices:
                if index not in owners[key]:
                    owners[key].append(index)

    pivot_columns = list(pivot.link)
    rows = pivot.all()
    if isinstance(rows, dict):
        rows = list(rows.values())
    result = []
    for row in rows:
        key = get_model_key(row, pivot_columns)
        result.append((row, list(owners.get(key, ())) if key is not None else []))
    return result


def populate_inverse_relation(primary_models: list, name: str, relation) -> None:
    """Point the inverse relation of every loaded child back at its primary record(s)."""
    inverse_name = relation.inverse_name
    inverse = relation.record_class.relation(inverse_name)
    if inverse.multiple:
        parents = {}
        for primary in primary_models:
            for child in as_list(get_cached(primary, name), relation.multiple):
                parents.setdefault(id(child), (child, []))[1].append(primary)
        for child, owners in parents.values():
            set_cached(child, inverse_name, owners)
    else:
        for primary in primary_models:
            for child in as_list(get_cached(primary, name), relation.multiple):
                set_cached(child, inverse_name, primary)
