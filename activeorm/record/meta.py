"""Metaclass for Record: table metadata, relation registry and class lookup by name."""

import re
from collections import defaultdict
from typing import Optional

from pydantic._internal._model_construction import ModelMetaclass

from ..exceptions import ConfigurationError
from ..relation import Relation


_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")

# class name -> record classes, in declaration order
_RECORD_CLASSES: dict[str, list[type]] = defaultdict(list)


def to_table_name(class_name: str) -> str:
    """``OrderItem`` -> ``order_item``."""
    return _CAMEL_BOUNDARY.sub("_", class_name).lower()


def get_record_class(name: str, module: Optional[str] = None) -> type:
    """Return the record class declared under name.

    When several classes share the name, the one declared in module wins,
    then the most recently declared one.
    """
    candidates = _RECORD_CLASSES.get(name)
    if not candidates:
        raise ConfigurationError(f"No record class named `{name}`")
    for candidate in reversed(candidates):
        if candidate.__module__ == module:
            return candidate
    return candidates[-1]


class RecordMeta(ModelMetaclass):
    """Reads the ``table_name``, ``primary_key`` and ``connection_name`` class keywords
    (inherited from the bases when omitted) and gathers Relation attributes."""

    def __new__(mcs, name, bases, namespace,
                table_name: str = None,
                primary_key: tuple[str, ...] = None,
                connection_name: str = None,
                **kwargs):
        result = super().__new__(mcs, name, bases, namespace, **kwargs)

        if table_name is None:
            for base in bases:
                table_name = getattr(base, "_TABLE_NAME", None)
                if table_name:
                    break
        result._TABLE_NAME = table_name

        if isinstance(primary_key, str):
            primary_key = (primary_key,)
        if primary_key is None:
            for base in bases:
                primary_key = getattr(base, "_PRIMARY_KEY", None)
                if primary_key is not None:
                    break
        result._PRIMARY_KEY = tuple(primary_key) if primary_key is not None else ("id",)

        if not connection_name:
            for base in bases:
                connection_name = getattr(base, "_CONNECTION_NAME", None)
                if connection_name:
                    break
        result._CONNECTION_NAME = connection_name or "default"

        relations = {}
        for base in reversed(result.__mro__[1:]):
            relations.update(base.__dict__.get("_RELATIONS", {}))
        for attribute, value in namespace.items():
            if isinstance(value, Relation):
                if attribute in result.model_fields:
                    raise ConfigurationError(f"`{attribute}` of {name} is both a field and a relation")
                relations[attribute] = value
        result._RELATIONS = relations

        _RECORD_CLASSES[name].append(result)
        return result
