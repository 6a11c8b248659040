"""Hydratable mixin: building records from raw rows and reading their attributes."""

from functools import cache
from typing import Any

from pydantic import TypeAdapter


@cache
def _get_type_adapter(record_class: type, name: str) -> TypeAdapter:
    return TypeAdapter(record_class.model_fields[name].annotation)


class Hydratable:
    """Mixin that turns raw row dicts into record instances.

    Declared fields are cast with pydantic to their annotated type; other
    columns (aliases, aggregates) are kept as extra attributes. Fields that
    were not part of the row keep their default value but are reported as
    missing by has_attribute(), so they never take part in link keys.
    """

    @classmethod
    def instantiate(cls, row: dict[str, Any]) -> "Record":
        """Return an empty record for row; override to pick a subclass per row."""
        return cls.model_construct()

    @classmethod
    def cast_attribute(cls, name: str, value: Any) -> Any:
        if value is None or name not in cls.model_fields:
            return value
        return _get_type_adapter(cls, name).validate_python(value)

    @classmethod
    def populate_record(cls, record: "Record", row: dict[str, Any]) -> None:
        """Fill record with the values of a raw row, marking it as loaded from the database."""
        fields = {}
        extra = {}
        for name, value in row.items():
            if name in cls.model_fields:
                fields[name] = cls.cast_attribute(name, value)
            else:
                extra[name] = value
        record.__dict__.update(fields)
        record.__pydantic_fields_set__.update(fields)
        if extra:
            if record.__pydantic_extra__ is None:
                object.__setattr__(record, "__pydantic_extra__", {})
            record.__pydantic_extra__.update(extra)
        record._loaded_attributes = set(row)
        record._new_record = False

    def has_attribute(self, name: str) -> bool:
        """Whether name holds a value: a column of the loaded row, or any field of a new record."""
        if self.__pydantic_extra__ and name in self.__pydantic_extra__:
            return True
        if name not in type(self).model_fields:
            return False
        return self._loaded_attributes is None or name in self._loaded_attributes

    def get_attribute(self, name: str) -> Any:
        if name in type(self).model_fields:
            return self.__dict__.get(name)
        return (self.__pydantic_extra__ or {}).get(name)
