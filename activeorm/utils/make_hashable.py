"""Structural, hashable keys for join triples, conditions and link-key values."""

import datetime
import decimal
import enum
import uuid
from typing import Any

from pydantic import BaseModel


_SCALARS = (int, float, str, bytes, bool, type(None), decimal.Decimal, uuid.UUID,
            datetime.date, datetime.time, datetime.timedelta)


def make_hashable(thing: Any):
    """Return a hashable representation of thing, equal for structurally equal inputs.

    Pydantic models keep their class name so that two node types with the
    same fields (e.g. an AND group and an OR group) never collide. Dicts keep
    their insertion order since column order is significant in a link.
    """
    if isinstance(thing, enum.Enum):
        return (thing.name, thing.value)
    if isinstance(thing, BaseModel):
        return (type(thing).__name__,) + tuple(
            (name, make_hashable(getattr(thing, name)))
            for name in type(thing).model_fields
        )
    if isinstance(thing, dict):
        return tuple((key, make_hashable(value)) for key, value in thing.items())
    if isinstance(thing, (list, tuple)):
        return tuple(make_hashable(value) for value in thing)
    if isinstance(thing, (set, frozenset)):
        return frozenset(make_hashable(value) for value in thing)
    if isinstance(thing, _SCALARS):
        return thing
    if isinstance(thing, type) or callable(thing):
        return thing
    if type(thing).__hash__ is object.__hash__:
        # identity-hashed objects (e.g. a Connection) are their own key
        return thing
    raise ValueError(f"Cannot hash `{thing!r}` of type {type(thing)}")
