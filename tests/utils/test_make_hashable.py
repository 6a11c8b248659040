"""Tests for activeorm.utils.make_hashable."""

import datetime
import decimal
import enum

import pytest

from activeorm.conditions import Raw, and_, or_
from activeorm.connection import Connection
from activeorm.utils.make_hashable import make_hashable


class Color(enum.Enum):
    RED = 1


def test_scalars_are_kept():
    """Hashable scalars are returned unchanged."""
    for value in (1, 1.5, "a", b"a", True, None, decimal.Decimal("1.5"), datetime.date(2024, 1, 1)):
        assert make_hashable(value) == value


def test_containers():
    """Dicts, lists and sets become nested tuples and frozensets."""
    value = make_hashable({"a": [1, {"b": {2, 3}}], "c": (4,)})
    assert value == (("a", (1, (("b", frozenset({2, 3})),))), ("c", (4,)))
    hash(value)


def test_dict_order_matters():
    """Dict keys keep their order."""
    assert make_hashable({"a": 1, "b": 2}) != make_hashable({"b": 2, "a": 1})


def test_enum():
    """Enum members become (name, value)."""
    assert make_hashable(Color.RED) == ("RED", 1)


def test_models_keep_their_type():
    """Pydantic models keep their class name next to their fields."""
    assert make_hashable(Raw(sql="x")) == ("Raw", ("sql", "x"), ("params", ()))
    assert make_hashable(and_("a", "b")) != make_hashable(or_("a", "b"))
    assert make_hashable(and_("a", "b")) == make_hashable(and_("a", "b"))


def test_identity_hashed_objects():
    """Objects hashed by identity are returned as they are."""
    connection = Connection("sqlite:///:memory:")
    assert make_hashable(connection) is connection


def test_unhashable():
    """Unhashable values without a known shape are rejected."""
    with pytest.raises(ValueError, match="Cannot hash"):
        make_hashable(bytearray(b"abc"))
