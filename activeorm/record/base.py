"""Record base class: a primary-key-identified row with declared relations."""

import logging
from typing import Any, Optional

from pydantic import BaseModel, PrivateAttr

from ..active_query import ActiveQuery
from ..connection import Connection, get_connection
from ..exceptions import ConfigurationError, UnknownRelationError
from ..relation import Relation
from .hydratable import Hydratable
from .meta import RecordMeta, to_table_name

logger = logging.getLogger("activeorm")


class Record(Hydratable, BaseModel, metaclass=RecordMeta):
    """Base class for records.

    ::

        class Customer(Record, table_name="customer"):
            id: int
            name: str
            orders = has_many("Order", {"customer_id": "id"})

        customers = Customer.find().with_("orders").where({"status": 1}).all()

    Relation values are cached per instance: reading ``customer.orders``
    queries the database once, unless the relation was eager-loaded.
    """

    model_config = {
        "arbitrary_types_allowed": True,
        "extra": "allow",
        "ignored_types": (Relation,),
    }

    _related: dict[str, Any] = PrivateAttr(default_factory=dict)
    _loaded_attributes: Optional[set] = PrivateAttr(default=None)
    _new_record: bool = PrivateAttr(default=True)

    # metadata

    @classmethod
    def table_name(cls) -> str:
        return cls._TABLE_NAME or to_table_name(cls.__name__)

    @classmethod
    def primary_key(cls) -> tuple[str, ...]:
        return cls._PRIMARY_KEY

    @classmethod
    def relations(cls) -> dict[str, Relation]:
        return dict(cls._RELATIONS)

    @classmethod
    def relation(cls, name: str) -> Relation:
        """Return the descriptor of relation name."""
        try:
            return cls._RELATIONS[name]
        except KeyError as error:
            raise UnknownRelationError(cls, name) from error

    @classmethod
    def get_connection(cls) -> Connection:
        return get_connection(cls._CONNECTION_NAME)

    # finders

    @classmethod
    def find(cls) -> ActiveQuery:
        return ActiveQuery(record_class=cls)

    @classmethod
    def _find_by_condition(cls, condition: Any) -> ActiveQuery:
        if not isinstance(condition, dict):
            primary_key = cls.primary_key()
            if len(primary_key) != 1:
                raise ConfigurationError(f"{cls.__name__} has a composite primary key, pass a dict condition")
            condition = {primary_key[0]: condition}
        return cls.find().and_where(condition)

    @classmethod
    def find_one(cls, condition: Any) -> Optional["Record"]:
        """Return the record matching a primary key value (or a dict condition), or None."""
        return cls._find_by_condition(condition).one()

    @classmethod
    def find_all(cls, condition: Any) -> list["Record"]:
        """Return the records matching primary key values (or a dict condition)."""
        return cls._find_by_condition(condition).all()

    @classmethod
    def find_by_sql(cls, sql: str, params: Optional[dict[str, Any]] = None) -> ActiveQuery:
        """Return a query running raw SQL; with_() and as_array() still apply."""
        query = cls.find()
        query.raw_sql = sql
        return query.params(params)

    @classmethod
    def before_find(cls, query: ActiveQuery) -> bool:
        """Called before every find on this class; return False to cancel it."""
        return True

    def after_find(self) -> None:
        """Called on each record built from a query result."""

    # identity

    @property
    def is_new_record(self) -> bool:
        return self._new_record

    def get_primary_key(self) -> Optional[tuple]:
        """The primary key values, or None when one of them is not loaded."""
        if not all(self.has_attribute(name) for name in self.primary_key()):
            return None
        return tuple(self.get_attribute(name) for name in self.primary_key())

    def __eq__(self, other: Any) -> bool:
        """Records loaded from the database are equal when class and primary key are."""
        if self is other:
            return True
        if not isinstance(other, Record) or type(self) is not type(other):
            return False
        if self.is_new_record or other.is_new_record:
            return False
        key = self.get_primary_key()
        return key is not None and None not in key and key == other.get_primary_key()

    def __hash__(self):
        key = self.get_primary_key()
        if self.is_new_record or key is None or None in key:
            return object.__hash__(self)
        return hash((type(self), key))

    def __repr__(self) -> str:
        fields = ", ".join(f"{name}={self.get_attribute(name)!r}"
                           for name in type(self).model_fields if self.has_attribute(name))
        return f"{type(self).__name__}({fields})"

    # relations

    def get_relation(self, name: str) -> ActiveQuery:
        """Return a fresh query for relation name, bound to this record."""
        return self.relation(name).create_query(type(self), self)

    def get_related(self, name: str) -> Any:
        """Return the value of relation name, querying it on first access."""
        if name in self._related:
            return self._related[name]
        value = self.get_relation(name).find_for(name, self)
        self.populate_relation(name, value)
        return value

    def populate_relation(self, name: str, value: Any) -> None:
        """Store value as the loaded value of relation name."""
        self._related[name] = value

    def is_relation_populated(self, name: str) -> bool:
        return name in self._related

    def unset_relation(self, name: str) -> None:
        """Forget the loaded value of relation name; the next access queries it again."""
        self._related.pop(name, None)

    @property
    def related_records(self) -> dict[str, Any]:
        return dict(self._related)

    def __setattr__(self, name: str, value: Any):
        if name in type(self)._RELATIONS:
            self.populate_relation(name, value)
            return
        super().__setattr__(name, value)

    def __delattr__(self, name: str):
        if name in type(self)._RELATIONS:
            self.unset_relation(name)
            return
        super().__delattr__(name)
