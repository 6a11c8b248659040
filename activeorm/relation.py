"""Relation descriptors declared as class attributes of records.

::

    class Customer(Record):
        id: int
        orders = has_many("Order", {"customer_id": "id"}).order_by("id")

    class Order(Record):
        id: int
        customer_id: int
        customer = has_one(Customer, {"id": "customer_id"}).inverse_of("orders")
        items = has_many("Item", {"id": "item_id"}).via_table("order_item", {"order_id": "id"})

A link maps columns of the target table to attributes of the declaring record.
Descriptors are immutable: every fluent method returns a modified copy.
Reading the attribute on a record lazily resolves the relation.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Optional, Union

from pydantic import BaseModel, Field

from .conditions import and_, to_condition

if TYPE_CHECKING:
    from .active_query import ActiveQuery


class ViaTable(BaseModel):
    """A pivot table between the declaring record and the target."""

    model_config = {"arbitrary_types_allowed": True}

    table: str
    link: dict[str, str]
    customize: Optional[Callable] = None


class Relation(BaseModel):
    model_config = {"arbitrary_types_allowed": True}

    target: Any
    link: dict[str, str]
    multiple: bool = False
    via_name: Optional[str] = None
    via_customize: Optional[Callable] = None
    via_table_link: Optional[ViaTable] = None
    on: Any = None
    on_params: dict[str, Any] = Field(default_factory=dict)
    inverse_name: Optional[str] = None
    scopes: tuple[Callable, ...] = ()
    name: Optional[str] = None
    owner_module: Optional[str] = None

    def __set_name__(self, owner, name: str):
        self.name = name
        self.owner_module = owner.__module__

    def __get__(self, instance, owner=None):
        if instance is None:
            return self
        return instance.get_related(self.name)

    @property
    def target_class(self) -> type:
        """The target record class, resolved by name when declared as a string."""
        if isinstance(self.target, str):
            from .record.meta import get_record_class
            return get_record_class(self.target, self.owner_module)
        return self.target

    def _derive(self, **changes) -> Relation:
        return self.model_copy(update=changes)

    def via(self, relation_name: str, customize: Optional[Callable] = None) -> Relation:
        """Reach the target through another relation of the declaring record."""
        return self._derive(via_name=relation_name, via_customize=customize, via_table_link=None)

    def via_table(self, table: str, link: dict[str, str], customize: Optional[Callable] = None) -> Relation:
        """Reach the target through a pivot table; link maps pivot columns to attributes of the declaring record."""
        return self._derive(via_table_link=ViaTable(table=table, link=link, customize=customize),
                            via_name=None, via_customize=None)

    def on_condition(self, condition: Any, params: Optional[dict[str, Any]] = None) -> Relation:
        """Extra condition used in the JOIN ... ON clause, and in WHERE when the relation is queried alone."""
        return self._derive(on=to_condition(condition), on_params={**self.on_params, **(params or {})})

    def inverse_of(self, name: str) -> Relation:
        return self._derive(inverse_name=name)

    def scope(self, callback: Callable[[ActiveQuery], Any]) -> Relation:
        """Apply ``callback(query)`` to every query built for this relation."""
        return self._derive(scopes=self.scopes + (callback,))

    def where(self, condition: Any, params: Optional[dict[str, Any]] = None) -> Relation:
        return self.scope(lambda query: query.and_where(condition, params))

    def order_by(self, *columns: Any) -> Relation:
        return self.scope(lambda query: query.order_by(*columns))

    def index_by(self, column: Union[str, Callable]) -> Relation:
        return self.scope(lambda query: query.index_by(column))

    def create_query(self, owner_class: type, primary_model: Any = None) -> ActiveQuery:
        """Return a fresh relation query.

        With a primary_model the query is lazy: it is narrowed to the records
        related to that instance when executed. Without one it is an eager or
        join query, narrowed by the caller.
        """
        query = self.target_class.find()
        query.owner_class = owner_class
        query.primary_model = primary_model
        query.link = dict(self.link)
        query.multiple = self.multiple
        if self.on is not None:
            query.on = and_(query.on, self.on)
            query.add_params(self.on_params)
        if self.inverse_name is not None:
            query.inverse_of(self.inverse_name)
        if self.via_name is not None:
            query.via(self.via_name, self.via_customize)
        elif self.via_table_link is not None:
            pivot = self.via_table_link
            query.via_table(pivot.table, pivot.link, pivot.customize)
        for scope in self.scopes:
            scope(query)
        return query


def has_one(target: Any, link: dict[str, str]) -> Relation:
    """Declare a relation resolving to one record (or None)."""
    return Relation(target=target, link=link, multiple=False)


def has_many(target: Any, link: dict[str, str]) -> Relation:
    """Declare a relation resolving to a list of records."""
    return Relation(target=target, link=link, multiple=True)


__all__ = ["Relation", "ViaTable", "has_one", "has_many"]
