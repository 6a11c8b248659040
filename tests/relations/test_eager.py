"""Eager loading with with_(): one query per relation level, whatever the number of records."""

import pytest

from activeorm import UnknownRelationError
from tests.models import Category, Customer, Order, OrderItem


def ids(records):
    return [record.id for record in records]


# --- Query count ---


def test_has_many(statements):
    """A has_many relation is loaded for every customer by one extra query."""
    customers = Customer.find().with_("orders").order_by("id").all()
    assert len(statements) == 2
    assert [ids(customer.orders) for customer in customers] == [[1], [2, 3], []]
    assert len(statements) == 2


def test_nested_path(statements):
    """Each level of a dotted path costs one query."""
    customers = Customer.find().with_("orders.order_items").order_by("id").all()
    assert len(statements) == 3
    assert [item.item_id for item in customers[1].orders[0].order_items] == [3, 4, 5]
    assert len(statements) == 3


def test_nested_via_relation(statements):
    """A via relation adds the query of its intermediate relation."""
    customers = Customer.find().with_("orders.items").order_by("id").all()
    assert len(statements) == 4
    assert [ids(order.items) for order in customers[1].orders] == [[3, 4, 5], [2]]
    assert ids(customers[0].orders[0].items) == [1, 2]
    assert len(statements) == 4


def test_three_levels(statements):
    customers = Customer.find().with_("orders.order_items.notes").order_by("id").all()
    assert len(statements) == 4
    order_items = customers[0].orders[0].order_items
    assert [ids(order_item.notes) for order_item in order_items] == [[1, 5], [2]]


def test_nested_via_table(statements):
    """Two pivot levels cost one query each, plus the target query."""
    customers = Customer.find().with_("ordered_items").order_by("id").all()
    assert len(statements) == 4
    assert [ids(customer.ordered_items) for customer in customers] == [[1, 2], [2, 3, 4, 5], []]


def test_empty_result_skips_relations(statements):
    """No relation query runs when the primary query finds nothing."""
    assert Customer.find().where({"id": 99}).with_("orders").all() == []
    assert len(statements) == 1


# --- Assignment ---


def test_has_one(statements):
    """Orders of the same customer share one customer instance."""
    orders = Order.find().with_("customer").order_by("id").all()
    assert [order.customer.id for order in orders] == [1, 2, 2]
    assert orders[1].customer is orders[2].customer
    assert len(statements) == 2


def test_has_one_with_null_link(db):
    """A NULL link value is assigned None."""
    customers = Customer.find().with_("profile").order_by("id").all()
    assert [customer.profile and customer.profile.id for customer in customers] == [1, None, 2]


def test_shared_records_are_loaded_once(db):
    """An item ordered twice is one instance across both orders."""
    customers = Customer.find().with_("orders.items").order_by("id").all()
    assert customers[0].orders[0].items[1] is customers[1].orders[1].items[0]


def test_via_table(db):
    orders = Order.find().with_("books").order_by("id").all()
    assert [ids(order.books) for order in orders] == [[1, 2], [], [2]]


def test_via_table_from_the_other_side(db):
    categories = Category.find().with_("orders").order_by("id").all()
    assert [ids(category.orders) for category in categories] == [[1, 3], [2]]


def test_relation_with_condition(db):
    """The relation's own WHERE applies to the batched query."""
    customers = Customer.find().with_("expensive_orders").order_by("id").all()
    assert [ids(customer.expensive_orders) for customer in customers] == [[1], [], []]


def test_composite_link(db):
    """Composite links are matched on every column."""
    order_items = OrderItem.find().where({"order_id": 1}).with_("notes").order_by("item_id").all()
    assert [ids(order_item.notes) for order_item in order_items] == [[1, 5], [2]]


def test_index_by(db):
    """A relation with index_by is assigned a dict."""
    order = Order.find().where({"id": 1}).with_("items_indexed").one()
    assert list(order.items_indexed) == [1, 2]


def test_one(db):
    """one() eager-loads like all()."""
    customer = Customer.find().where({"id": 2}).with_("orders").one()
    assert ids(customer.orders) == [2, 3]


# --- Callbacks ---


def test_callback_customizes_relation_query(db):
    """A path may map to a callback receiving the relation query."""
    customers = (Customer.find()
                 .with_({"orders": lambda query: query.and_where("[[total]] > 35")})
                 .order_by("id")
                 .all())
    assert [ids(customer.orders) for customer in customers] == [[1], [3], []]


def test_callback_applies_to_the_last_segment(db):
    """The callback of a dotted path customizes its deepest relation only."""
    customers = (Customer.find()
                 .with_({"orders.items": lambda query: query.and_where({"category_id": 2})})
                 .order_by("id")
                 .all())
    assert [ids(order.items) for order in customers[1].orders] == [[3, 4, 5], []]
    assert ids(customers[0].orders) == [1]


def test_repeated_path_replaces_callback(db):
    """Requesting a path again replaces its callback."""
    query = Customer.find().with_({"orders": lambda query: query.and_where({"id": 1})}).with_("orders")
    assert query.with_relations == {"orders": None}
    assert ids(query.where({"id": 2}).one().orders) == [2, 3]


# --- Inverse relations ---


def test_has_many_inverse(statements):
    """Loaded orders point back at their customer without querying."""
    customers = Customer.find().with_("orders_with_inverse").order_by("id").all()
    assert len(statements) == 2
    for customer in customers:
        for order in customer.orders_with_inverse:
            assert order.customer_with_inverse is customer
    assert len(statements) == 2


def test_has_one_inverse_groups_parents(statements):
    """A multiple inverse relation lists every parent sharing the child."""
    orders = Order.find().with_("customer_with_inverse").order_by("id").all()
    customer = orders[1].customer_with_inverse
    assert customer.orders_with_inverse == [orders[1], orders[2]]
    assert orders[0].customer_with_inverse.orders_with_inverse == [orders[0]]
    assert len(statements) == 2


# --- Arrays ---


def test_rows_get_relation_keys(db):
    """With as_array(), relations are stored as keys of the row dicts."""
    rows = Customer.find().with_("orders").order_by("id").as_array().all()
    assert [[order["id"] for order in row["orders"]] for row in rows] == [[1], [2, 3], []]
    assert isinstance(rows[1]["orders"][0], dict)


def test_nested_rows(db):
    rows = Customer.find().where({"id": 1}).with_("orders.items", "profile").as_array().all()
    assert [item["id"] for item in rows[0]["orders"][0]["items"]] == [1, 2]
    assert rows[0]["profile"]["description"] == "profile customer 1"


def test_unknown_relation(db):
    """Eager-loading an undeclared relation raises UnknownRelationError."""
    with pytest.raises(UnknownRelationError):
        Customer.find().with_("nope").all()
