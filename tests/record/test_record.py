"""Record metadata, finders, hydration and identity."""

import pytest

from activeorm import ConfigurationError, Query, UnknownRelationError, raw
from activeorm.connection import Connection, _connections
from activeorm.record import Record, get_record_class, to_table_name
from tests.models import Customer, Item, Order, OrderItem


class SpecialOrder(Order):
    pass


class PolymorphicCustomer(Customer, table_name="customer"):

    @classmethod
    def instantiate(cls, row):
        if row.get("status") == 2:
            return VipCustomer.model_construct()
        return cls.model_construct()


class VipCustomer(PolymorphicCustomer):
    pass


class ActiveCustomer(Customer, table_name="customer"):

    @classmethod
    def before_find(cls, query):
        query.and_where({"customer.status": 1})


class HiddenCustomer(Customer, table_name="customer"):

    @classmethod
    def before_find(cls, query):
        return False


class TracedCustomer(Customer, table_name="customer"):

    def after_find(self):
        self.found = True


class RemoteCustomer(Customer, table_name="customer", connection_name="elsewhere"):
    pass


def make_database(*customers):
    connection = Connection("sqlite:///:memory:")
    connection.execute('CREATE TABLE customer (id INTEGER PRIMARY KEY, email TEXT, name TEXT, '
                       'address TEXT, status INTEGER, profile_id INTEGER)')
    for customer_id, name in customers:
        connection.execute("INSERT INTO customer (id, email, name, status) VALUES (:id, :email, :name, 1)",
                           {"id": customer_id, "email": f"{name}@example.com", "name": name})
    return connection


# --- Metadata ---


@pytest.mark.parametrize("class_name, table_name", [
    ("Customer", "customer"),
    ("OrderItem", "order_item"),
    ("HTTPRequestLog", "http_request_log"),
    ("Item2Tag", "item2_tag"),
])
def test_to_table_name(class_name, table_name):
    """Class names become snake_case table names."""
    assert to_table_name(class_name) == table_name


def test_table_names():
    """table_name is derived from the class name unless given as a class keyword."""
    assert Customer.table_name() == "customer"
    assert Order.table_name() == "order"
    assert OrderItem.table_name() == "order_item"


def test_table_name_and_primary_key_are_inherited():
    """Subclasses inherit table, primary key and relations."""
    assert SpecialOrder.table_name() == "order"
    assert SpecialOrder.primary_key() == ("id",)
    assert set(SpecialOrder.relations()) == set(Order.relations())


def test_primary_keys():
    assert Customer.primary_key() == ("id",)
    assert OrderItem.primary_key() == ("order_id", "item_id")


def test_relations_are_collected():
    """Relation descriptors are gathered by name at class creation."""
    assert "orders" in Customer.relations()
    assert Customer.relation("orders").multiple is True
    assert Customer.relation("profile").multiple is False
    assert Customer.relation("orders").name == "orders"


def test_unknown_relation():
    """UnknownRelationError is also an AttributeError."""
    with pytest.raises(UnknownRelationError, match="Customer has no relation named `nope`"):
        Customer.relation("nope")
    with pytest.raises(AttributeError):
        Customer.relation("nope")


def test_get_record_class():
    """Record classes are registered by name."""
    assert get_record_class("Customer", "tests.models") is Customer
    with pytest.raises(ConfigurationError, match="No record class named `Nothing`"):
        get_record_class("Nothing")


# --- Finders ---


def test_find_one_by_primary_key(db):
    """A scalar condition matches the primary key."""
    customer = Customer.find_one(1)
    assert isinstance(customer, Customer)
    assert customer.name == "user1"
    assert Customer.find_one(99) is None


def test_find_one_by_condition(db):
    assert Customer.find_one({"email": "user2@example.com"}).id == 2


def test_find_all(db):
    """A list matches several primary keys; a dict is a hash condition."""
    assert sorted(customer.id for customer in Customer.find_all([1, 3])) == [1, 3]
    assert [customer.id for customer in Customer.find_all({"status": 2})] == [3]


def test_composite_primary_key(db):
    """Records with a composite key are found by dict only."""
    with pytest.raises(ConfigurationError, match="composite primary key"):
        OrderItem.find_one(1)
    assert OrderItem.find_one({"order_id": 1, "item_id": 2}).quantity == 2


def test_find_query(db):
    customers = Customer.find().where({"status": 1}).order_by("id DESC").all()
    assert [customer.id for customer in customers] == [2, 1]
    assert Customer.find().where({"status": 1}).count() == 2


def test_index_by(db):
    """index_by() keys the records by a column."""
    customers = Customer.find().order_by("id").index_by("id").all()
    assert list(customers) == [1, 2, 3]
    assert customers[3].name == "user3"


def test_as_array(db):
    """as_array() returns the raw row dicts."""
    row = Customer.find().where({"id": 1}).as_array().one()
    assert row == {
        "id": 1,
        "email": "user1@example.com",
        "name": "user1",
        "address": "address1",
        "status": 1,
        "profile_id": 1,
    }


def test_find_by_sql(db):
    """find_by_sql() runs raw SQL and still supports count()."""
    query = Customer.find_by_sql('SELECT * FROM "customer" WHERE "status" = :status', {"status": 1})
    assert [customer.id for customer in query.all()] == [1, 2]
    assert query.count() == 2


def test_find_by_sql_with_eager_loading(db):
    """Raw SQL results can be eager-loaded."""
    customers = (Customer.find_by_sql('SELECT * FROM "customer" WHERE "id" = :id', {"id": 2})
                 .with_("orders")
                 .all())
    assert [order.id for order in customers[0].related_records["orders"]] == [2, 3]


def test_explicit_connection(db):
    """A connection passed to a terminal operation overrides the default one."""
    other = make_database((7, "other"))
    try:
        customers = Customer.find().all(connection=other)
        assert [customer.id for customer in customers] == [7]
        assert Customer.find().count(connection=other) == 1
    finally:
        other.close()


def test_connection_name(db, monkeypatch):
    """connection_name selects a named connection of the registry."""
    with pytest.raises(ValueError, match="No connection configured with name=`elsewhere`"):
        RemoteCustomer.find().all()
    remote = make_database((10, "remote"), (11, "remote2"))
    monkeypatch.setitem(_connections, "elsewhere", remote)
    try:
        assert [customer.id for customer in RemoteCustomer.find().order_by("id").all()] == [10, 11]
    finally:
        remote.close()


# --- Hydration ---


def test_fields_are_cast(db):
    """Row values are cast to the field annotations."""
    order = Order.find_one(2)
    assert order.total == 33.0
    assert isinstance(order.total, float)


def test_extra_columns_are_kept(db):
    """Selected columns without a field become extra attributes."""
    orders = (Order.find()
              .select("customer_id", raw("SUM([[total]]) AS spent"))
              .group_by("customer_id")
              .order_by("customer_id")
              .all())
    assert [(order.customer_id, order.spent) for order in orders] == [(1, 110), (2, 73)]
    assert orders[0].get_attribute("spent") == 110
    assert orders[0].has_attribute("spent")


def test_partial_select(db):
    """Only selected columns count as loaded attributes."""
    customer = Customer.find().select("id", "name").where({"id": 1}).one()
    assert customer.has_attribute("name")
    assert not customer.has_attribute("email")
    assert customer.email == ""
    assert repr(customer) == "Customer(id=1, name='user1')"


def test_primary_key_missing_from_projection(db):
    customer = Customer.find().select("name").where({"id": 1}).one()
    assert customer.get_primary_key() is None


def test_instantiate_picks_subclass(db):
    """instantiate() can pick a subclass per row."""
    customers = PolymorphicCustomer.find().order_by("id").all()
    assert [type(customer) for customer in customers] == [PolymorphicCustomer, PolymorphicCustomer, VipCustomer]
    assert customers[2].name == "user3"


# --- Identity ---


def test_new_record(db):
    """Records built in memory are new; found ones are not."""
    customer = Customer(email="new@example.com")
    assert customer.is_new_record
    assert not Customer.find_one(1).is_new_record


def test_equality(db):
    """Found records are equal when class and primary key match."""
    assert Customer.find_one(1) == Customer.find_one(1)
    assert Customer.find_one(1) != Customer.find_one(2)
    assert Customer(id=1) != Customer.find_one(1)
    assert Item.find_one(1) != Customer.find_one(1)


def test_hash(db):
    """Equal records hash alike."""
    assert len({Customer.find_one(1), Customer.find_one(1), Customer.find_one(2)}) == 2
    assert hash(OrderItem.find_one({"order_id": 1, "item_id": 2})) == hash(
        OrderItem.find_one({"order_id": 1, "item_id": 2}))


def test_new_records_hash_by_identity():
    first, second = Customer(id=1), Customer(id=1)
    assert len({first, second}) == 2


# --- Hooks ---


def test_before_find_narrows_query(db):
    """before_find() may add conditions to every query of the class."""
    assert sorted(customer.id for customer in ActiveCustomer.find().all()) == [1, 2]
    assert ActiveCustomer.find().count() == 2


def test_before_find_cancels(statements):
    """before_find() returning False cancels the query."""
    assert HiddenCustomer.find().all() == []
    assert HiddenCustomer.find().one() is None
    assert HiddenCustomer.find().exists() is False
    assert len(statements) == 0


def test_after_find(db):
    """after_find() runs on every found record."""
    customers = TracedCustomer.find().all()
    assert len(customers) == 3
    assert all(customer.found for customer in customers)


def test_after_find_skipped_for_arrays(db):
    rows = TracedCustomer.find().as_array().all()
    assert all("found" not in row for row in rows)


# --- Relation cache ---


def test_assignment_populates_relation(statements):
    """Assigning a relation attribute fills the cache."""
    customer = Customer.find_one(1)
    statements.clear()
    customer.orders = []
    assert customer.is_relation_populated("orders")
    assert customer.orders == []
    assert len(statements) == 0


def test_deletion_unsets_relation(db):
    """Deleting a relation attribute empties the cache."""
    customer = Customer.find_one(1)
    customer.orders = []
    del customer.orders
    assert not customer.is_relation_populated("orders")
    assert [order.id for order in customer.orders] == [1]


def test_record_is_a_pydantic_model():
    """Relations are not part of the dumped fields."""
    assert issubclass(Customer, Record)
    assert Customer(id=5, email="x@example.com").model_dump() == {
        "id": 5,
        "email": "x@example.com",
        "name": None,
        "address": None,
        "status": 0,
        "profile_id": None,
    }


def test_query_type_for_records():
    """find() returns a Query bound to the record class."""
    query = Customer.find()
    assert isinstance(query, Query)
    assert query.record_class is Customer
