import logging

import pytest

from activeorm.connection import connect


SCHEMA = [
    """CREATE TABLE profile (
        id INTEGER PRIMARY KEY,
        description VARCHAR(128) NOT NULL
    )""",
    """CREATE TABLE customer (
        id INTEGER PRIMARY KEY,
        email VARCHAR(128) NOT NULL,
        name VARCHAR(128),
        address TEXT,
        status INTEGER DEFAULT 0,
        profile_id INTEGER
    )""",
    """CREATE TABLE category (
        id INTEGER PRIMARY KEY,
        name VARCHAR(128) NOT NULL
    )""",
    """CREATE TABLE item (
        id INTEGER PRIMARY KEY,
        name VARCHAR(128) NOT NULL,
        category_id INTEGER NOT NULL
    )""",
    """CREATE TABLE "order" (
        id INTEGER PRIMARY KEY,
        customer_id INTEGER NOT NULL,
        created_at INTEGER NOT NULL,
        total DECIMAL(10, 0) NOT NULL
    )""",
    """CREATE TABLE order_item (
        order_id INTEGER NOT NULL,
        item_id INTEGER NOT NULL,
        quantity INTEGER NOT NULL,
        subtotal DECIMAL(10, 0) NOT NULL,
        PRIMARY KEY (order_id, item_id)
    )""",
    """CREATE TABLE order_item_note (
        id INTEGER PRIMARY KEY,
        order_id INTEGER NOT NULL,
        item_id INTEGER NOT NULL,
        note VARCHAR(128) NOT NULL
    )""",
]

FIXTURES = {
    "profile": [
        (1, "profile customer 1"),
        (2, "profile customer 3"),
    ],
    "customer": [
        (1, "user1@example.com", "user1", "address1", 1, 1),
        (2, "user2@example.com", "user2", "address2", 1, None),
        (3, "user3@example.com", "user3", "address3", 2, 2),
    ],
    "category": [
        (1, "Books"),
        (2, "Movies"),
    ],
    "item": [
        (1, "Agile Web Application Development with Yii1.1 and PHP5", 1),
        (2, "Yii 1.1 Application Development Cookbook", 1),
        (3, "Ice Age", 2),
        (4, "Toy Story", 2),
        (5, "Cars", 2),
    ],
    "order": [
        (1, 1, 1325282384, 110.0),
        (2, 2, 1325334482, 33.0),
        (3, 2, 1325502201, 40.0),
    ],
    "order_item": [
        (1, 1, 1, 30.0),
        (1, 2, 2, 40.0),
        (2, 4, 1, 10.0),
        (2, 5, 1, 15.0),
        (2, 3, 1, 8.0),
        (3, 2, 1, 40.0),
    ],
    "order_item_note": [
        (1, 1, 1, "first note"),
        (2, 1, 2, "second note"),
        (3, 1, 3, "same order, other item"),
        (4, 2, 1, "same item, other order"),
        (5, 1, 1, "third note"),
    ],
}


@pytest.fixture(scope="function")
def db():
    """An in-memory SQLite database registered as the default connection, seeded with the shop fixtures."""
    connection = connect("sqlite:///:memory:")
    for statement in SCHEMA:
        connection.execute(statement)
    for table, rows in FIXTURES.items():
        placeholders = ", ".join(f":p{index}" for index in range(len(rows[0])))
        for row in rows:
            connection.execute(
                f'INSERT INTO "{table}" VALUES ({placeholders})',
                {f"p{index}": value for index, value in enumerate(row)},
            )
    connection.commit()
    yield connection
    connection.close()


class StatementLog:
    """Statements executed through activeorm since the fixture was created (or cleared)."""

    def __init__(self, caplog):
        self._caplog = caplog

    @property
    def statements(self) -> list[str]:
        return [
            record.args[0]
            for record in self._caplog.records
            if record.name == "activeorm" and record.msg == "Executing %s with %r"
        ]

    def __len__(self):
        return len(self.statements)

    def clear(self):
        self._caplog.clear()


@pytest.fixture(scope="function")
def statements(db, caplog):
    caplog.set_level(logging.DEBUG, logger="activeorm")
    caplog.clear()
    return StatementLog(caplog)
