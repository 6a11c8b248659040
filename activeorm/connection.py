"""Named database connections: a URL registry and statement execution.

``connect(url, name)`` registers a database under a name; records and queries
look it up through ``get_connection(name)`` unless a ``Connection`` is passed
explicitly to their terminal operations.
"""

from __future__ import annotations

import logging
import urllib.parse
from typing import Any, Callable, Iterator, Optional, Union

from .dialects import Dialect, get_dialect_for_scheme

logger = logging.getLogger("activeorm")


DatabaseUrl = Union[str, Callable[[], str]]


class Connection:
    """A lazily opened DB-API connection bound to a dialect.

    Rows are returned as dicts keyed by the column names reported in
    ``cursor.description``; when two columns share a name, the last one wins.
    """

    def __init__(self, database_url: DatabaseUrl, dialect: Optional[Dialect] = None):
        self._database_url = database_url
        self._dialect = dialect
        self._raw = None
        self._query_builder = None

    @property
    def url(self) -> str:
        """The database URL, resolved if it was registered as a callable."""
        if callable(self._database_url):
            return self._database_url()
        return self._database_url

    @property
    def dialect(self) -> Dialect:
        if self._dialect is None:
            self._dialect = get_dialect_for_scheme(urllib.parse.urlparse(self.url).scheme)
        return self._dialect

    @property
    def raw(self):
        """The underlying driver connection, opened on first use."""
        if self._raw is None:
            self._raw = self.dialect.connect(self.url)
        return self._raw

    @property
    def query_builder(self):
        if self._query_builder is None:
            from .builder import QueryBuilder
            self._query_builder = QueryBuilder(dialect=self.dialect)
        return self._query_builder

    def _cursor(self, sql: str, params: Optional[dict[str, Any]]):
        sql, params = self.dialect.bind(sql, params)
        logger.debug("Executing %s with %r", sql, params)
        cursor = self.raw.cursor()
        cursor.execute(sql, params)
        return cursor

    @staticmethod
    def _row_dicts(cursor, rows) -> list[dict[str, Any]]:
        columns = [description[0] for description in cursor.description or ()]
        return [dict(zip(columns, row)) for row in rows]

    def execute(self, sql: str, params: Optional[dict[str, Any]] = None) -> int:
        """Run a statement that returns no rows; return the affected row count."""
        cursor = self._cursor(sql, params)
        try:
            return cursor.rowcount
        finally:
            cursor.close()

    def query_all(self, sql: str, params: Optional[dict[str, Any]] = None) -> list[dict[str, Any]]:
        """Return every row of the result as a dict."""
        cursor = self._cursor(sql, params)
        try:
            return self._row_dicts(cursor, cursor.fetchall())
        finally:
            cursor.close()

    def query_one(self, sql: str, params: Optional[dict[str, Any]] = None) -> Optional[dict[str, Any]]:
        """Return the first row of the result as a dict, or None."""
        cursor = self._cursor(sql, params)
        try:
            row = cursor.fetchone()
            if row is None:
                return None
            return self._row_dicts(cursor, [row])[0]
        finally:
            cursor.close()

    def query_scalar(self, sql: str, params: Optional[dict[str, Any]] = None) -> Any:
        """Return the first column of the first row, or None when there is no row."""
        cursor = self._cursor(sql, params)
        try:
            row = cursor.fetchone()
            return None if row is None else row[0]
        finally:
            cursor.close()

    def query_column(self, sql: str, params: Optional[dict[str, Any]] = None) -> list[Any]:
        """Return the first column of every row."""
        cursor = self._cursor(sql, params)
        try:
            return [row[0] for row in cursor.fetchall()]
        finally:
            cursor.close()

    def iterate(self, sql: str, params: Optional[dict[str, Any]] = None,
                batch_size: int = 100) -> Iterator[list[dict[str, Any]]]:
        """Yield the result in lists of at most batch_size row dicts."""
        if batch_size < 1:
            raise ValueError("batch_size must be a positive integer")
        cursor = self._cursor(sql, params)
        try:
            while True:
                rows = cursor.fetchmany(batch_size)
                if not rows:
                    break
                yield self._row_dicts(cursor, rows)
        finally:
            cursor.close()

    def commit(self) -> None:
        if self._raw is not None:
            self._raw.commit()

    def close(self) -> None:
        """Close the driver connection; the next statement reopens it."""
        if self._raw is not None:
            self._raw.close()
            self._raw = None


_connections: dict[str, Connection] = {}


def connect(database_url: DatabaseUrl, name: str = "default") -> Connection:
    """Register database_url (or a callable returning it) under name.

    A connection previously registered under the same name is closed.
    """
    if not isinstance(database_url, str) and not callable(database_url):
        raise ValueError("database_url must be a str or a method returning one")
    previous = _connections.pop(name, None)
    if previous is not None:
        previous.close()
    connection = Connection(database_url)
    _connections[name] = connection
    return connection


def get_connection(name: str = "default") -> Connection:
    """Return the connection registered under name."""
    try:
        return _connections[name]
    except KeyError as error:
        raise ValueError(f"No connection configured with name=`{name}`") from error
