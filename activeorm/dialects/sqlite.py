"""SQLite dialect."""

import logging
import urllib.parse

from typing import ClassVar, Optional

from .base import Dialect

logger = logging.getLogger("activeorm")


class SqliteDialect(Dialect):
    """Dialect for SQLite (scheme sqlite)."""

    SUPPORTED_SCHEMA: ClassVar[tuple[str, ...]] = ("sqlite",)
    NO_LIMIT: ClassVar[Optional[str]] = "-1"
    WRAP_UNION_OPERANDS: ClassVar[bool] = False
    LIKE_ESCAPE_CLAUSE: ClassVar[str] = " ESCAPE '\\'"

    def connect(self, url: str):
        import sqlite3
        parsed = urllib.parse.urlparse(url)
        path = (parsed.path or "")[1:] or parsed.hostname or ":memory:"
        logger.info("Connecting to SQLite database %s", path)
        conn = sqlite3.connect(path)
        conn.execute("PRAGMA foreign_keys = ON")
        return conn
