"""MySQL dialect."""

import urllib.parse
from typing import ClassVar, Optional

from .base import Dialect


class MysqlDialect(Dialect):
    """Dialect for MySQL (scheme mysql)."""

    SUPPORTED_SCHEMA: ClassVar[tuple[str, ...]] = ("mysql",)
    QUOTE_CHARACTER: ClassVar[str] = "`"
    PARAMSTYLE: ClassVar[str] = "pyformat"
    NO_LIMIT: ClassVar[Optional[str]] = "18446744073709551615"

    def connect(self, url: str):
        import pymysql  # pylint: disable=import-outside-toplevel,import-error
        parsed = urllib.parse.urlparse(url)
        return pymysql.connect(
            host=parsed.hostname,
            user=parsed.username,
            password=parsed.password,
            database=(parsed.path or "")[1:] or None,
            port=parsed.port or 3306,
        )
