"""Base Dialect type: identifier quoting, placeholders and LIMIT syntax per engine."""

import re
from abc import ABC, abstractmethod
from typing import Any, ClassVar, Optional

from pydantic import BaseModel


_QUOTE_MARKERS = re.compile(r"(\{\{(%?[\w\-\. ]+%?)\}\}|\[\[([\w\-\. ]+)\]\])")
_NAMED_PLACEHOLDER = re.compile(r"(?<![:\w]):([A-Za-z_]\w*)")


class Dialect(BaseModel, ABC):
    """Base for database dialects; subclasses implement connect() for a given URL."""

    model_config = {"arbitrary_types_allowed": True}

    SUPPORTED_SCHEMA: ClassVar[tuple[str, ...]] = ()
    """URL schemes this dialect handles (e.g. ('sqlite',), ('postgresql',))."""

    QUOTE_CHARACTER: ClassVar[str] = '"'
    """Character wrapped around table and column names."""

    PARAMSTYLE: ClassVar[str] = "named"
    """DB-API paramstyle of the driver: 'named' (``:name``) or 'pyformat' (``%(name)s``)."""

    NO_LIMIT: ClassVar[Optional[str]] = None
    """LIMIT value meaning "no limit", for engines that reject OFFSET without LIMIT."""

    WRAP_UNION_OPERANDS: ClassVar[bool] = True
    """Whether SELECT statements combined with UNION may be parenthesized."""

    LIKE_ESCAPE_CLAUSE: ClassVar[str] = ""
    """Suffix appended to LIKE conditions so that backslash escapes wildcards."""

    @abstractmethod
    def connect(self, url: str) -> Any:
        """Return a new raw DB-API connection for the given URL."""
        ...  # pylint: disable=unnecessary-ellipsis

    def quote_simple_name(self, name: str) -> str:
        """Quote a single identifier (no dots); ``*`` and quoted names are kept as is."""
        q = self.QUOTE_CHARACTER
        if name == "*" or (name.startswith(q) and name.endswith(q) and len(name) > 1):
            return name
        return q + name.replace(q, q + q) + q

    def quote_table_name(self, name: str) -> str:
        """Quote a possibly schema-prefixed table name; expressions are returned unchanged."""
        if "(" in name or "{{" in name:
            return name
        return ".".join(self.quote_simple_name(part) for part in name.split("."))

    def quote_column_name(self, name: str) -> str:
        """Quote a possibly table-prefixed column name (``order.id`` -> ``"order"."id"``)."""
        if "(" in name or "[[" in name or "{{" in name:
            return self.quote_sql(name)
        prefix, _, column = name.rpartition(".")
        if prefix:
            return self.quote_table_name(prefix) + "." + self.quote_simple_name(column)
        return self.quote_simple_name(column)

    def quote_sql(self, sql: str) -> str:
        """Replace ``{{table}}`` and ``[[column]]`` markers with quoted names."""
        def replace(match):
            if match.group(3) is not None:
                return self.quote_column_name(match.group(3))
            return self.quote_table_name(match.group(2).replace("%", ""))
        return _QUOTE_MARKERS.sub(replace, sql)

    def escape_like(self, value: str) -> str:
        """Escape LIKE wildcards so that value matches literally."""
        return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")

    def build_limit(self, limit: Optional[int], offset: Optional[int]) -> str:
        """Return the LIMIT/OFFSET clause, or an empty string."""
        parts = []
        if limit is not None and limit >= 0:
            parts.append(f"LIMIT {int(limit)}")
        elif offset and self.NO_LIMIT is not None:
            parts.append(f"LIMIT {self.NO_LIMIT}")
        if offset:
            parts.append(f"OFFSET {int(offset)}")
        return " ".join(parts)

    def wrap_union_operand(self, sql: str) -> str:
        """Return a SELECT statement ready to be combined with UNION."""
        return f"({sql})" if self.WRAP_UNION_OPERANDS else sql

    def bind(self, sql: str, params: Optional[dict[str, Any]]) -> tuple[str, dict[str, Any]]:
        """Adapt SQL written with ``:name`` placeholders to the driver's paramstyle."""
        params = dict(params or {})
        if self.PARAMSTYLE == "named":
            return sql, params
        if self.PARAMSTYLE == "pyformat":
            if not params:
                return sql, params
            sql = _NAMED_PLACEHOLDER.sub(r"%(\1)s", sql.replace("%", "%%"))
            return sql, params
        raise ValueError(f"Unsupported paramstyle: {self.PARAMSTYLE}")
