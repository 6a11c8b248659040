"""activeorm: an active-record style ORM on Pydantic and SQL, with lazy and eager relation loading."""

from .connection import Connection, connect, get_connection
from .conditions import (Between, Compare, Exists, Hash, In, Like, Raw, and_, between, compare,
                         exists, in_, like, not_, not_in, or_, raw)
from .query import Query, select_columns_of
from .active_query import ActiveQuery
from .relation import Relation, has_many, has_one
from .record import Record
from .exceptions import ConfigurationError, UnknownRelationError
