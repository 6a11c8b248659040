"""Record base class, its metaclass and the row hydration mixin."""

from .base import Record
from .hydratable import Hydratable
from .meta import RecordMeta, get_record_class, to_table_name

__all__ = [
    "Record",
    "RecordMeta",
    "Hydratable",
    "get_record_class",
    "to_table_name",
]
