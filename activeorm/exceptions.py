"""Exceptions raised by activeorm for misdeclared records, relations and queries."""


class ConfigurationError(ValueError):
    """A relation, record or query is declared in a way that cannot work.

    Raised synchronously and never retried: it signals a programming error,
    not a transient condition.
    """


class UnknownRelationError(ConfigurationError, AttributeError):
    """The requested relation name is not declared on the record type."""

    def __init__(self, record_class: type, name: str):
        super().__init__(f"{record_class.__name__} has no relation named `{name}`")
        self.record_class = record_class
        self.name = name
