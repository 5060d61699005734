"""Exception types raised while loading and evaluating forum schema documents."""


class SchemaError(ValueError):
    """Base class for every error raised by forum_schema."""


class RecordError(SchemaError):
    """A record is missing a required field or has a field of the wrong type."""


class CriterionConfigError(SchemaError):
    """A usergroup criterion is misconfigured.

    Raised for unknown predicates, unsupported values, and predicates that
    cannot apply to the kind of value they are given.
    """


class PredicateTypeError(CriterionConfigError, TypeError):
    """A predicate was applied to a user attribute of the wrong type."""


class DocumentError(SchemaError):
    """A JSON document could not be read."""


class ConfigError(SchemaError):
    """The forum-schema.toml configuration is invalid."""
