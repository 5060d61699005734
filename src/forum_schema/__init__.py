"""Shared schema for exporting and importing discussion-forum content."""

from .cli import cli
from .criteria import Criterion, CriterionValue, Predicate, ValueKind, matches
from .errors import (
    ConfigError,
    CriterionConfigError,
    DocumentError,
    PredicateTypeError,
    RecordError,
    SchemaError,
)
from .membership import MembershipReport, resolve_memberships

__all__ = [
    "ConfigError",
    "Criterion",
    "CriterionConfigError",
    "CriterionValue",
    "DocumentError",
    "MembershipReport",
    "Predicate",
    "PredicateTypeError",
    "RecordError",
    "SchemaError",
    "ValueKind",
    "cli",
    "main",
    "matches",
    "resolve_memberships",
]


def main() -> None:
    """Entry point for the forum-schema CLI."""
    cli()
