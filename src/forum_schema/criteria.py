"""Implicit usergroup membership criteria.

A usergroup may include users implicitly through a list of criteria. Each
criterion tests one user attribute. Criteria that share an ``orGroup`` are
AND-ed together, distinct ``orGroup`` values are OR-ed:

    [
      {"orGroup": 0, "key": "comments", "predicate": "ge", "value": 1500},
      {"orGroup": 0, "key": "is_member", "predicate": "eq", "value": true},
      {"orGroup": 1, "key": "foo", "predicate": "eq", "value": "bar"}
    ]

matches every user where
(comments >= 1500 AND is_member == true) OR foo == "bar".

The meaning of ``key`` is left to the importing system; the importer builds
a mapping of attribute key to value for each user and hands it to
``matches``.
"""

import operator
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Iterable, Mapping, Sequence

from .errors import CriterionConfigError, PredicateTypeError
from .utils import as_timestamp, format_timestamp, parse_timestamp


class Predicate(str, Enum):
    """Comparison operators a criterion can apply."""

    EQUALS = "eq"
    NOT_EQUALS = "ne"
    LESS_THAN = "lt"  # Only on numbers and dates
    LESS_THAN_OR_EQUALS = "le"  # Only on numbers and dates
    GREATER_THAN_OR_EQUALS = "ge"  # Only on numbers and dates
    GREATER_THAN = "gt"  # Only on numbers and dates
    SUBSTRING = "substr"  # Only on strings
    NOT_SUBSTRING = "nsubstr"  # Only on strings

    @classmethod
    def parse(cls, raw: Any) -> "Predicate":
        """Look up a predicate by its JSON name."""
        if isinstance(raw, cls):
            return raw
        try:
            return cls(raw)
        except ValueError:
            valid = ", ".join(p.value for p in cls)
            raise CriterionConfigError(
                f"Unknown predicate {raw!r} (expected one of: {valid})"
            ) from None


class ValueKind(str, Enum):
    """Tag of a criterion value."""

    INTEGER = "integer"
    FLOAT = "float"
    STRING = "string"
    BOOLEAN = "boolean"
    TIMESTAMP = "timestamp"


ORDERING_PREDICATES = frozenset({
    Predicate.LESS_THAN,
    Predicate.LESS_THAN_OR_EQUALS,
    Predicate.GREATER_THAN_OR_EQUALS,
    Predicate.GREATER_THAN,
})

SUBSTRING_PREDICATES = frozenset({Predicate.SUBSTRING, Predicate.NOT_SUBSTRING})

NUMERIC_KINDS = frozenset({ValueKind.INTEGER, ValueKind.FLOAT})

# Value kinds each predicate accepts
ALLOWED_KINDS: dict[Predicate, frozenset[ValueKind]] = {
    Predicate.EQUALS: frozenset(ValueKind),
    Predicate.NOT_EQUALS: frozenset(ValueKind),
    **{p: NUMERIC_KINDS | {ValueKind.TIMESTAMP} for p in ORDERING_PREDICATES},
    **{p: frozenset({ValueKind.STRING}) for p in SUBSTRING_PREDICATES},
}

_COMPARATORS: dict[Predicate, Callable[[Any, Any], bool]] = {
    Predicate.LESS_THAN: operator.lt,
    Predicate.LESS_THAN_OR_EQUALS: operator.le,
    Predicate.GREATER_THAN_OR_EQUALS: operator.ge,
    Predicate.GREATER_THAN: operator.gt,
}


@dataclass(frozen=True)
class CriterionValue:
    """The value side of a criterion, tagged with its kind."""

    kind: ValueKind
    value: int | float | str | bool | datetime

    @classmethod
    def from_json(
        cls,
        raw: Any,
        predicate: Predicate,
        date_key: bool = False,
    ) -> "CriterionValue":
        """Tag a decoded JSON value.

        Strings become timestamps when the predicate is an ordering predicate
        or when ``date_key`` is set and the string parses as one. Substring
        predicates always keep strings as strings.

        Raises:
            CriterionConfigError: If the value cannot be used in a criterion.
        """
        # bool first: bool is a subclass of int
        if isinstance(raw, bool):
            return cls(ValueKind.BOOLEAN, raw)
        if isinstance(raw, int):
            return cls(ValueKind.INTEGER, raw)
        if isinstance(raw, float):
            return cls(ValueKind.FLOAT, raw)
        if isinstance(raw, datetime):
            return cls(ValueKind.TIMESTAMP, as_timestamp(raw))
        if isinstance(raw, str):
            if predicate in ORDERING_PREDICATES or (
                date_key and predicate not in SUBSTRING_PREDICATES
            ):
                parsed = parse_timestamp(raw)
                if parsed is not None:
                    return cls(ValueKind.TIMESTAMP, parsed)
            return cls(ValueKind.STRING, raw)
        raise CriterionConfigError(
            f"Unsupported criterion value {raw!r} ({type(raw).__name__})"
        )

    def to_json(self) -> Any:
        if self.kind is ValueKind.TIMESTAMP:
            return format_timestamp(self.value)
        return self.value


@dataclass(frozen=True)
class Criterion:
    """One implicit-membership test against a user attribute.

    ``predicate`` may be given as its JSON name and ``value`` as a plain
    Python value; both are normalised and checked on construction.
    """

    or_group: int
    key: str
    predicate: Predicate
    value: CriterionValue

    def __post_init__(self) -> None:
        predicate = Predicate.parse(self.predicate)
        object.__setattr__(self, "predicate", predicate)
        if not isinstance(self.value, CriterionValue):
            object.__setattr__(self, "value", CriterionValue.from_json(self.value, predicate))
        validate_criterion(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], date_keys: Iterable[str] = ()) -> "Criterion":
        """Build a criterion from its JSON object.

        Args:
            data: Decoded JSON object with orGroup, key, predicate and value.
            date_keys: Attribute keys whose string values are timestamps.

        Raises:
            CriterionConfigError: If the object is not a valid criterion.
        """
        if not isinstance(data, Mapping):
            raise CriterionConfigError(f"Criterion must be an object, got {data!r}")

        or_group = data.get("orGroup", 0)
        if isinstance(or_group, bool) or not isinstance(or_group, int):
            raise CriterionConfigError(f"orGroup must be an integer, got {or_group!r}")

        key = data.get("key", "")
        if not isinstance(key, str):
            raise CriterionConfigError(f"key must be a string, got {key!r}")

        if "predicate" not in data:
            raise CriterionConfigError(f"Criterion on {key!r} has no predicate")
        predicate = Predicate.parse(data["predicate"])

        if data.get("value") is None:
            raise CriterionConfigError(f"Criterion on {key!r} has no value")
        value = CriterionValue.from_json(
            data["value"], predicate, date_key=key in set(date_keys)
        )
        return cls(or_group=or_group, key=key, predicate=predicate, value=value)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"orGroup": self.or_group}
        if self.key:
            result["key"] = self.key
        result["predicate"] = self.predicate.value
        result["value"] = self.value.to_json()
        return result


def validate_criterion(criterion: Criterion) -> None:
    """Check that the criterion's predicate applies to its value kind.

    Raises:
        CriterionConfigError: If the predicate cannot apply to the value.
    """
    allowed = ALLOWED_KINDS[criterion.predicate]
    if criterion.value.kind not in allowed:
        if criterion.predicate in ORDERING_PREDICATES:
            needs = "a number or a timestamp"
        else:
            needs = "a string"
        raise CriterionConfigError(
            f"Predicate {criterion.predicate.value!r} on {criterion.key!r} needs "
            f"{needs}, got {criterion.value.kind.value} {criterion.value.to_json()!r}"
        )


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _equals(attribute: Any, expected: CriterionValue) -> bool:
    if expected.kind is ValueKind.BOOLEAN:
        return isinstance(attribute, bool) and attribute == expected.value
    if expected.kind in NUMERIC_KINDS:
        return _is_number(attribute) and attribute == expected.value
    if expected.kind is ValueKind.TIMESTAMP:
        return as_timestamp(attribute) == expected.value
    return isinstance(attribute, str) and attribute == expected.value


def _orderable(attribute: Any, criterion: Criterion) -> Any:
    if criterion.value.kind in NUMERIC_KINDS:
        if _is_number(attribute):
            return attribute
        needs = "a numeric"
    else:
        converted = as_timestamp(attribute)
        if converted is not None:
            return converted
        needs = "a date"
    raise PredicateTypeError(
        f"Predicate {criterion.predicate.value!r} on {criterion.key!r} needs "
        f"{needs} attribute, got {type(attribute).__name__} {attribute!r}"
    )


def evaluate_criterion(criterion: Criterion, user_attributes: Mapping[str, Any]) -> bool:
    """Evaluate a single criterion against a user's attributes.

    A missing (or null) attribute never matches.

    Raises:
        PredicateTypeError: If the predicate cannot apply to the attribute.
    """
    attribute = user_attributes.get(criterion.key)
    if attribute is None:
        return False

    predicate = criterion.predicate
    if predicate is Predicate.EQUALS:
        return _equals(attribute, criterion.value)
    if predicate is Predicate.NOT_EQUALS:
        return not _equals(attribute, criterion.value)

    if predicate in ORDERING_PREDICATES:
        return _COMPARATORS[predicate](_orderable(attribute, criterion), criterion.value.value)

    if not isinstance(attribute, str):
        raise PredicateTypeError(
            f"Predicate {predicate.value!r} on {criterion.key!r} needs a string "
            f"attribute, got {type(attribute).__name__} {attribute!r}"
        )
    contained = criterion.value.value in attribute
    return contained if predicate is Predicate.SUBSTRING else not contained


def group_criteria(criteria: Iterable[Criterion]) -> dict[int, list[Criterion]]:
    """Partition criteria by orGroup."""
    groups: dict[int, list[Criterion]] = {}
    for criterion in criteria:
        groups.setdefault(criterion.or_group, []).append(criterion)
    return groups


def matches(user_attributes: Mapping[str, Any], criteria: Sequence[Criterion]) -> bool:
    """Decide whether a user implicitly matches a list of criteria.

    Every criterion is evaluated, so a misconfigured criterion fails for
    every user rather than only for those that reach it.

    Args:
        user_attributes: Attribute key -> value for one user.
        criteria: The usergroup's criteria.

    Returns:
        True if all criteria of at least one orGroup hold. An empty list
        never matches.

    Raises:
        PredicateTypeError: If a predicate cannot apply to an attribute.
    """
    satisfied = [
        all([evaluate_criterion(c, user_attributes) for c in group])
        for group in group_criteria(criteria).values()
    ]
    return any(satisfied)
