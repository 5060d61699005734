"""Resolve usergroup membership for a batch of imported users."""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from .config import Settings
from .criteria import matches
from .errors import PredicateTypeError
from .records import Comment, User, Usergroup

logger = logging.getLogger(__name__)

# Attribute key holding the number of comments a user has posted
COMMENTS_KEY = "comments"


@dataclass
class MembershipReport:
    """Outcome of resolving a batch of usergroups."""

    # usergroup id -> member user ids, in input order
    members: dict[int, list[int]] = field(default_factory=dict)
    # usergroup id -> reason the usergroup was aborted
    errors: dict[int, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors


def comment_counts(comments: Iterable[Comment]) -> Counter[int]:
    """Count non-deleted comments per author."""
    return Counter(c.author for c in comments if c.author and not c.deleted)


def user_attributes(
    user: User,
    comment_count: int = 0,
    extra: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Build the attribute snapshot criteria are evaluated against.

    Scalar fields of the user record are keyed by their JSON names; unset
    timestamps are left out. ``comments`` holds the comment count, and
    ``extra`` (importer-specific metrics) overrides anything else.
    """
    attributes: dict[str, Any] = {}
    for name, info in type(user).model_fields.items():
        value = getattr(user, name)
        if value is None or isinstance(value, list):
            continue
        attributes[info.alias or name] = value
    attributes[COMMENTS_KEY] = comment_count
    if extra:
        attributes.update(extra)
    return attributes


def is_member(
    usergroup: Usergroup,
    user: User,
    attributes: Mapping[str, Any],
    settings: Settings | None = None,
) -> bool:
    """Decide whether a user belongs to a usergroup.

    Raises:
        PredicateTypeError: If one of the usergroup's criteria cannot apply
            to the user's attributes.
    """
    settings = settings or Settings()
    if usergroup.include_registered and user.id > 0:
        return True

    explicit = user.id in usergroup.user_ids or any(g.id == usergroup.id for g in user.usergroups)
    if not usergroup.criteria:
        return explicit

    implicit = matches(attributes, usergroup.criteria)
    return implicit or (settings.explicit_with_criteria and explicit)


def resolve_memberships(
    usergroups: Iterable[Usergroup],
    users: Iterable[User],
    comments: Iterable[Comment] = (),
    extra_attributes: Mapping[int, Mapping[str, Any]] | None = None,
    settings: Settings | None = None,
) -> MembershipReport:
    """Resolve the members of every usergroup.

    A criterion that cannot apply to a user's attributes aborts that
    usergroup only. The failure is logged and recorded in the report's
    ``errors``, and the remaining usergroups are still resolved.

    Args:
        usergroups: Usergroups to resolve.
        users: Every imported user.
        comments: Imported comments, used for the ``comments`` attribute.
        extra_attributes: user id -> additional attributes for that user.
        settings: Membership settings (defaults if None).

    Returns:
        MembershipReport with members per resolved usergroup.
    """
    users = list(users)
    counts = comment_counts(comments)
    extra_attributes = extra_attributes or {}

    duplicates = sorted(uid for uid, n in Counter(user.id for user in users).items() if n > 1)
    if duplicates:
        logger.warning("Duplicate user ids: %s", ", ".join(str(uid) for uid in duplicates))

    # One snapshot per user record, in input order
    snapshots = [
        user_attributes(user, counts[user.id], extra_attributes.get(user.id))
        for user in users
    ]

    report = MembershipReport()
    for usergroup in usergroups:
        try:
            members = [
                user.id
                for user, attributes in zip(users, snapshots)
                if is_member(usergroup, user, attributes, settings)
            ]
        except PredicateTypeError as e:
            logger.error("Usergroup %d (%s) aborted: %s", usergroup.id, usergroup.name, e)
            report.errors[usergroup.id] = str(e)
            continue

        report.members[usergroup.id] = members
        logger.debug("Usergroup %d (%s): %d members", usergroup.id, usergroup.name, len(members))

    return report
