"""Record types for exported forum content and their JSON field mappings.

Every record is a pydantic model whose fields carry their JSON name as an
alias. ``to_dict`` leaves out fields holding their default value (0, "",
False, None or an empty list) unless the field is listed in
``always_written``, matching the omit-empty rule of the export format.
"""

import logging
from datetime import datetime
from typing import Annotated, Any, ClassVar, Iterable, Mapping

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    InstanceOf,
    PlainSerializer,
    SerializationInfo,
    SerializerFunctionWrapHandler,
    StrictBool,
    StrictInt,
    StrictStr,
    ValidationError,
    ValidationInfo,
    model_serializer,
    model_validator,
)

from .criteria import Criterion
from .errors import RecordError, SchemaError
from .utils import ZERO_TIMESTAMP, as_timestamp, format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)


def _timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return as_timestamp(value)
    parsed = parse_timestamp(value) if isinstance(value, str) else None
    if parsed is None:
        raise ValueError(f"expected a timestamp, got {value!r}")
    return None if parsed == ZERO_TIMESTAMP else parsed


def _criterion(value: Any, info: ValidationInfo) -> Criterion:
    if isinstance(value, Criterion):
        return value
    date_keys = (info.context or {}).get("date_keys", ())
    return Criterion.from_dict(value, date_keys)


# RFC 3339 timestamp; the zero time loads as unset
Timestamp = Annotated[
    datetime | None,
    BeforeValidator(_timestamp),
    PlainSerializer(format_timestamp, when_used="json-unless-none"),
]

CriterionItem = Annotated[
    InstanceOf[Criterion],
    BeforeValidator(_criterion),
    PlainSerializer(lambda c: c.to_dict()),
]

_TYPE_MESSAGES = {
    "int_type": "expected an integer",
    "bool_type": "expected a boolean",
    "string_type": "expected a string",
    "list_type": "expected a list",
    "model_type": "expected an object",
    "model_attributes_type": "expected an object",
}


def _location(where: str, loc: tuple[int | str, ...]) -> str:
    return where + "".join(f"[{part}]" if isinstance(part, int) else f".{part}" for part in loc)


def _schema_error(where: str, error: Mapping[str, Any]) -> SchemaError:
    """Turn the first pydantic error into a SchemaError naming its JSON path."""
    loc = tuple(error["loc"])
    if error["type"] == "missing":
        return RecordError(f"{_location(where, loc[:-1])}: missing required field {loc[-1]!r}")

    path = _location(where, loc)
    cause = error.get("ctx", {}).get("error")
    if isinstance(cause, SchemaError):
        return type(cause)(f"{path}: {cause}")
    if isinstance(cause, Exception):
        return RecordError(f"{path}: {cause}")
    if error["type"] in _TYPE_MESSAGES:
        return RecordError(f"{path}: {_TYPE_MESSAGES[error['type']]}, got {error['input']!r}")
    return RecordError(f"{path}: {error['msg']}")


class Record(BaseModel):
    """Base class for JSON-mapped records."""

    model_config = ConfigDict(populate_by_name=True)

    # Fields written even when they hold their default value
    always_written: ClassVar[tuple[str, ...]] = ()

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        # null means unset, as for any omitted field
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data

    @model_serializer(mode="wrap")
    def _write_always(
        self, handler: SerializerFunctionWrapHandler, info: SerializationInfo
    ) -> dict[str, Any]:
        data = handler(self)
        for name in self.always_written:
            key = (type(self).model_fields[name].alias or name) if info.by_alias else name
            if key in data:
                continue
            value = getattr(self, name)
            if isinstance(value, Record):
                value = value.model_dump(mode=info.mode, by_alias=info.by_alias, exclude_defaults=True)
            data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], date_keys: Iterable[str] = ()) -> Any:
        """Build a record from a decoded JSON object.

        Args:
            data: The JSON object.
            date_keys: Criterion keys whose string values are timestamps.

        Raises:
            RecordError: If a required field is missing or has the wrong type.
            CriterionConfigError: If a usergroup criterion is invalid.
        """
        try:
            return cls.model_validate(data, context={"date_keys": tuple(date_keys)})
        except ValidationError as e:
            raise _schema_error(cls.__name__, e.errors()[0]) from e

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_defaults=True)


class ID(Record):
    """Reference to another record by its identifier."""

    id: StrictInt


class Association(Record):
    """Any piece of content by type and ID.

    Association(on_type="conversation", on_id=123) means conversation 123.
    """

    on_type: StrictStr = Field("", alias="onType")
    on_id: StrictInt = Field(0, alias="onId")


class User(Record):
    """A user of the forum.

    Every forum is presumed to have a username, an email address and an
    identifier for its users.
    """

    always_written = ("email",)

    id: StrictInt
    name: StrictStr
    email: StrictStr = ""
    date_created: Timestamp = Field(None, alias="dateCreated")
    last_active: Timestamp = Field(None, alias="lastActive")
    ip_address: StrictStr = Field("", alias="ipAddress")
    receive_email_from_admins: StrictBool = Field(False, alias="receiveEmailFromAdmins")
    receive_email_notifications: StrictBool = Field(False, alias="receiveEmailNotifications")
    banned: StrictBool = Field(False, alias="isBanned")
    usergroups: list[ID] = Field(default_factory=list)


class ForumPermissions(Record):
    """What members of a usergroup may do within a forum."""

    view: StrictBool = Field(False, alias="canView")
    post_new: StrictBool = Field(False, alias="canPostNew")
    edit_own: StrictBool = Field(False, alias="canEditOwn")
    edit_others: StrictBool = Field(False, alias="canEditOthers")
    delete_own: StrictBool = Field(False, alias="canDeleteOwn")
    delete_others: StrictBool = Field(False, alias="canDeleteOthers")
    close_own: StrictBool = Field(False, alias="canCloseOwn")
    open_own: StrictBool = Field(False, alias="canOpenOwn")


class Usergroup(Record):
    """A group of users that share a set of permissions.

    Users are included explicitly (listed in ``users``) or implicitly (they
    satisfy ``criteria``). Unless a source system documents otherwise, when
    a usergroup has criteria its explicit user list does not apply: an
    exporter only needs to describe the promotion rules, not every user
    they promote.
    """

    always_written = ("forum_permissions",)

    id: StrictInt
    name: StrictStr = ""
    text: StrictStr = ""
    banned: StrictBool = Field(False, alias="isBanned")
    moderator: StrictBool = Field(False, alias="isModerator")
    forum_permissions: ForumPermissions = Field(
        default_factory=ForumPermissions, alias="forumPermissions"
    )
    include_registered: StrictBool = Field(False, alias="includeRegisteredUsers")
    include_guests: StrictBool = Field(False, alias="includeGuests")
    users: list[ID] = Field(default_factory=list)
    criteria: list[CriterionItem] = Field(default_factory=list)

    @property
    def user_ids(self) -> set[int]:
        return {u.id for u in self.users}

    @model_validator(mode="after")
    def _warn_explicit_users(self) -> "Usergroup":
        if self.criteria and self.users:
            logger.warning(
                "Usergroup %d has criteria and also lists %d explicit users; "
                "explicit users are ignored unless explicit_with_criteria is set",
                self.id, len(self.users),
            )
        return self


class Forum(Record):
    """A group, forum or section of a discussion site.

    Usergroup permissions apply at the forum level, not to individual items
    within the forum.
    """

    id: StrictInt
    name: StrictStr
    text: StrictStr = ""
    display_order: StrictInt = Field(0, alias="displayOrder")
    open: StrictBool = Field(False, alias="isOpen")
    sticky: StrictBool = Field(False, alias="isSticky")
    moderated: StrictBool = Field(False, alias="isModerated")
    deleted: StrictBool = Field(False, alias="isDeleted")
    usergroups: list[Usergroup] = Field(default_factory=list)
    moderators: list[ID] = Field(default_factory=list)


class Conversation(Record):
    """A discussion or thread within a forum."""

    always_written = ("forum_id",)

    id: StrictInt
    name: StrictStr
    forum_id: StrictInt = Field(0, alias="forumId")
    author: StrictInt = 0
    date_created: Timestamp = Field(None, alias="dateCreated")
    view_count: StrictInt = Field(0, alias="viewCount")
    open: StrictBool = Field(False, alias="isOpen")
    sticky: StrictBool = Field(False, alias="isSticky")
    moderated: StrictBool = Field(False, alias="isModerated")
    deleted: StrictBool = Field(False, alias="isDeleted")


class CommentVersion(Record):
    """One version of a comment body.

    ``text`` holds common markup only (plain text, bbcode, Markdown or HTML);
    exporters strip or convert any custom markup.
    """

    editor: StrictInt
    text: StrictStr
    date_modified: Timestamp = Field(None, alias="dateModified")
    headline: StrictStr = ""
    edit_reason: StrictStr = Field("", alias="editReason")
    ip_address: StrictStr = Field("", alias="ipAddress")


class Comment(Record):
    """A post attached to a conversation or other content.

    Comments are optionally threaded through ``in_reply_to``. The last entry
    of ``versions`` is the live version.
    """

    id: StrictInt
    versions: list[CommentVersion]
    on_type: StrictStr = Field("", alias="onType")
    on_id: StrictInt = Field(0, alias="onId")
    in_reply_to: StrictInt = Field(0, alias="inReplyTo")
    author: StrictInt = 0
    date_created: Timestamp = Field(None, alias="dateCreated")
    ip_address: StrictStr = Field("", alias="ipAddress")
    moderated: StrictBool = Field(False, alias="isModerated")
    deleted: StrictBool = Field(False, alias="isDeleted")

    @property
    def association(self) -> Association:
        return Association(on_type=self.on_type, on_id=self.on_id)

    @property
    def live_version(self) -> CommentVersion | None:
        return self.versions[-1] if self.versions else None


class Message(Record):
    """A private message between one or more people."""

    id: StrictInt
    name: StrictStr
    users: list[ID] = Field(default_factory=list)


class Attachment(Record):
    """A file attached to a comment or other content."""

    id: StrictInt
    content_url: StrictStr = Field(alias="contentUrl")
    on_type: StrictStr = Field("", alias="onType")
    on_id: StrictInt = Field(0, alias="onId")
    author: StrictInt = 0
    date_created: Timestamp = Field(None, alias="dateCreated")
    name: StrictStr = ""
    content_size: StrictInt = Field(0, alias="contentSize", ge=0)

    @property
    def association(self) -> Association:
        return Association(on_type=self.on_type, on_id=self.on_id)


class Follow(Record):
    """A like, follow or subscription from a user to any content."""

    author: StrictInt
    follows: list[Association]


# Document kind -> record type
RECORD_TYPES: dict[str, type[Record]] = {
    "users": User,
    "usergroups": Usergroup,
    "forums": Forum,
    "conversations": Conversation,
    "comments": Comment,
    "messages": Message,
    "attachments": Attachment,
    "follows": Follow,
}
