"""Read and write JSON documents of forum records.

A document is a JSON file holding a list of record objects, for example
users.json:

[
  {"id": 1, "name": "alice", "email": "alice@example.com"},
  {"id": 2, "name": "bob", "email": "bob@example.com", "isBanned": true}
]

Large exports may split a kind across several files in a directory
(users/0001.json, users/0002.json, ...); those are loaded in sorted order
and concatenated.
"""

import json
import logging
from pathlib import Path
from typing import Any, Iterable, Iterator

from .errors import CriterionConfigError, DocumentError, SchemaError
from .records import RECORD_TYPES, Record, Usergroup

logger = logging.getLogger(__name__)


def record_type(kind: str) -> type[Record]:
    """Look up the record type for a document kind such as "users"."""
    try:
        return RECORD_TYPES[kind]
    except KeyError:
        valid = ", ".join(RECORD_TYPES)
        raise DocumentError(f"Unknown document kind {kind!r} (expected one of: {valid})") from None


def load_json(path: Path) -> list[Any]:
    """Load the JSON objects of a single document file.

    A file holding a single object is treated as a list of one.
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise DocumentError(f"{path}: invalid JSON: {e}") from e
    except UnicodeDecodeError as e:
        raise DocumentError(f"{path}: not valid UTF-8: {e}") from e
    except OSError as e:
        raise DocumentError(f"{path}: {e.strerror or e}") from e

    if isinstance(data, dict):
        return [data]
    if not isinstance(data, list):
        raise DocumentError(f"{path}: expected a list of objects, got {type(data).__name__}")
    return data


def _document_files(path: Path) -> list[Path]:
    if not path.is_dir():
        return [path]
    files = sorted(path.glob("*.json"))
    if not files:
        raise DocumentError(f"No *.json files found in {path}")
    return files


def _entries(path: Path, record_cls: type[Record]) -> Iterator[tuple[str, Any]]:
    """Yield (position, entry) for every object of a document, e.g. ("users.json[3]", {...})."""
    for file_path in _document_files(path):
        entries = load_json(file_path)
        logger.debug("Loading %d %s records from %s", len(entries), record_cls.__name__, file_path)
        for i, entry in enumerate(entries):
            yield f"{file_path.name}[{i}]", entry


def load_records(
    path: Path,
    record_cls: type[Record],
    date_keys: Iterable[str] = (),
) -> list[Any]:
    """Load records from a document file or a directory of them.

    Args:
        path: A JSON file, or a directory whose *.json files are merged.
        record_cls: The record type held by the document.
        date_keys: Criterion keys whose string values are timestamps.

    Returns:
        The records in file order.

    Raises:
        DocumentError: If a file cannot be read or is not a list of objects.
        RecordError, CriterionConfigError: If a record is invalid. The
            message names the file and the position of the record.
    """
    date_keys = tuple(date_keys)
    records: list[Any] = []

    for position, entry in _entries(path, record_cls):
        try:
            records.append(record_cls.from_dict(entry, date_keys))
        except SchemaError as e:
            raise type(e)(f"{position}: {e}") from e

    return records


def load_usergroups(
    path: Path,
    date_keys: Iterable[str] = (),
) -> tuple[list[Usergroup], dict[int, str]]:
    """Load usergroups, setting aside those whose criteria are invalid.

    A usergroup with a misconfigured criterion is not loaded; its id maps
    to the error in the second return value so the rest of the document can
    still be resolved. Any other invalid record fails the whole load, as
    with load_records.

    Returns:
        (usergroups, rejected) where rejected is usergroup id -> error.
    """
    date_keys = tuple(date_keys)
    usergroups: list[Usergroup] = []
    rejected: dict[int, str] = {}

    for position, entry in _entries(path, Usergroup):
        try:
            usergroups.append(Usergroup.from_dict(entry, date_keys))
        except CriterionConfigError as e:
            # fields validate in order, so id is already known to be valid
            usergroup_id = entry["id"]
            logger.error("Usergroup %d rejected: %s: %s", usergroup_id, position, e)
            rejected[usergroup_id] = f"{position}: {e}"
        except SchemaError as e:
            raise type(e)(f"{position}: {e}") from e

    return usergroups, rejected


def dump_records(records: Iterable[Record], output_path: Path) -> int:
    """Write records to a JSON document.

    Returns:
        The number of records written.
    """
    data = [record.to_dict() for record in records]

    # Ensure output directory exists
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)

    return len(data)
