"""Importer settings loaded from forum-schema.toml.

Example:

    [membership]
    date_keys = ["dateCreated", "lastActive", "lastPosted"]
    explicit_with_criteria = false
"""

import logging
import os
import tomllib
from dataclasses import dataclass
from pathlib import Path

import pyrootutils

from .errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "forum-schema.toml"
CONFIG_ENV_VAR = "FORUM_SCHEMA_CONFIG"
DEFAULT_DATE_KEYS = ("dateCreated", "lastActive")


@dataclass(frozen=True)
class Settings:
    """Membership resolution settings."""

    # Criterion keys whose string values are timestamps under eq/ne too
    date_keys: tuple[str, ...] = DEFAULT_DATE_KEYS
    # Whether users listed explicitly still count when a usergroup has criteria
    explicit_with_criteria: bool = False


def find_config(search_from: Path | None = None) -> Path | None:
    """Locate the configuration file.

    Priority 1: the FORUM_SCHEMA_CONFIG environment variable.
    Priority 2: forum-schema.toml in the nearest directory at or above
    ``search_from`` (default: the working directory).
    """
    if env_path := os.environ.get(CONFIG_ENV_VAR):
        return Path(env_path)

    try:
        root = pyrootutils.find_root(
            search_from=search_from or Path.cwd(),
            indicator=CONFIG_FILENAME,
        )
    except FileNotFoundError:
        return None
    return Path(root) / CONFIG_FILENAME


def load_settings(path: Path | None = None) -> Settings:
    """Load settings, falling back to defaults when no file is found.

    Args:
        path: Explicit config file. If None, ``find_config`` is used.

    Raises:
        ConfigError: If the file is missing, not valid TOML, or has options
            of the wrong type.
    """
    if path is None:
        path = find_config()
        if path is None:
            return Settings()

    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    with open(path, "rb") as f:
        try:
            config = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid TOML in {path}: {e}") from e

    logger.debug("Loaded settings from %s", path)
    section = config.get("membership", {})
    if not isinstance(section, dict):
        raise ConfigError(f"{path}: [membership] must be a table")

    date_keys = section.get("date_keys", list(DEFAULT_DATE_KEYS))
    if not isinstance(date_keys, list) or not all(isinstance(k, str) for k in date_keys):
        raise ConfigError(f"{path}: membership.date_keys must be a list of strings")

    explicit = section.get("explicit_with_criteria", False)
    if not isinstance(explicit, bool):
        raise ConfigError(f"{path}: membership.explicit_with_criteria must be true or false")

    return Settings(date_keys=tuple(date_keys), explicit_with_criteria=explicit)
