"""Front matter parsing for Kestrel.

A content file may start with a YAML block fenced by ``---`` lines. This
module splits that block from the body and normalizes the keys Kestrel
understands into typed slots on :class:`FrontMatter`. Everything else is
kept, in source order, in ``FrontMatter.custom`` so templates can still
reach it.

A malformed block never fails the build: the parser logs a warning and
returns empty front matter with the whole original text as the body.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .utils import format_date

LOGGER = logging.getLogger(__name__)

DELIMITER = "---"

TEXT_FIELDS = (
    "title",
    "slug",
    "layout",
    "permalink",
    "description",
    "author",
    "excerpt",
    "excerpt_separator",
    "redirect_to",
)
LIST_FIELDS = ("categories", "tags", "redirect_from")
BOOL_FIELDS = ("published", "draft")


class FrontMatterError(ValueError):
    """Raised internally when a front matter block cannot be used."""


@dataclass
class FrontMatter:
    """Per-document metadata block.

    Known fields are ``None`` until something sets them; the defaults engine
    relies on that to decide what it may fill in.
    """

    title: str | None = None
    slug: str | None = None
    layout: str | None = None
    permalink: str | None = None
    description: str | None = None
    date: str | None = None
    categories: list[str] | None = None
    tags: list[str] | None = None
    author: str | None = None
    published: bool | None = None
    draft: bool | None = None
    excerpt: str | None = None
    excerpt_separator: str | None = None
    redirect_from: list[str] | None = None
    redirect_to: str | None = None
    custom: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> FrontMatter:
        """Build front matter from a parsed YAML mapping.

        Values of a known key that cannot be normalized (for example a
        mapping given as ``author``) are kept verbatim in ``custom``.
        """
        front_matter = cls()
        for key, value in data.items():
            key = str(key)
            if key in KNOWN_FIELDS:
                try:
                    setattr(front_matter, key, normalize_field(key, value))
                    continue
                except FrontMatterError:
                    pass
            front_matter.custom[key] = value
        return front_matter

    @property
    def is_published(self) -> bool:
        return self.published is not False

    def is_set(self, key: str) -> bool:
        if key in KNOWN_FIELDS:
            return getattr(self, key) is not None
        return key in self.custom

    def get(self, key: str, default: Any = None) -> Any:
        if key in KNOWN_FIELDS:
            value = getattr(self, key)
            return default if value is None else value
        return self.custom.get(key, default)

    def fill(self, key: str, value: Any) -> bool:
        """Set ``key`` only if it is currently unset.

        Args:
            key: Front matter key.
            value: Raw value, normalized like a parsed file value.

        Returns:
            True if the value was applied.
        """
        if self.is_set(key) or value is None:
            return False
        if key in KNOWN_FIELDS:
            try:
                setattr(self, key, normalize_field(key, value))
            except FrontMatterError:
                return False
            return True
        self.custom[key] = value
        return True

    def to_dict(self) -> dict[str, Any]:
        """Expose set fields and custom keys to the template layer."""
        result: dict[str, Any] = {}
        for name in KNOWN_FIELDS:
            value = getattr(self, name)
            if value is not None:
                result[name] = value
        for key, value in self.custom.items():
            result.setdefault(key, value)
        return result


KNOWN_FIELDS = tuple(f.name for f in fields(FrontMatter) if f.name != "custom")


def normalize_field(key: str, value: Any) -> Any:
    """Normalize a raw value for one of the typed front matter slots.

    Args:
        key: A name from ``KNOWN_FIELDS``.
        value: Value as produced by the YAML loader.

    Returns:
        The normalized value.

    Raises:
        FrontMatterError: If the value has an unusable type.
    """
    if value is None:
        return None
    if key == "date":
        if isinstance(value, (dict, list)):
            raise FrontMatterError(f"{key} must be a scalar")
        return format_date(value)
    if key in TEXT_FIELDS:
        if isinstance(value, (dict, list, bool)):
            raise FrontMatterError(f"{key} must be a string")
        return str(value)
    if key in LIST_FIELDS:
        if isinstance(value, str):
            return [value]
        if isinstance(value, (list, tuple)):
            return [str(item) for item in value if item is not None]
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return [str(value)]
        raise FrontMatterError(f"{key} must be a string or a list")
    if key in BOOL_FIELDS:
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.lower() in ("true", "false"):
            return value.lower() == "true"
        raise FrontMatterError(f"{key} must be a boolean")
    raise FrontMatterError(f"unknown field {key}")


def has_front_matter(text: str) -> bool:
    """Check whether ``text`` opens with a ``---`` line (after whitespace)."""
    first_line = text.lstrip().split("\n", 1)[0]
    return first_line.rstrip("\r") == DELIMITER


def split_front_matter(text: str) -> tuple[str, str] | None:
    """Split raw text into the YAML block and the body.

    Returns:
        ``(block, body)``, or None if there is no opening delimiter.

    Raises:
        FrontMatterError: If the closing delimiter is missing.
    """
    if not has_front_matter(text):
        return None
    lines = text.lstrip().splitlines(keepends=True)
    for index in range(1, len(lines)):
        if lines[index].rstrip("\r\n") == DELIMITER:
            return "".join(lines[1:index]), "".join(lines[index + 1 :])
    raise FrontMatterError("missing closing '---' delimiter")


def extract_front_matter(
    text: str,
    path: Path | None = None,
    logger: logging.Logger | None = None,
) -> tuple[FrontMatter, str]:
    """Extract YAML front matter from content.

    Args:
        text: Raw file content.
        path: Source file, only used in log messages.
        logger: Logger receiving the recovery warning.

    Returns:
        Tuple of (front matter, body). On a malformed block the front matter
        is empty and the body is the entire original text.
    """
    logger = logger or LOGGER
    try:
        parts = split_front_matter(text)
        if parts is None:
            return FrontMatter(), text
        block, body = parts
        data = yaml.safe_load(block) or {}
        if not isinstance(data, dict):
            raise FrontMatterError("front matter is not a mapping")
    except (yaml.YAMLError, FrontMatterError) as exc:
        logger.warning("Ignoring malformed front matter in %s: %s", path or "<string>", exc)
        return FrontMatter(), text
    return FrontMatter.from_mapping(data), body
