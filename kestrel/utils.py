"""Utility functions for Kestrel.

This module contains small helpers used throughout the Kestrel codebase:
string slugs, date parsing, path normalization and glob matching, and
destination directory cleaning.

Key functions:
    slugify: Convert arbitrary text to a URL slug.
    strip_date_prefix: Drop a YYYY-MM-DD- prefix from a filename stem.
    extract_date_from_name: Extract a UTC date from a filename prefix.
    parse_date: Parse a front matter date string.
    posix_path: Normalize a path to forward slashes.
    path_matches: Match a normalized path against a glob or prefix pattern.
    ensure_clean_dir: Empty a directory while honouring keep patterns.
"""

from __future__ import annotations

import fnmatch
import re
import shutil
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path, PurePath

DATE_PREFIX_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})-")
GLOB_CHARS = frozenset("*?[")

DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y-%m-%d %H:%M:%S",
)


def slugify(text: str) -> str:
    """Convert text to a URL-friendly slug.

    Lowercases, replaces every character that is not alphanumeric, ``-`` or
    ``_`` with ``-``, collapses dash runs and trims dashes from both ends.
    Applying it twice gives the same result as applying it once.

    Args:
        text: Arbitrary text, typically a title or filename stem.

    Returns:
        The slug, possibly empty.

    Examples:
        >>> slugify("Hello World")
        'hello-world'

        >>> slugify("  C++ & Rust!  ")
        'c-rust'
    """
    chars = (c if c.isalnum() or c in "-_" else "-" for c in text.lower())
    slug = re.sub(r"-{2,}", "-", "".join(chars))
    return slug.strip("-")


def strip_date_prefix(stem: str) -> str:
    """Remove a leading ``YYYY-MM-DD-`` from a filename stem."""
    return DATE_PREFIX_RE.sub("", stem, count=1)


def extract_date_from_name(name: str) -> datetime | None:
    """Extract a date from a filename with a YYYY-MM-DD- prefix.

    Args:
        name: Filename or stem.

    Returns:
        Midnight UTC of that calendar day, or None if there is no valid prefix.

    Examples:
        >>> extract_date_from_name("2024-03-05-hello-world.md")
        datetime.datetime(2024, 3, 5, 0, 0, tzinfo=datetime.timezone.utc)

        >>> extract_date_from_name("hello-world.md") is None
        True
    """
    match = DATE_PREFIX_RE.match(name)
    if not match:
        return None
    year, month, day = (int(part) for part in match.groups())
    try:
        return datetime(year, month, day, tzinfo=timezone.utc)
    except ValueError:
        return None


def parse_date(value: str | None) -> datetime | None:
    """Parse a front matter date string into an aware UTC datetime.

    Formats are tried in order and the first that parses wins:

    1. ``YYYY-MM-DD`` (midnight UTC)
    2. ``YYYY-MM-DD HH:MM:SS`` (interpreted as UTC)
    3. RFC 3339 (``2024-03-05T10:00:00Z``, ``2024-03-05T10:00:00+02:00``)
    4. ``YYYY-MM-DD HH:MM:SS +ZZZZ`` as written by Jekyll

    Args:
        value: Date string from front matter.

    Returns:
        Aware datetime converted to UTC, or None when nothing parses.
    """
    if not value:
        return None
    text = str(value).strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    parsed = _parse_rfc3339(text)
    if parsed is not None:
        return parsed
    try:
        return datetime.strptime(text, "%Y-%m-%d %H:%M:%S %z").astimezone(timezone.utc)
    except ValueError:
        return None


def _parse_rfc3339(text: str) -> datetime | None:
    if "T" not in text:
        return None
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    # RFC 3339 always carries an offset; naive values are not accepted.
    if parsed.tzinfo is None:
        return None
    return parsed.astimezone(timezone.utc)


def format_date(value: object) -> str:
    """Render a YAML/TOML date or datetime back to front matter text.

    Args:
        value: ``date``, ``datetime`` or anything else.

    Returns:
        Text that :func:`parse_date` understands.
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.isoformat()
        return value.strftime("%Y-%m-%d %H:%M:%S")
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


def posix_path(path: PurePath | str) -> str:
    """Return ``path`` with forward slashes and no leading ``./``."""
    text = path.as_posix() if isinstance(path, PurePath) else str(path).replace("\\", "/")
    while text.startswith("./"):
        text = text[2:]
    return text


def has_glob(pattern: str) -> bool:
    return any(ch in GLOB_CHARS for ch in pattern)


def path_matches(path: str, pattern: str) -> bool:
    """Match a forward-slash path against a glob or a plain path prefix.

    A pattern with glob characters is matched with :mod:`fnmatch` (where
    ``*`` also crosses ``/``). A plain pattern matches the path itself or
    anything below it. An empty pattern matches everything.

    Args:
        path: Normalized relative path.
        pattern: Glob or plain path.

    Returns:
        True if the pattern covers the path.
    """
    pattern = posix_path(pattern).lstrip("/")
    path = posix_path(path).lstrip("/")
    if not pattern:
        return True
    if has_glob(pattern):
        return fnmatch.fnmatchcase(path, pattern)
    pattern = pattern.rstrip("/")
    return path == pattern or path.startswith(pattern + "/")


def matches_any(path: str, patterns: Iterable[str]) -> bool:
    return any(path_matches(path, pattern) for pattern in patterns)


def is_excluded(rel_path: str, exclude: Iterable[str], include: Iterable[str] = ()) -> bool:
    """Check a source-relative path against exclude/include lists.

    Args:
        rel_path: Path relative to the site source.
        exclude: Patterns that remove files from the build.
        include: Patterns that win over ``exclude``.

    Returns:
        True if the path is excluded and not re-included.
    """
    if matches_any(rel_path, include):
        return False
    return matches_any(rel_path, exclude)


def is_hidden(rel: PurePath) -> bool:
    """Check if any component of a relative path starts with ``.``."""
    return any(part.startswith(".") for part in rel.parts)


def is_internal_path(rel: PurePath) -> bool:
    """Check if any component of a relative path starts with ``_`` or ``.``.

    Internal paths hold layouts, includes, data, posts, drafts and
    collections; they are never copied as static files.
    """
    return any(part.startswith(("_", ".")) for part in rel.parts)


def ensure_clean_dir(path: Path, keep: Iterable[str] = ()) -> None:
    """Ensure a directory exists and is empty apart from kept entries.

    Args:
        path: Directory path to clean or create.
        keep: Patterns (relative to ``path``) of top-level entries to keep.
    """
    keep = list(keep)
    if path.exists():
        if not keep:
            shutil.rmtree(str(path), ignore_errors=True)
        else:
            for item in path.iterdir():
                if matches_any(item.name, keep):
                    continue
                if item.is_dir() and not item.is_symlink():
                    shutil.rmtree(item)
                else:
                    item.unlink()
    path.mkdir(parents=True, exist_ok=True)

