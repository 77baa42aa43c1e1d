"""Scoped front matter defaults.

A default entry pairs a scope (optional ``path`` and ``type``) with values.
For a document, every matching entry is applied in declaration order and
fills only the fields the document has not set itself, so the file always
wins and earlier entries win over later ones.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from pathlib import PurePath

from .config import FrontMatterDefault
from .frontmatter import FrontMatter
from .utils import path_matches, posix_path


def scope_matches(
    default: FrontMatterDefault,
    path: PurePath | str,
    doc_type: str | None = None,
) -> bool:
    """Check whether a default entry applies to a document.

    Args:
        default: The scoped default.
        path: Document path relative to the site source.
        doc_type: Collection label of the document (``posts``, ``pages`` or
            a custom label).

    Returns:
        True if both the type and the path conditions hold.
    """
    rel = posix_path(path)
    if default.scope_type:
        in_drafts = "_drafts" in rel.split("/")
        if default.scope_type != doc_type and not (default.scope_type == "drafts" and in_drafts):
            return False
    if default.scope_path is not None:
        return path_matches(rel, default.scope_path)
    return True


def apply_defaults(
    front_matter: FrontMatter,
    path: PurePath | str,
    defaults: Iterable[FrontMatterDefault],
    doc_type: str | None = None,
) -> FrontMatter:
    """Fill unset front matter fields from every matching default.

    Args:
        front_matter: Parsed front matter; mutated in place.
        path: Document path relative to the site source.
        defaults: Ordered default entries.
        doc_type: Collection label of the document.

    Returns:
        The same front matter object.
    """
    for default in defaults:
        if not scope_matches(default, path, doc_type):
            continue
        for key, value in default.values.items():
            front_matter.fill(str(key), value)
    return front_matter


def merge_defaults(
    collection_defaults: Sequence[FrontMatterDefault],
    site_defaults: Sequence[FrontMatterDefault],
) -> list[FrontMatterDefault]:
    """Order collection defaults before site defaults so they take precedence."""
    return [*collection_defaults, *site_defaults]
