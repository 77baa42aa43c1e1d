from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping, Sequence
from datetime import datetime, timezone
from typing import Any

from .content import Document

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _sort_key(document: Document, sort_by: str) -> tuple:
    if sort_by == "date":
        return (0, 0, document.date or _EPOCH, document.name)
    if sort_by == "name":
        return (0, 1, document.name, "")
    value = document.front_matter.get(sort_by)
    if value is None:
        # Documents without the key sort after those that have it.
        return (1, 0, 0, document.name)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return (0, 0, float(value), document.name)
    return (0, 1, str(value).lower(), document.name)


def sort_documents(documents: Iterable[Document], sort_by: str = "date") -> list[Document]:
    """Sort documents ascending by a front matter key.

    ``date`` uses the resolved document date and ``name`` the file name; any
    other key is read from front matter, with numbers ahead of text. Ties
    fall back to the file name.
    """
    return sorted(documents, key=lambda d: _sort_key(d, sort_by))


def link_documents(documents: Sequence[Document]) -> None:
    """Set ``previous``/``next`` on each document from its list neighbours."""
    for index, document in enumerate(documents):
        document.previous = documents[index - 1] if index > 0 else None
        document.next = documents[index + 1] if index + 1 < len(documents) else None


class DocumentCollection(Sequence[dict[str, Any]]):
    """Lightweight helper for working with lists of documents in templates."""

    def __init__(self, items: Iterable[dict[str, Any]]):
        self._items = list(items)

    def __iter__(self) -> Iterator[dict[str, Any]]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __getitem__(self, item):
        return self._items[item]

    def with_tag(self, tag: str) -> DocumentCollection:
        return DocumentCollection(d for d in self._items if tag in d.get("tags", []))

    def in_category(self, category: str) -> DocumentCollection:
        return DocumentCollection(d for d in self._items if category in d.get("categories", []))

    def latest(self, count: int = 5) -> DocumentCollection:
        dated = [d for d in self._items if d.get("date") is not None]
        dated.sort(key=lambda d: d["date"], reverse=True)
        return DocumentCollection(dated[:count])

    def __repr__(self) -> str:  # pragma: no cover - for debugging
        return f"DocumentCollection({len(self._items)} documents)"


class TagCollection(Mapping[str, DocumentCollection]):
    """Mapping of tag (or category) name to DocumentCollection."""

    def __init__(self, mapping: Mapping[str, Iterable[dict[str, Any]]]):
        self._mapping = {k: DocumentCollection(v) for k, v in mapping.items()}

    def __getitem__(self, key: str) -> DocumentCollection:
        return self._mapping[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._mapping)

    def __len__(self) -> int:
        return len(self._mapping)

    def __repr__(self) -> str:  # pragma: no cover - for debugging
        return f"TagCollection({len(self._mapping)} tags)"


def group_by(items: Iterable[dict[str, Any]], key: str) -> TagCollection:
    """Group document contexts by each value of a list field such as ``tags``."""
    groups: dict[str, list[dict[str, Any]]] = {}
    for item in items:
        for value in item.get(key) or []:
            groups.setdefault(value, []).append(item)
    return TagCollection(groups)
