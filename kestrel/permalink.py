"""Permalink resolution.

Turns a permalink style or pattern plus a document's metadata into the URL
the document is published at. A pattern is a path made of literal text and
``:placeholder`` tokens; the built-in style names expand to patterns first.

Key functions:
- resolve_permalink: Expand a style or pattern for one document.
- output_path_for: Map a URL to a path below the destination directory.
"""

from __future__ import annotations

import re
from datetime import datetime
from pathlib import PurePath, PurePosixPath

from .frontmatter import FrontMatter
from .utils import parse_date, posix_path, slugify, strip_date_prefix

PERMALINK_STYLES = {
    "date": "/:categories/:year/:month/:day/:title.html",
    "pretty": "/:categories/:year/:month/:day/:title/",
    "ordinal": "/:categories/:year/:y_day/:title.html",
    "none": "/:categories/:title.html",
}

PLACEHOLDERS = (
    "title",
    "slug",
    "year",
    "month",
    "day",
    "hour",
    "minute",
    "second",
    "i_month",
    "i_day",
    "y_day",
    "short_year",
    "categories",
    "collection",
    "path",
    "name",
    "output_ext",
)

DATE_PLACEHOLDERS = {
    "year": "%Y",
    "month": "%m",
    "day": "%d",
    "hour": "%H",
    "minute": "%M",
    "second": "%S",
    "y_day": "%j",
    "short_year": "%y",
}

# Longest names first so a shorter token never claims the head of a longer one.
PLACEHOLDER_RE = re.compile(
    r"/?:categories|:(" + "|".join(sorted(PLACEHOLDERS, key=len, reverse=True)) + r")"
)


def expand_style(pattern_or_style: str) -> str:
    """Return the pattern for a built-in style name, or the input unchanged."""
    return PERMALINK_STYLES.get(pattern_or_style, pattern_or_style)


def _output_ext(pattern: str) -> str:
    literal = PLACEHOLDER_RE.sub("", pattern)
    if pattern.endswith("/") or "." in literal:
        return ""
    return ".html"


def _document_date(front_matter: FrontMatter, date: datetime | None) -> datetime | None:
    if date is not None:
        return date
    return parse_date(front_matter.date)


def _title_slug(front_matter: FrontMatter, stem: str) -> str:
    if front_matter.title:
        slug = slugify(front_matter.title)
        if slug:
            return slug
    return slugify(strip_date_prefix(stem))


def resolve_permalink(
    pattern_or_style: str,
    front_matter: FrontMatter,
    collection: str,
    source_path: PurePath | str,
    relative_path: PurePath | str | None = None,
    date: datetime | None = None,
) -> str:
    """Expand a permalink style or pattern for one document.

    Args:
        pattern_or_style: ``date``, ``pretty``, ``ordinal``, ``none`` or a
            custom pattern.
        front_matter: The document's front matter (after defaults).
        collection: Collection label.
        source_path: Source file path; its stem feeds ``:title`` and ``:name``.
        relative_path: Path relative to the collection directory; feeds
            ``:path``. Defaults to the source file name.
        date: Resolved document date; falls back to the front matter date.

    Returns:
        URL path starting with ``/``.

    Examples:
        >>> fm = FrontMatter(title="Hello World")
        >>> resolve_permalink("date", fm, "posts", "2024-03-05-hello-world.md",
        ...                   date=datetime(2024, 3, 5))
        '/2024/03/05/hello-world.html'
    """
    pattern = expand_style(pattern_or_style)
    source = PurePosixPath(posix_path(source_path))
    rel = PurePosixPath(posix_path(relative_path)) if relative_path is not None else PurePosixPath(source.name)
    doc_date = _document_date(front_matter, date)
    title = _title_slug(front_matter, source.stem)
    categories = [slugify(c) for c in front_matter.categories or [] if slugify(c)]

    values = {
        "title": title,
        "slug": slugify(front_matter.slug) if front_matter.slug else title,
        "collection": collection,
        "path": rel.with_suffix("").as_posix() if rel.suffix else rel.as_posix(),
        "name": source.stem,
        "output_ext": _output_ext(pattern),
    }
    for name, fmt in DATE_PLACEHOLDERS.items():
        values[name] = doc_date.strftime(fmt) if doc_date else ""
    values["i_month"] = str(doc_date.month) if doc_date else ""
    values["i_day"] = str(doc_date.day) if doc_date else ""

    def replace(match: re.Match[str]) -> str:
        token = match.group(0)
        if token.endswith(":categories"):
            if not categories:
                return ""
            prefix = "/" if token.startswith("/") else ""
            return prefix + "/".join(categories)
        return values[match.group(1)]

    url = PLACEHOLDER_RE.sub(replace, pattern)
    url = re.sub(r"/{2,}", "/", url)
    if not url.startswith("/"):
        url = "/" + url
    return url


def output_path_for(url: str) -> PurePosixPath:
    """Map a URL to a destination-relative file path.

    A trailing ``/`` (and an extension-less last segment) becomes a
    directory with an ``index.html`` file.

    Examples:
        >>> output_path_for("/2024/03/05/hello-world.html").as_posix()
        '2024/03/05/hello-world.html'

        >>> output_path_for("/blog/hello/").as_posix()
        'blog/hello/index.html'
    """
    path = url.split("?", 1)[0].split("#", 1)[0].lstrip("/")
    if not path or path.endswith("/"):
        return PurePosixPath(path) / "index.html"
    last = path.rsplit("/", 1)[-1]
    if "." not in last:
        return PurePosixPath(path) / "index.html"
    return PurePosixPath(path)
