"""Content loading for Kestrel.

This module discovers content files, parses their front matter, applies
scoped defaults, resolves dates and permalinks, and groups the resulting
documents into collections: ``posts``, every configured custom collection,
and ``pages`` (Markdown and front-matter HTML files outside the internal
``_`` folders).

Key classes:
- Document: One content file with its metadata, URL and output path.
- Collection: Named, ordered group of documents.
- FileContentLoader: Walks a directory and yields candidate files.
- DocumentBuilder: Turns one source file into a Document.

Key functions:
- load_collections: Load every collection for a configuration.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Any

from .config import CollectionSpec, Config, FrontMatterDefault
from .defaults import apply_defaults, merge_defaults
from .frontmatter import FrontMatter, extract_front_matter, has_front_matter
from .permalink import output_path_for, resolve_permalink
from .utils import extract_date_from_name, is_excluded, parse_date, posix_path

LOGGER = logging.getLogger(__name__)

PAGES = "pages"
POSTS = "posts"
HTML_EXTENSIONS = (".html", ".htm")
COLLECTION_PERMALINK = "/:collection/:path:output_ext"
PAGE_PERMALINK = "/:path:output_ext"


class LoadError(Exception):
    """Raised when a content file cannot be loaded.

    Attributes:
        path: Path to the file that failed to load.
        message: Human-readable error message.
        original_error: The underlying exception that caused the failure.
    """

    def __init__(self, path: Path, message: str, original_error: Exception | None = None):
        self.path = path
        self.message = message
        self.original_error = original_error
        super().__init__(f"{path}: {message}")


@dataclass
class Document:
    """A single content file.

    Attributes:
        id: Path relative to the collection directory, forward slashes.
        path: Absolute source path.
        relative_path: Path relative to the site source, forward slashes.
        collection: Label of the owning collection.
        front_matter: Parsed front matter with defaults applied.
        content: Body text after the front matter block.
        url: Resolved permalink.
        output_path: Destination-relative output path, None when not written.
        date: Resolved date (UTC), if any.
        rendered: Final HTML after rendering, None until rendered.
        excerpt: Excerpt source text.
        draft: Whether the document came from ``_drafts``.
    """

    id: str
    path: Path
    relative_path: str
    collection: str
    front_matter: FrontMatter
    content: str
    url: str = ""
    output_path: PurePosixPath | None = None
    date: datetime | None = None
    rendered: str | None = None
    excerpt: str = ""
    draft: bool = False
    previous: Document | None = field(default=None, repr=False, compare=False)
    next: Document | None = field(default=None, repr=False, compare=False)

    @property
    def title(self) -> str:
        return self.front_matter.title or ""

    @property
    def layout(self) -> str | None:
        return self.front_matter.layout

    @property
    def categories(self) -> list[str]:
        return list(self.front_matter.categories or [])

    @property
    def tags(self) -> list[str]:
        return list(self.front_matter.tags or [])

    @property
    def name(self) -> str:
        return self.path.name

    def to_context(self, with_links: bool = True) -> dict[str, Any]:
        """Return the mapping templates see as ``page`` (or a list item)."""
        context = self.front_matter.to_dict()
        context.update(
            {
                "id": self.id,
                "url": self.url,
                "path": self.relative_path,
                "name": self.name,
                "collection": self.collection,
                "title": self.title,
                "date": self.date,
                "categories": self.categories,
                "tags": self.tags,
                "draft": self.draft,
                "excerpt": self.excerpt,
                "content": self.rendered if self.rendered is not None else self.content,
            }
        )
        if with_links:
            context["previous"] = self.previous.to_context(with_links=False) if self.previous else None
            context["next"] = self.next.to_context(with_links=False) if self.next else None
        return context


@dataclass
class Collection:
    """Named group of documents loaded from one directory."""

    label: str
    directory: Path
    output: bool = False
    permalink: str | None = None
    sort_by: str = "date"
    documents: list[Document] = field(default_factory=list)

    def __iter__(self) -> Iterator[Document]:
        return iter(self.documents)

    def __len__(self) -> int:
        return len(self.documents)


def is_page_candidate(path: Path, config: Config) -> bool:
    """Check whether a file below the source root is a page.

    Markdown files always are; HTML files only when they carry front matter.
    """
    if config.is_markdown(path):
        return True
    if path.suffix.lower() in HTML_EXTENSIONS:
        try:
            with path.open(encoding="utf-8") as handle:
                head = handle.read(4096)
        except (OSError, UnicodeDecodeError):
            return False
        return has_front_matter(head)
    return False


class FileContentLoader:
    """Discovers files below a directory.

    The walk follows symlinks, skips dot files and folders, and honours the
    configured exclude/include patterns (relative to the site source).

    Attributes:
        config: Resolved site configuration.
    """

    def __init__(self, config: Config):
        self.config = config

    def _rel(self, path: Path) -> str:
        return posix_path(path.relative_to(self.config.source))

    def _skip_dir(self, path: Path, skip_internal: bool) -> bool:
        if path.name.startswith("."):
            return True
        if skip_internal and path.name.startswith("_"):
            return True
        if path == self.config.destination:
            return True
        rel = self._rel(path)
        # Keep walking a folder that holds a re-included path.
        if any(posix_path(pattern).startswith(rel + "/") for pattern in self.config.include):
            return False
        return is_excluded(rel, self.config.exclude, self.config.include)

    def iter_files(self, directory: Path, skip_internal: bool = False) -> Iterator[Path]:
        """Yield every non-hidden, non-excluded file below ``directory``.

        Args:
            directory: Directory to walk.
            skip_internal: Also prune folders whose name starts with ``_``.

        Yields:
            Absolute file paths, in sorted walk order.
        """
        if not directory.is_dir():
            return
        for root, dirnames, filenames in os.walk(directory, followlinks=True):
            root_path = Path(root)
            dirnames[:] = sorted(
                d for d in dirnames if not self._skip_dir(root_path / d, skip_internal)
            )
            for filename in sorted(filenames):
                if filename.startswith(".") or (skip_internal and filename.startswith("_")):
                    continue
                path = root_path / filename
                if is_excluded(self._rel(path), self.config.exclude, self.config.include):
                    continue
                yield path


class DocumentBuilder:
    """Builds Document objects from source files.

    Attributes:
        config: Resolved site configuration.
        include_unpublished: Keep documents with ``published: false``.
        logger: Logger for warnings.
    """

    def __init__(
        self,
        config: Config,
        include_unpublished: bool = False,
        logger: logging.Logger | None = None,
    ):
        self.config = config
        self.include_unpublished = include_unpublished
        self.logger = logger or LOGGER

    def read(self, path: Path) -> str:
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise LoadError(path, f"Failed to read file: {exc}", exc) from exc

    def build(
        self,
        path: Path,
        collection: Collection,
        defaults: list[FrontMatterDefault],
        doc_id: str,
        draft: bool = False,
    ) -> Document | None:
        """Build one document.

        Args:
            path: Source file.
            collection: Owning collection.
            defaults: Ordered front matter defaults for this collection.
            doc_id: Identifier unique within the collection.
            draft: Whether the file comes from ``_drafts``.

        Returns:
            The document, or None when it is unpublished and filtered out.

        Raises:
            LoadError: If the file cannot be read.
        """
        text = self.read(path)
        front_matter, body = extract_front_matter(text, path, logger=self.logger)
        rel_source = posix_path(path.relative_to(self.config.source))
        apply_defaults(front_matter, rel_source, defaults, doc_type=collection.label)

        if not front_matter.is_published and not self.include_unpublished:
            self.logger.debug("Skipping unpublished document %s", rel_source)
            return None

        if draft:
            date = datetime.now(timezone.utc)
        else:
            date = self._resolve_date(path, front_matter, collection.label)

        document = Document(
            id=doc_id,
            path=path,
            relative_path=rel_source,
            collection=collection.label,
            front_matter=front_matter,
            content=body,
            date=date,
            draft=draft,
        )
        document.excerpt = self._excerpt(front_matter, body)
        document.url = self._resolve_url(document, collection)
        if collection.output:
            document.output_path = output_path_for(document.url)
        return document

    def _resolve_date(self, path: Path, front_matter: FrontMatter, label: str) -> datetime | None:
        if front_matter.date:
            parsed = parse_date(front_matter.date)
            if parsed is not None:
                return parsed
            self.logger.warning("Unrecognized date %r in %s", front_matter.date, path)
        if label == POSTS:
            return extract_date_from_name(path.name)
        return None

    def _excerpt(self, front_matter: FrontMatter, body: str) -> str:
        if front_matter.excerpt is not None:
            return front_matter.excerpt
        separator = front_matter.excerpt_separator or self.config.excerpt_separator
        if not separator:
            return ""
        return body.strip().split(separator, 1)[0].strip()

    def _resolve_url(self, document: Document, collection: Collection) -> str:
        front_matter = document.front_matter
        if collection.label == PAGES and not front_matter.permalink:
            rel = PurePosixPath(document.relative_path)
            if rel.stem == "index":
                parent = rel.parent.as_posix()
                return "/" if parent == "." else f"/{parent}/"
            return resolve_permalink(
                PAGE_PERMALINK, front_matter, PAGES, document.path, rel, document.date
            )
        if front_matter.permalink:
            pattern = front_matter.permalink
        elif collection.permalink:
            pattern = collection.permalink
        elif collection.label == POSTS:
            pattern = self.config.permalink
        else:
            pattern = COLLECTION_PERMALINK
        return resolve_permalink(
            pattern,
            front_matter,
            collection.label,
            document.path,
            document.id,
            document.date,
        )


def _collection_for(spec: CollectionSpec, directory: Path) -> Collection:
    return Collection(
        label=spec.label,
        directory=directory,
        output=spec.output,
        permalink=spec.permalink,
        sort_by=spec.sort_by,
    )


def load_collections(
    config: Config,
    include_drafts: bool = False,
    include_unpublished: bool = False,
    logger: logging.Logger | None = None,
) -> dict[str, Collection]:
    """Load posts, custom collections and pages.

    Args:
        config: Resolved site configuration.
        include_drafts: Also load ``_drafts`` into ``posts``.
        include_unpublished: Keep documents with ``published: false``.
        logger: Logger for progress and warnings.

    Returns:
        Mapping of collection label to collection, posts first and pages last.

    Raises:
        LoadError: If any content file cannot be read.
    """
    logger = logger or LOGGER
    files = FileContentLoader(config)
    builder = DocumentBuilder(config, include_unpublished=include_unpublished, logger=logger)
    collections: dict[str, Collection] = {}

    for label, spec in config.collections.items():
        directory = config.collection_dir(label)
        collection = _collection_for(spec, directory)
        defaults = merge_defaults(spec.defaults, config.defaults)
        if not directory.is_dir():
            logger.debug("Collection directory %s does not exist", directory)
        for path in files.iter_files(directory):
            if not config.is_markdown(path):
                continue
            doc_id = posix_path(path.relative_to(directory))
            document = builder.build(path, collection, defaults, doc_id)
            if document is not None:
                collection.documents.append(document)
        collections[label] = collection

    posts = collections[POSTS]
    if include_drafts:
        defaults = merge_defaults(config.collections[POSTS].defaults, config.defaults)
        for path in files.iter_files(config.drafts_dir):
            if not config.is_markdown(path):
                continue
            doc_id = posix_path(path.relative_to(config.source))
            document = builder.build(path, posts, defaults, doc_id, draft=True)
            if document is not None:
                posts.documents.append(document)

    pages = Collection(label=PAGES, directory=config.source, output=True, sort_by="name")
    for path in files.iter_files(config.source, skip_internal=True):
        if not is_page_candidate(path, config):
            continue
        doc_id = posix_path(path.relative_to(config.source))
        document = builder.build(path, pages, list(config.defaults), doc_id)
        if document is not None:
            pages.documents.append(document)
    collections[PAGES] = pages

    logger.info(
        "Loaded %d documents in %d collections",
        sum(len(c) for c in collections.values()),
        len(collections),
    )
    return collections
