"""Site building functionality for Kestrel.

This module drives one build: it cleans the destination, loads collections,
data files and static files, assembles the site context, renders every
output document through the renderer, writes the results and copies static
files.

Key classes:
- SiteBuilder: Build state machine.
- BuildResult: What a finished build produced.

Key functions:
- build_site: Build a site from a resolved configuration.
- load_data: Load ``_data`` files into a nested mapping.
- collect_static_files: List files that are copied verbatim.
"""

from __future__ import annotations

import csv
import json
import logging
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Any

import yaml
from jinja2 import TemplateSyntaxError

from .collections import DocumentCollection, group_by, link_documents, sort_documents
from .config import Config
from .content import PAGES, POSTS, Collection, Document, FileContentLoader, is_page_candidate, load_collections
from .protocols import Renderer
from .templates import TemplateEngine
from .utils import ensure_clean_dir, posix_path

LOGGER = logging.getLogger(__name__)

DATA_EXTENSIONS = (".yml", ".yaml", ".json", ".csv")


class BuildError(Exception):
    """Error during site build with file context.

    Attributes:
        source_path: Path to the source file that caused the error.
        message: Human-readable error message.
        original_error: The original exception that was caught.
    """

    def __init__(
        self,
        source_path: Path,
        message: str,
        original_error: Exception | None = None,
    ):
        self.source_path = source_path
        self.message = message
        self.original_error = original_error
        super().__init__(f"{source_path}: {message}")


class BuildState(Enum):
    IDLE = "idle"
    CONFIG_LOADED = "config_loaded"
    CONTENT_LOADED = "content_loaded"
    RENDERED = "rendered"
    WRITTEN = "written"
    DONE = "done"
    FAILED = "failed"


@dataclass
class Collision:
    """Two sources that resolved to the same output path.

    Attributes:
        output_path: Destination-relative path both sources claimed.
        previous: Source that was overwritten.
        current: Source that won.
    """

    output_path: PurePosixPath
    previous: Path
    current: Path


@dataclass
class BuildResult:
    """Result of a site build operation.

    Attributes:
        collections: Loaded collections by label.
        destination: Directory the site was written to.
        data: Contents of the data directory.
        written: Files written for documents.
        static_files: Files copied verbatim.
        skipped: Documents whose rendering failed and were skipped.
        collisions: Output paths claimed more than once.
    """

    collections: dict[str, Collection]
    destination: Path
    data: dict[str, Any] = field(default_factory=dict)
    written: list[Path] = field(default_factory=list)
    static_files: list[Path] = field(default_factory=list)
    skipped: list[Path] = field(default_factory=list)
    collisions: list[Collision] = field(default_factory=list)

    @property
    def documents(self) -> list[Document]:
        return [doc for collection in self.collections.values() for doc in collection]


def load_data(data_dir: Path, logger: logging.Logger | None = None) -> dict[str, Any]:
    """Load site data from YAML, JSON and CSV files in the data directory.

    Each file becomes a key named after its stem; sub-directories become
    nested mappings. CSV files load as lists of row mappings.

    Args:
        data_dir: The ``_data`` directory.
        logger: Logger for unreadable files.

    Returns:
        Dictionary exposed to templates as ``site.data``.
    """
    logger = logger or LOGGER
    data: dict[str, Any] = {}
    if not data_dir.is_dir():
        return data
    for path in sorted(data_dir.iterdir()):
        if path.name.startswith("."):
            continue
        if path.is_dir():
            data[path.name] = load_data(path, logger)
            continue
        suffix = path.suffix.lower()
        if suffix not in DATA_EXTENSIONS:
            continue
        try:
            with open(path, encoding="utf-8", newline="") as f:
                if suffix == ".csv":
                    payload: Any = list(csv.DictReader(f))
                elif suffix == ".json":
                    payload = json.load(f)
                else:
                    payload = yaml.safe_load(f)
        except (OSError, UnicodeDecodeError, yaml.YAMLError, json.JSONDecodeError, csv.Error) as exc:
            logger.warning("Skipping data file %s: %s", path, exc)
            continue
        data[path.stem] = payload
    return data


def collect_static_files(config: Config) -> list[Path]:
    """List source files copied verbatim to the destination.

    Everything outside ``_``/``.`` folders that is not excluded and is not a
    page is static.
    """
    loader = FileContentLoader(config)
    return [
        path
        for path in loader.iter_files(config.source, skip_internal=True)
        if not is_page_candidate(path, config)
    ]


def _format_error_message(exc: Exception) -> str:
    """Format an exception into a user-friendly error message.

    Args:
        exc: The exception to format.

    Returns:
        A human-readable error message.
    """
    if isinstance(exc, TemplateSyntaxError):
        return f"Template syntax error on line {exc.lineno}: {exc.message}"
    error_type = type(exc).__name__
    error_msg = str(exc)
    if error_type == "UndefinedError":
        return f"Undefined variable: {error_msg}"
    return f"{error_type}: {error_msg}"


class SiteBuilder:
    """Runs one build through its states.

    ``Idle -> ConfigLoaded -> ContentLoaded -> Rendered -> Written -> Done``;
    any fatal error moves the builder to ``Failed`` and is kept in ``error``.

    Attributes:
        config: Resolved site configuration.
        include_drafts: Load ``_drafts`` into posts.
        include_unpublished: Keep ``published: false`` documents.
        renderer: Renderer used for documents and excerpts.
        state: Current build state.
        error: The exception that failed the build, if any.
    """

    def __init__(
        self,
        config: Config,
        include_drafts: bool = False,
        include_unpublished: bool = False,
        renderer: Renderer | None = None,
        logger: logging.Logger | None = None,
    ):
        self.config = config
        self.include_drafts = include_drafts or config.show_drafts
        self.include_unpublished = include_unpublished or config.unpublished
        self.logger = logger or LOGGER
        self.renderer = renderer or TemplateEngine(config, logger=self.logger)
        self.state = BuildState.IDLE
        self.error: Exception | None = None

    def _transition(self, state: BuildState) -> None:
        self.logger.debug("Build state: %s -> %s", self.state.value, state.value)
        self.state = state

    def build(self) -> BuildResult:
        """Run the build.

        Returns:
            The build result.

        Raises:
            BuildError: On a fatal build error (including a render error
                when ``render_errors`` is ``abort``).
            LoadError: If a content file cannot be read.
        """
        try:
            return self._run()
        except Exception as exc:
            self.error = exc
            self._transition(BuildState.FAILED)
            raise

    def _run(self) -> BuildResult:
        started = datetime.now(timezone.utc)
        self._transition(BuildState.CONFIG_LOADED)
        self.clean_destination()

        collections = load_collections(
            self.config,
            include_drafts=self.include_drafts,
            include_unpublished=self.include_unpublished,
            logger=self.logger,
        )
        for collection in collections.values():
            collection.documents = sort_documents(collection.documents, collection.sort_by)
            if collection.label != PAGES:
                link_documents(collection.documents)
        result = BuildResult(
            collections=collections,
            destination=self.config.destination,
            data=load_data(self.config.data_dir, self.logger),
            static_files=collect_static_files(self.config),
        )
        self._transition(BuildState.CONTENT_LOADED)

        for document in result.documents:
            document.excerpt = self._render_excerpt(document)
        site = self.site_context(collections, result.data)
        rendered = self.render_all(collections, site, result)
        self._transition(BuildState.RENDERED)

        owners = self.write_all(rendered, result)
        self.copy_static(result, owners)
        self._transition(BuildState.WRITTEN)

        elapsed = (datetime.now(timezone.utc) - started).total_seconds()
        self.logger.info(
            "Built %d documents and copied %d static files to %s in %.2fs",
            len(result.written),
            len(result.static_files),
            self.config.destination,
            elapsed,
        )
        self._transition(BuildState.DONE)
        return result

    def clean_destination(self) -> None:
        """Empty the destination, keeping ``keep_files`` entries.

        Raises:
            BuildError: If the destination is the source or contains it.
        """
        destination = self.config.destination
        source = self.config.source
        if destination == source or destination in source.parents:
            raise BuildError(destination, "Refusing to clean a destination that contains the source")
        ensure_clean_dir(destination, keep=self.config.keep_files)

    def _render_excerpt(self, document: Document) -> str:
        try:
            return self.renderer.render_excerpt(document)
        except Exception as exc:
            self.logger.warning("Could not render excerpt of %s: %s", document.relative_path, exc)
            return document.excerpt

    def site_context(self, collections: dict[str, Collection], data: dict[str, Any]) -> dict[str, Any]:
        """Assemble the ``site`` mapping templates see."""
        site = self.config.site_data()
        contexts = {label: [doc.to_context() for doc in c] for label, c in collections.items()}
        posts = list(reversed(contexts.get(POSTS, [])))
        site.update(
            {
                "time": datetime.now(timezone.utc),
                "data": data,
                "posts": DocumentCollection(posts),
                "pages": DocumentCollection(contexts.get(PAGES, [])),
                "categories": group_by(posts, "categories"),
                "tags": group_by(posts, "tags"),
                "collections": {
                    label: {
                        "label": label,
                        "output": c.output,
                        "docs": DocumentCollection(contexts[label]),
                    }
                    for label, c in collections.items()
                },
            }
        )
        for label, collection in collections.items():
            if collection.output and label not in (POSTS, PAGES):
                site[label] = DocumentCollection(contexts[label])
        return site

    def render_all(
        self,
        collections: dict[str, Collection],
        site: dict[str, Any],
        result: BuildResult,
    ) -> list[Document]:
        """Render every output document.

        Returns:
            Documents that rendered successfully, in render order.

        Raises:
            BuildError: On the first failure when ``render_errors`` is
                ``abort``.
        """
        rendered: list[Document] = []
        for collection in collections.values():
            if not collection.output:
                continue
            for document in collection:
                if document.output_path is None:
                    continue
                try:
                    document.rendered = self.renderer.render_document(document, site)
                except Exception as exc:
                    self._skip(document.path, document.relative_path, exc, result)
                    continue
                rendered.append(document)
        return rendered

    def _skip(self, source_path: Path, label: str, exc: Exception, result: BuildResult) -> None:
        """Apply the ``render_errors`` policy to a failed document or file.

        Raises:
            BuildError: When ``render_errors`` is ``abort``.
        """
        error = BuildError(source_path, _format_error_message(exc), exc)
        if self.config.render_errors == "abort":
            raise error from exc
        self.logger.error("Skipping %s: %s", label, error.message)
        result.skipped.append(source_path)

    def write_all(self, documents: list[Document], result: BuildResult) -> dict[PurePosixPath, Path]:
        """Write rendered documents; the last writer of a path wins.

        A document that cannot be written is handled like a render failure.

        Returns:
            Mapping of output path to the source that produced it.
        """
        owners: dict[PurePosixPath, Path] = {}
        for document in documents:
            output_path = document.output_path
            target = self.config.destination / output_path
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                with open(target, "w", encoding="utf-8") as f:
                    f.write(document.rendered or "")
            except OSError as exc:
                self._skip(document.path, document.relative_path, exc, result)
                continue
            previous = owners.get(output_path)
            if previous is not None:
                self.logger.warning(
                    "Output collision at %s: %s overwrites %s",
                    output_path,
                    document.relative_path,
                    previous,
                )
                result.collisions.append(Collision(output_path, previous, document.path))
            owners[output_path] = document.path
            if previous is None:
                result.written.append(target)
        return owners

    def copy_static(self, result: BuildResult, owners: dict[PurePosixPath, Path]) -> None:
        for path in result.static_files:
            rel = PurePosixPath(posix_path(path.relative_to(self.config.source)))
            if rel in owners:
                self.logger.warning("Output collision at %s: static file overwrites %s", rel, owners[rel])
                result.collisions.append(Collision(rel, owners[rel], path))
            target = self.config.destination / rel
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(path, target)
            except OSError as exc:
                self._skip(path, rel.as_posix(), exc, result)


def build_site(
    config: Config,
    include_drafts: bool = False,
    include_unpublished: bool = False,
    renderer: Renderer | None = None,
    logger: logging.Logger | None = None,
) -> BuildResult:
    """Build the entire static site.

    Args:
        config: Resolved site configuration.
        include_drafts: Whether to include ``_drafts``.
        include_unpublished: Whether to keep ``published: false`` documents.
        renderer: Optional custom renderer.
        logger: Logger for progress and warnings.

    Returns:
        BuildResult describing what was written.
    """
    builder = SiteBuilder(
        config,
        include_drafts=include_drafts,
        include_unpublished=include_unpublished,
        renderer=renderer,
        logger=logger,
    )
    return builder.build()
