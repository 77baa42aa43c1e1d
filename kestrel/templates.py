"""Template rendering engine for Kestrel.

This module uses Jinja2 to render document bodies and wrap them in layouts.
Layouts live in the layouts directory and may carry their own front matter;
a layout that names another ``layout`` is wrapped in turn, so layouts chain.
Includes are resolved from the includes directory.

Key class:
- TemplateEngine: Renderer implementation used by the build.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from jinja2 import Environment, FileSystemLoader, Template, select_autoescape
from markupsafe import Markup

from .frontmatter import FrontMatter, extract_front_matter
from .protocols import MarkdownConverter
from .renderers import MistuneConverter
from .utils import slugify

if TYPE_CHECKING:
    from .config import Config
    from .content import Document

LOGGER = logging.getLogger(__name__)

LAYOUT_SUFFIXES = (".html", ".html.jinja", ".jinja", "")


class LayoutError(Exception):
    """Raised when a layout chain refers back to itself."""


class TemplateEngine:
    """Template rendering engine using Jinja2.

    Attributes:
        config: Resolved site configuration.
        converter: Markdown converter for Markdown documents.
        env: Jinja2 environment; its loader serves includes.
    """

    def __init__(
        self,
        config: Config,
        converter: MarkdownConverter | None = None,
        logger: logging.Logger | None = None,
    ):
        self.config = config
        self.converter = converter or MistuneConverter()
        self.logger = logger or LOGGER
        self.env = Environment(
            loader=FileSystemLoader([str(config.includes_dir), str(config.layouts_dir)]),
            autoescape=select_autoescape(["xml"], default_for_string=False),
            enable_async=False,
        )
        self._layouts: dict[str, tuple[Template, FrontMatter] | None] = {}
        self._install_filters()

    def _install_filters(self) -> None:
        self.env.globals["url_for"] = self.relative_url
        self.env.filters["relative_url"] = self.relative_url
        self.env.filters["absolute_url"] = self.absolute_url
        self.env.filters["slugify"] = slugify
        self.env.filters["markdownify"] = lambda text: Markup(self.converter.convert(str(text or "")))
        self.env.filters["date_to_xmlschema"] = _date_to_xmlschema
        self.env.filters["date_to_string"] = _date_to_string

    def relative_url(self, path: str) -> str:
        """Prefix a site path with ``baseurl``.

        Examples:
            With ``baseurl: /blog``, ``relative_url("/about/")`` gives
            ``/blog/about/``.
        """
        path = str(path or "")
        if path.startswith(("http://", "https://", "//")):
            return path
        if not path.startswith("/"):
            path = f"/{path}"
        return self.config.baseurl.rstrip("/") + path

    def absolute_url(self, path: str) -> str:
        relative = self.relative_url(path)
        if relative.startswith(("http://", "https://", "//")):
            return relative
        return (self.config.url or "").rstrip("/") + relative

    def find_layout(self, name: str) -> Path | None:
        for suffix in LAYOUT_SUFFIXES:
            candidate = self.config.layouts_dir / f"{name}{suffix}"
            if candidate.is_file():
                return candidate
        return None

    def load_layout(self, name: str) -> tuple[Template, FrontMatter] | None:
        """Load and cache a layout with its front matter.

        Args:
            name: Layout name without extension.

        Returns:
            Tuple of (compiled template, layout front matter), or None if no
            such layout exists.
        """
        if name not in self._layouts:
            path = self.find_layout(name)
            if path is None:
                self._layouts[name] = None
            else:
                text = path.read_text(encoding="utf-8")
                front_matter, body = extract_front_matter(text, path, logger=self.logger)
                self._layouts[name] = (self.env.from_string(body), front_matter)
        return self._layouts[name]

    def render_string(self, template: str, context: dict[str, Any]) -> str:
        """Render a template string.

        Args:
            template: Template source.
            context: Variables available to the template.

        Returns:
            Rendered string.
        """
        return self.env.from_string(template).render(**context)

    def render_document(self, document: Document, site: dict[str, Any]) -> str:
        """Render a document body and wrap it in its layout chain.

        Args:
            document: Loaded document.
            site: Site context exposed as ``site``.

        Returns:
            Final HTML.

        Raises:
            jinja2.TemplateError: On template syntax or runtime errors.
            LayoutError: If the layout chain is cyclic.
        """
        page = document.to_context()
        body = document.content
        if document.front_matter.get("render_with_liquid", True) is not False:
            body = self.render_string(body, {"site": site, "page": page})
        if self.config.is_markdown(document.path):
            body = self.converter.convert(body)
        return self.apply_layouts(body, document.layout, page, site, source=document.relative_path)

    def apply_layouts(
        self,
        content: str,
        layout: str | None,
        page: dict[str, Any],
        site: dict[str, Any],
        source: str = "<string>",
    ) -> str:
        seen: list[str] = []
        while layout:
            if layout in seen:
                raise LayoutError(f"Layout cycle: {' -> '.join([*seen, layout])}")
            seen.append(layout)
            loaded = self.load_layout(layout)
            if loaded is None:
                self.logger.warning("Layout '%s' requested in %s does not exist", layout, source)
                break
            template, layout_front_matter = loaded
            page["content"] = Markup(content)
            content = template.render(
                site=site,
                page=page,
                layout=layout_front_matter.to_dict(),
                content=Markup(content),
            )
            layout = layout_front_matter.layout
        return content

    def render_excerpt(self, document: Document) -> str:
        if not document.excerpt:
            return ""
        if self.config.is_markdown(document.path):
            return self.converter.convert(document.excerpt)
        return document.excerpt


def _date_to_xmlschema(value: Any) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value or "")


def _date_to_string(value: Any) -> str:
    if isinstance(value, datetime):
        return value.strftime("%d %b %Y")
    return str(value or "")
