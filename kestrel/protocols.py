"""Protocol definitions for Kestrel.

The build orchestrator talks to its Markdown converter and template
renderer through these interfaces, so either can be replaced (or mocked in
tests) without touching the build.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .content import Document


@runtime_checkable
class MarkdownConverter(Protocol):
    """Protocol for turning Markdown text into HTML."""

    @abstractmethod
    def convert(self, text: str) -> str:
        """Convert Markdown source to an HTML fragment.

        Args:
            text: Markdown source.

        Returns:
            HTML fragment.
        """
        ...


@runtime_checkable
class Renderer(Protocol):
    """Protocol for rendering a document into its final HTML page.

    Implementations run the template language over the body, convert
    Markdown, and wrap the result in the document's layout chain.
    """

    @abstractmethod
    def render_document(self, document: Document, site: dict[str, Any]) -> str:
        """Render one document.

        Args:
            document: Loaded document.
            site: Site context exposed to templates as ``site``.

        Returns:
            Final HTML for the document.
        """
        ...

    @abstractmethod
    def render_excerpt(self, document: Document) -> str:
        """Render a document's excerpt to HTML."""
        ...
