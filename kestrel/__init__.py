"""Kestrel static site generator.

Kestrel builds Jekyll-style sites: posts, pages and custom collections
written in Markdown with YAML front matter, rendered through Jinja2 layouts
into a static tree, plus a development server that rebuilds on change.

The main entry point is the CLI module, which provides commands for
building a site and serving it with live reload.
"""

__all__ = ["__version__"]
__version__ = "0.1.0"
