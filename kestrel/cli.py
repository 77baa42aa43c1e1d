"""Command-line interface for Kestrel.

This module defines the CLI commands using Click framework. Every site
option maps onto a configuration override applied after the config files.

Commands:
- build: Build the site into the destination directory.
- serve: Build, serve and rebuild on change with live reload.
"""

from __future__ import annotations

import logging
from pathlib import Path

import click

from . import __version__
from .build import BuildError, build_site
from .config import Config, ConfigError, resolve_config
from .content import LoadError

LEVEL_STYLES = {
    logging.DEBUG: {"dim": True},
    logging.WARNING: {"fg": "yellow"},
    logging.ERROR: {"fg": "red"},
    logging.CRITICAL: {"fg": "red", "bold": True},
}


class ClickLogHandler(logging.Handler):
    """Logging handler that writes through ``click.echo`` with level colours.

    Warnings and errors go to stderr.
    """

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = self.format(record)
            style = LEVEL_STYLES.get(record.levelno, {})
            click.echo(click.style(message, **style), err=record.levelno >= logging.WARNING)
        except Exception:  # pragma: no cover - mirrors logging.Handler contract
            self.handleError(record)


def configure_logging(verbose: bool = False, quiet: bool = False) -> logging.Logger:
    """Install a :class:`ClickLogHandler` on the ``kestrel`` logger.

    Args:
        verbose: Log at DEBUG.
        quiet: Log only errors. Wins over ``verbose``.

    Returns:
        The configured ``kestrel`` logger.
    """
    logger = logging.getLogger("kestrel")
    for handler in list(logger.handlers):
        if isinstance(handler, ClickLogHandler):
            logger.removeHandler(handler)
    handler = ClickLogHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    if quiet:
        logger.setLevel(logging.ERROR)
    elif verbose:
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(logging.INFO)
    return logger


SITE_OPTIONS = [
    click.option(
        "-s",
        "--source",
        type=click.Path(file_okay=False, path_type=Path),
        help="Source directory (default: current directory)",
    ),
    click.option(
        "-d",
        "--destination",
        type=click.Path(path_type=Path),
        help="Destination directory (default: ./_site)",
    ),
    click.option(
        "--layouts",
        type=click.Path(file_okay=False, path_type=Path),
        help="Layouts directory (default: ./_layouts)",
    ),
    click.option(
        "-c",
        "--config",
        "config_files",
        multiple=True,
        type=click.Path(dir_okay=False, path_type=Path),
        help="Configuration file; repeat to merge several in order",
    ),
    click.option("-b", "--baseurl", help="Serve the website from the given base URL"),
    click.option("-D", "--drafts", is_flag=True, help="Render posts in the _drafts folder"),
    click.option("--unpublished", is_flag=True, help="Render posts marked as unpublished"),
    click.option("-V", "--verbose", is_flag=True, help="Print verbose output"),
    click.option("-q", "--quiet", is_flag=True, help="Silence output except errors"),
]


def _site_options(func):
    """Apply the options shared by ``build`` and ``serve``."""
    for option in reversed(SITE_OPTIONS):
        func = option(func)
    return func


def _load_config(
    source: Path | None,
    destination: Path | None,
    layouts: Path | None,
    config_files: tuple[Path, ...],
    overrides: dict,
    logger: logging.Logger,
) -> Config:
    base_dir = (source or Path.cwd()).resolve()
    overrides = dict(overrides)
    if destination is not None:
        overrides["destination"] = destination.resolve()
    if layouts is not None:
        overrides["layouts_dir"] = layouts.resolve()
    paths = [path.resolve() for path in config_files]
    return resolve_config(base_dir, paths, overrides=overrides, logger=logger)


def _fail(exc: ConfigError | LoadError | BuildError) -> None:
    """Print a build failure block and exit with status 1."""
    if isinstance(exc, BuildError):
        where = exc.source_path
    else:
        where = exc.path
    click.echo(click.style("Build failed:", fg="red", bold=True), err=True)
    if where is not None:
        try:
            where = Path(where).relative_to(Path.cwd())
        except ValueError:
            pass
        click.echo(click.style(f"  File: {where}", fg="yellow"), err=True)
    click.echo(click.style(f"  Error: {exc.message}", fg="white"), err=True)
    raise SystemExit(1)


@click.group()
@click.version_option(version=__version__, prog_name="kestrel")
def cli():
    """Kestrel static site generator."""


@cli.command()
@_site_options
def build(source, destination, layouts, config_files, baseurl, drafts, unpublished, verbose, quiet):
    """Build the site into the destination directory."""
    logger = configure_logging(verbose, quiet)
    overrides = {
        "baseurl": baseurl,
        "show_drafts": True if drafts else None,
        "unpublished": True if unpublished else None,
    }
    try:
        config = _load_config(source, destination, layouts, config_files, overrides, logger)
        result = build_site(config, logger=logger)
    except (ConfigError, LoadError, BuildError) as exc:
        _fail(exc)
        return
    click.echo(f"Built {len(result.written)} pages into {result.destination}")


@cli.command()
@_site_options
@click.option("-H", "--host", help="Host to bind to (default: 127.0.0.1)")
@click.option("-P", "--port", type=int, help="Port to listen on (default: 4000)")
@click.option("--no-livereload", is_flag=True, help="Do not reload browsers on rebuild")
@click.option("--livereload-port", type=int, help="Port for the live reload WebSocket (default: 35729)")
def serve(
    source,
    destination,
    layouts,
    config_files,
    baseurl,
    drafts,
    unpublished,
    verbose,
    quiet,
    host,
    port,
    no_livereload,
    livereload_port,
):
    """Build, serve and rebuild on change with live reload."""
    logger = configure_logging(verbose, quiet)
    overrides = {
        "baseurl": baseurl,
        "show_drafts": True if drafts else None,
        "unpublished": True if unpublished else None,
        "host": host,
        "port": port,
        "livereload": False if no_livereload else None,
        "livereload_port": livereload_port,
    }
    from .server import DevServer

    try:
        config = _load_config(source, destination, layouts, config_files, overrides, logger)
        server = DevServer(
            config,
            include_drafts=config.show_drafts,
            include_unpublished=config.unpublished,
            logger=logger,
        )
        server.start()
    except (ConfigError, LoadError, BuildError) as exc:
        _fail(exc)


def main():
    """Entry point for the CLI application."""
    cli()
