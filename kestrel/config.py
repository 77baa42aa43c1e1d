"""Configuration resolution for Kestrel.

Configuration starts from built-in defaults and is overlaid, in order, by
zero or more configuration files and finally by command line overrides.
Files may be YAML, TOML or JSON; the format is chosen by extension.

Every file contributes exactly the keys it contains. A present key replaces
the running value wholesale (lists are replaced, not unioned), except
``collections``, which is merged per collection label. Presence, not
equality with the default, decides whether a key was set, so a file may set
a value back to its default or to an empty list.

Top-level keys that Kestrel does not recognize are kept in ``Config.site``
so templates can read them as ``site.<key>``.

Key functions:
- resolve_config: Load, merge and validate configuration.
- find_config_file: Locate the default configuration file in a directory.
- validate_config: Structural checks on a resolved configuration.
"""

from __future__ import annotations

import json
import logging
import tomllib
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from os import PathLike
from pathlib import Path
from typing import Any

import yaml

from .permalink import PERMALINK_STYLES

LOGGER = logging.getLogger(__name__)

CONFIG_FILES = ("_config.yml", "_config.yaml", "_config.toml", "_config.json")
SORT_KEYS = frozenset({"date", "title", "name", "weight"})
RENDER_ERROR_POLICIES = ("skip", "abort")


class ConfigError(Exception):
    """Fatal configuration problem.

    Attributes:
        path: Configuration file (or directory) involved, if any.
        message: Human-readable error message.
    """

    def __init__(self, message: str, path: Path | None = None):
        self.path = path
        self.message = message
        super().__init__(f"{path}: {message}" if path else message)


@dataclass(frozen=True)
class FrontMatterDefault:
    """A scoped default: if the scope matches a document, fill ``values``.

    Attributes:
        values: Front matter keys and values to fill when unset.
        scope_path: Optional glob or path prefix relative to the site source.
        scope_type: Optional collection label, ``pages`` or ``drafts``.
    """

    values: Mapping[str, Any]
    scope_path: str | None = None
    scope_type: str | None = None

    @classmethod
    def from_mapping(cls, data: Any, origin: Path | None = None) -> FrontMatterDefault:
        if not isinstance(data, Mapping):
            raise ConfigError("each entry of 'defaults' must be a mapping", origin)
        scope = data.get("scope") or {}
        values = data.get("values") or {}
        if not isinstance(scope, Mapping):
            raise ConfigError("'defaults' scope must be a mapping", origin)
        if not isinstance(values, Mapping):
            raise ConfigError("'defaults' values must be a mapping", origin)
        path = scope.get("path")
        type_ = scope.get("type")
        return cls(
            values=dict(values),
            scope_path=None if path is None else str(path),
            scope_type=None if type_ is None else str(type_),
        )


@dataclass(frozen=True)
class CollectionSpec:
    """Declared behaviour of one named collection.

    Attributes:
        label: Collection name; documents live in ``<source>/_<label>``.
        output: Whether documents are rendered to disk.
        permalink: Optional permalink pattern or style for the collection.
        sort_by: Front matter key used to order documents for templates.
        defaults: Collection-scoped front matter defaults.
    """

    label: str
    output: bool = False
    permalink: str | None = None
    sort_by: str = "date"
    defaults: tuple[FrontMatterDefault, ...] = ()

    @classmethod
    def from_mapping(cls, label: str, data: Any, origin: Path | None = None) -> CollectionSpec:
        if data is None:
            data = {}
        if not isinstance(data, Mapping):
            raise ConfigError(f"collection '{label}' must be a mapping", origin)
        defaults = data.get("defaults") or []
        if not isinstance(defaults, list):
            raise ConfigError(f"collection '{label}' defaults must be a list", origin)
        permalink = data.get("permalink")
        return cls(
            label=label,
            output=_as_bool(data.get("output", label == "posts"), f"collections.{label}.output", origin),
            permalink=None if permalink is None else str(permalink),
            sort_by=str(data.get("sort_by", "date")),
            defaults=tuple(FrontMatterDefault.from_mapping(item, origin) for item in defaults),
        )


def _default_collections() -> dict[str, CollectionSpec]:
    return {"posts": CollectionSpec("posts", output=True)}


@dataclass(frozen=True)
class Config:
    """Resolved site-wide settings for one build.

    Directory settings are absolute paths once resolved. ``site`` holds the
    unrecognized top-level keys of the configuration files.
    """

    source: Path = Path(".")
    destination: Path = Path("_site")
    layouts_dir: Path = Path("_layouts")
    includes_dir: Path = Path("_includes")
    data_dir: Path = Path("_data")
    baseurl: str = ""
    url: str | None = None
    title: str = "Your awesome site"
    description: str = ""
    safe: bool = False
    exclude: list[str] = field(
        default_factory=lambda: [
            "_config.yml",
            "_config.yaml",
            "_config.toml",
            "_config.json",
            "vendor/bundle/",
            "node_modules/",
        ]
    )
    include: list[str] = field(default_factory=list)
    keep_files: list[str] = field(default_factory=list)
    markdown_ext: list[str] = field(default_factory=lambda: ["md", "markdown"])
    permalink: str = "date"
    excerpt_separator: str = "\n\n"
    defaults: list[FrontMatterDefault] = field(default_factory=list)
    collections: dict[str, CollectionSpec] = field(default_factory=_default_collections)
    show_drafts: bool = False
    unpublished: bool = False
    render_errors: str = "skip"
    host: str = "127.0.0.1"
    port: int = 4000
    livereload: bool = True
    livereload_port: int = 35729
    livereload_ignore: list[str] = field(default_factory=list)
    livereload_min_delay: int = 500
    site: dict[str, Any] = field(default_factory=dict)

    @property
    def posts_dir(self) -> Path:
        return self.source / "_posts"

    @property
    def drafts_dir(self) -> Path:
        return self.source / "_drafts"

    def collection_dir(self, label: str) -> Path:
        return self.source / f"_{label}"

    def is_markdown(self, path: Path) -> bool:
        return path.suffix.lower().lstrip(".") in self.markdown_ext

    def site_data(self) -> dict[str, Any]:
        """Return the site-wide metadata exposed to templates as ``site``."""
        data: dict[str, Any] = {
            "title": self.title,
            "description": self.description,
            "baseurl": self.baseurl,
            "url": self.url or "",
            "permalink": self.permalink,
        }
        data.update(self.site)
        return data


def _as_str(value: Any, key: str, origin: Path | None) -> str:
    if isinstance(value, (dict, list)):
        raise ConfigError(f"'{key}' must be a string", origin)
    return "" if value is None else str(value)


def _as_optional_str(value: Any, key: str, origin: Path | None) -> str | None:
    return None if value is None else _as_str(value, key, origin)


def _as_path(value: Any, key: str, origin: Path | None) -> Path:
    if isinstance(value, PathLike):
        return Path(value)
    return Path(_as_str(value, key, origin))


def _as_bool(value: Any, key: str, origin: Path | None) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "false", "yes", "no"):
        return value.lower() in ("true", "yes")
    raise ConfigError(f"'{key}' must be a boolean", origin)


def _as_int(value: Any, key: str, origin: Path | None) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"'{key}' must be an integer", origin)
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"'{key}' must be an integer", origin) from exc


def _as_str_list(value: Any, key: str, origin: Path | None) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value]
    raise ConfigError(f"'{key}' must be a list of strings", origin)


def _as_extensions(value: Any, key: str, origin: Path | None) -> list[str]:
    if isinstance(value, str):
        value = value.split(",")
    return [ext.strip().lstrip(".").lower() for ext in _as_str_list(value, key, origin) if ext.strip()]


def _as_defaults(value: Any, key: str, origin: Path | None) -> list[FrontMatterDefault]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigError(f"'{key}' must be a list", origin)
    return [FrontMatterDefault.from_mapping(item, origin) for item in value]


def _as_collections(value: Any, key: str, origin: Path | None) -> dict[str, CollectionSpec]:
    if value is None:
        return {}
    if isinstance(value, list):
        return {str(label): CollectionSpec.from_mapping(str(label), {}, origin) for label in value}
    if not isinstance(value, Mapping):
        raise ConfigError(f"'{key}' must be a mapping or a list of names", origin)
    return {
        str(label): CollectionSpec.from_mapping(str(label), settings, origin)
        for label, settings in value.items()
    }


def _as_render_policy(value: Any, key: str, origin: Path | None) -> str:
    policy = _as_str(value, key, origin).lower()
    if policy not in RENDER_ERROR_POLICIES:
        raise ConfigError(
            f"'{key}' must be one of {', '.join(RENDER_ERROR_POLICIES)} (got {value!r})", origin
        )
    return policy


Coercer = Callable[[Any, str, "Path | None"], Any]

# Configuration key -> (Config field, coercer).
RECOGNIZED_KEYS: dict[str, tuple[str, Coercer]] = {
    "source": ("source", _as_path),
    "destination": ("destination", _as_path),
    "layouts_dir": ("layouts_dir", _as_path),
    "includes_dir": ("includes_dir", _as_path),
    "data_dir": ("data_dir", _as_path),
    "baseurl": ("baseurl", _as_str),
    "base_url": ("baseurl", _as_str),
    "url": ("url", _as_optional_str),
    "title": ("title", _as_str),
    "description": ("description", _as_str),
    "safe": ("safe", _as_bool),
    "safe_mode": ("safe", _as_bool),
    "exclude": ("exclude", _as_str_list),
    "include": ("include", _as_str_list),
    "keep_files": ("keep_files", _as_str_list),
    "markdown_ext": ("markdown_ext", _as_extensions),
    "permalink": ("permalink", _as_str),
    "excerpt_separator": ("excerpt_separator", _as_str),
    "defaults": ("defaults", _as_defaults),
    "collections": ("collections", _as_collections),
    "show_drafts": ("show_drafts", _as_bool),
    "unpublished": ("unpublished", _as_bool),
    "render_errors": ("render_errors", _as_render_policy),
    "host": ("host", _as_str),
    "port": ("port", _as_int),
    "livereload": ("livereload", _as_bool),
    "livereload_port": ("livereload_port", _as_int),
    "livereload_ignore": ("livereload_ignore", _as_str_list),
    "livereload_min_delay": ("livereload_min_delay", _as_int),
}

PATH_FIELDS = ("source", "destination", "layouts_dir", "includes_dir", "data_dir")


def find_config_file(base_dir: Path) -> Path | None:
    """Return the first existing default configuration file in ``base_dir``.

    Args:
        base_dir: Directory to search.

    Returns:
        Path of ``_config.yml``, ``_config.yaml``, ``_config.toml`` or
        ``_config.json`` (checked in that order), or None.
    """
    for name in CONFIG_FILES:
        candidate = base_dir / name
        if candidate.is_file():
            return candidate
    return None


def load_config_file(path: Path) -> dict[str, Any]:
    """Read and parse one configuration file.

    Args:
        path: YAML, TOML or JSON file.

    Returns:
        The top-level mapping (empty for an empty YAML file).

    Raises:
        ConfigError: If the file is missing, unreadable, unparsable, has an
            unsupported extension, or its top level is not a mapping.
    """
    suffix = path.suffix.lower()
    if suffix not in (".yml", ".yaml", ".toml", ".json"):
        raise ConfigError(f"Unsupported configuration file format: {suffix or '(none)'}", path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Failed to read configuration file: {exc}", path) from exc
    try:
        if suffix in (".yml", ".yaml"):
            data = yaml.safe_load(text)
        elif suffix == ".toml":
            data = tomllib.loads(text)
        else:
            data = json.loads(text)
    except (yaml.YAMLError, tomllib.TOMLDecodeError, json.JSONDecodeError) as exc:
        raise ConfigError(f"Failed to parse configuration: {exc}", path) from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a mapping at the top level", path)
    return data


def interpret_settings(
    raw: Mapping[str, Any], origin: Path | None = None
) -> tuple[dict[str, Any], dict[str, Any]]:
    """Split a raw mapping into typed settings and site metadata.

    Args:
        raw: Parsed configuration file or override mapping.
        origin: File the mapping came from, for error messages.

    Returns:
        Tuple of (settings keyed by Config field, unrecognized keys).
    """
    settings: dict[str, Any] = {}
    extra: dict[str, Any] = {}
    for key, value in raw.items():
        key = str(key)
        if key not in RECOGNIZED_KEYS:
            extra[key] = value
            continue
        field_name, coerce = RECOGNIZED_KEYS[key]
        settings[field_name] = coerce(value, key, origin)
    return settings, extra


def merge_settings(target: dict[str, Any], settings: Mapping[str, Any]) -> None:
    """Overlay ``settings`` onto ``target`` in place.

    Present keys replace the running value, except ``collections`` which is
    merged per label.
    """
    for key, value in settings.items():
        if key == "collections":
            target.setdefault("collections", {}).update(value)
        else:
            target[key] = value


def resolve_config(
    base_dir: Path,
    config_paths: Sequence[Path] = (),
    overrides: Mapping[str, Any] | None = None,
    logger: logging.Logger | None = None,
) -> Config:
    """Load, merge and validate site configuration.

    Args:
        base_dir: Directory relative paths resolve against; also where the
            default configuration file is looked for.
        config_paths: Explicit configuration files, merged in order.
        overrides: Final overrides (command line flags) keyed by
            configuration key; ``None`` values are ignored.
        logger: Logger for progress and warnings.

    Returns:
        The resolved, validated configuration.

    Raises:
        ConfigError: On any fatal configuration problem.
    """
    logger = logger or LOGGER
    base_dir = Path(base_dir)
    paths = [Path(p) for p in config_paths]
    if not paths:
        found = find_config_file(base_dir)
        if found is not None:
            paths = [found]
    if not paths:
        logger.debug("No configuration file found in %s; using defaults", base_dir)

    settings: dict[str, Any] = {}
    site: dict[str, Any] = {}
    for path in paths:
        if not path.is_absolute():
            path = base_dir / path
        if not path.exists():
            raise ConfigError("Configuration file not found", path)
        logger.info("Loading configuration from %s", path)
        file_settings, extra = interpret_settings(load_config_file(path), path)
        merge_settings(settings, file_settings)
        site.update(extra)

    if overrides:
        present = {key: value for key, value in overrides.items() if value is not None}
        override_settings, extra = interpret_settings(present)
        merge_settings(settings, override_settings)
        site.update(extra)

    config = build_config(base_dir, settings, site)
    validate_config(config, logger=logger)
    return config


def build_config(base_dir: Path, settings: Mapping[str, Any], site: Mapping[str, Any]) -> Config:
    """Materialize a :class:`Config` from merged settings.

    ``source`` and ``destination`` resolve against ``base_dir``; the
    layouts, includes and data directories resolve against the source.
    """
    values = dict(settings)
    collections = _default_collections()
    collections.update(values.pop("collections", {}))

    source = (base_dir / values.pop("source", Path("."))).resolve()
    destination = (base_dir / values.pop("destination", Path("_site"))).resolve()
    for name in ("layouts_dir", "includes_dir", "data_dir"):
        default = Config.__dataclass_fields__[name].default
        values[name] = (source / values.get(name, default)).resolve()

    return Config(
        source=source,
        destination=destination,
        collections=collections,
        site=dict(site),
        **values,
    )


def validate_config(config: Config, logger: logging.Logger | None = None) -> None:
    """Run structural validation on a resolved configuration.

    Args:
        config: Configuration to check.
        logger: Logger for warnings.

    Raises:
        ConfigError: If the source is missing or not a directory, or the
            destination exists and is not a directory.
    """
    logger = logger or LOGGER
    if not config.source.exists():
        raise ConfigError("Source directory does not exist", config.source)
    if not config.source.is_dir():
        raise ConfigError("Source path is not a directory", config.source)

    if not config.destination.exists():
        logger.info("Creating destination directory: %s", config.destination)
        try:
            config.destination.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ConfigError(f"Cannot create destination directory: {exc}", config.destination) from exc
    elif not config.destination.is_dir():
        raise ConfigError("Destination path exists but is not a directory", config.destination)

    if not config.layouts_dir.is_dir():
        logger.warning("Layouts directory does not exist: %s", config.layouts_dir)
    if not config.data_dir.is_dir():
        logger.warning("Data directory does not exist: %s", config.data_dir)

    for label, spec in config.collections.items():
        if spec.sort_by not in SORT_KEYS:
            logger.warning("Collection '%s' has an unusual sort_by value: %s", label, spec.sort_by)
        if spec.permalink and ":" not in spec.permalink and spec.permalink not in PERMALINK_STYLES:
            logger.warning(
                "Collection '%s' has a permalink pattern without placeholders: %s",
                label,
                spec.permalink,
            )
    if ":" not in config.permalink and config.permalink not in PERMALINK_STYLES:
        logger.warning("Site permalink pattern has no placeholders: %s", config.permalink)
