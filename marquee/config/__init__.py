"""
Configuration management for Marquee.

Settings are read from TOML: the packaged `defaults.toml` first, then an optional
user file layered on top (only the keys it sets are overridden). API keys may
also come from the `TMDB_API_KEY` / `OMDB_API_KEY` environment variables.

The resulting `MarqueeConfig` is passed explicitly to whoever needs it.
"""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

logger = logging.getLogger(__name__)

# Path to the config directory
CONFIG_DIR = Path(__file__).parent
DEFAULTS_PATH = CONFIG_DIR / "defaults.toml"


class ConfigError(ValueError):
    """Raised when a config file is unreadable or holds invalid values."""


@dataclass
class LibraryConfig:
    database: str = "marquee.db"
    folders: list[str] = field(default_factory=list)


@dataclass
class ScanConfig:
    extensions: list[str] = field(default_factory=list)
    max_concurrency: int = 4
    follow_symlinks: bool = False
    prune_missing: bool = True


@dataclass
class TmdbConfig:
    api_key: str = ""
    base_url: str = "https://api.themoviedb.org/3"
    image_base_url: str = "https://image.tmdb.org/t/p"
    language: str = "en-US"
    cache_ttl: float = 3600.0
    cache_size: int = 100


@dataclass
class OmdbConfig:
    api_key: str = ""
    base_url: str = "https://www.omdbapi.com"
    cache_ttl: float = 86400.0
    cache_size: int = 50
    daily_limit: int = 1000


@dataclass
class MetadataConfig:
    timeout: float = 8.0
    tmdb: TmdbConfig = field(default_factory=TmdbConfig)
    omdb: OmdbConfig = field(default_factory=OmdbConfig)


@dataclass
class WebConfig:
    host: str = "127.0.0.1"
    port: int = 8765


@dataclass
class MarqueeConfig:
    """Loaded configuration."""

    library: LibraryConfig = field(default_factory=LibraryConfig)
    scan: ScanConfig = field(default_factory=ScanConfig)
    metadata: MetadataConfig = field(default_factory=MetadataConfig)
    web: WebConfig = field(default_factory=WebConfig)


def _merge(base: dict[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Recursively merge `override` into a copy of `base` (tables merge, values replace)."""
    result = dict(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(result.get(key), dict):
            result[key] = _merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}") from e


def _section(data: Mapping[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name, {})
    if not isinstance(value, Mapping):
        raise ConfigError(f"[{name}] must be a table")
    return dict(value)


def _positive_int(section: str, key: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigError(f"{section}.{key} must be a positive integer, got {value!r}")
    return value


def _positive_float(section: str, key: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigError(f"{section}.{key} must be a positive number, got {value!r}")
    return float(value)


def _parse(data: Mapping[str, Any], env: Mapping[str, str]) -> MarqueeConfig:
    library = _section(data, "library")
    scan = _section(data, "scan")
    metadata = _section(data, "metadata")
    tmdb = _section(metadata, "tmdb")
    omdb = _section(metadata, "omdb")
    web = _section(data, "web")

    extensions = [
        e.lower() if e.startswith(".") else f".{e.lower()}" for e in scan.get("extensions", [])
    ]
    if not extensions:
        raise ConfigError("scan.extensions must not be empty")

    return MarqueeConfig(
        library=LibraryConfig(
            database=str(library.get("database", "marquee.db")),
            folders=[str(f) for f in library.get("folders", [])],
        ),
        scan=ScanConfig(
            extensions=extensions,
            max_concurrency=_positive_int("scan", "max_concurrency", scan.get("max_concurrency", 4)),
            follow_symlinks=bool(scan.get("follow_symlinks", False)),
            prune_missing=bool(scan.get("prune_missing", True)),
        ),
        metadata=MetadataConfig(
            timeout=_positive_float("metadata", "timeout", metadata.get("timeout", 8.0)),
            tmdb=TmdbConfig(
                api_key=str(tmdb.get("api_key") or env.get("TMDB_API_KEY", "")),
                base_url=str(tmdb.get("base_url", TmdbConfig.base_url)),
                image_base_url=str(tmdb.get("image_base_url", TmdbConfig.image_base_url)),
                language=str(tmdb.get("language", TmdbConfig.language)),
                cache_ttl=_positive_float("metadata.tmdb", "cache_ttl", tmdb.get("cache_ttl", 3600)),
                cache_size=_positive_int("metadata.tmdb", "cache_size", tmdb.get("cache_size", 100)),
            ),
            omdb=OmdbConfig(
                api_key=str(omdb.get("api_key") or env.get("OMDB_API_KEY", "")),
                base_url=str(omdb.get("base_url", OmdbConfig.base_url)),
                cache_ttl=_positive_float("metadata.omdb", "cache_ttl", omdb.get("cache_ttl", 86400)),
                cache_size=_positive_int("metadata.omdb", "cache_size", omdb.get("cache_size", 50)),
                daily_limit=_positive_int(
                    "metadata.omdb", "daily_limit", omdb.get("daily_limit", 1000)
                ),
            ),
        ),
        web=WebConfig(
            host=str(web.get("host", "127.0.0.1")),
            port=_positive_int("web", "port", web.get("port", 8765)),
        ),
    )


def load_config(
    config_path: Path | str | None = None, *, env: Mapping[str, str] | None = None
) -> MarqueeConfig:
    """
    Load configuration.

    Args:
        config_path: Optional user TOML file layered over the packaged defaults.
        env: Environment used for API key fallbacks (defaults to `os.environ`).

    Raises:
        ConfigError: unreadable file or invalid values.
    """
    data = _read_toml(DEFAULTS_PATH)
    if config_path is not None:
        path = Path(config_path).expanduser()
        logger.debug("Loading config from %s", path)
        data = _merge(data, _read_toml(path))

    return _parse(data, os.environ if env is None else env)
