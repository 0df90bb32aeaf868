from __future__ import annotations

import copy
import os
from dataclasses import dataclass, replace
from typing import Any

import yaml

from .errors import ConfigError
from .models import IngestionOptions, IngestionSource
from .utils import parse_datetime


@dataclass(frozen=True)
class LibraryConfig:
    root: str
    state_db: str


@dataclass(frozen=True)
class FetchConfig:
    delay_seconds: float
    retries: int
    timeout_seconds: float
    cache_ttl_seconds: float
    user_agent: str


@dataclass(frozen=True)
class IngestConfig:
    text_only: bool
    min_read_time_minutes: int
    max_articles_per_publication: int


@dataclass(frozen=True)
class Config:
    library: LibraryConfig
    fetch: FetchConfig
    ingest: IngestConfig


DEFAULT_CONFIG: dict[str, Any] = {
    "library": {
        "root": "./library",
        "state_db": "",
    },
    "fetch": {
        "delay_seconds": 1.0,
        "retries": 3,
        "timeout_seconds": 30.0,
        "cache_ttl_seconds": 900.0,
        "user_agent": "feedlibrary/0.1 (Personal Library)",
    },
    "ingest": {
        "text_only": True,
        "min_read_time_minutes": 0,
        "max_articles_per_publication": 0,
    },
}


def load_config(path: str | None = None) -> Config:
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    if path:
        try:
            with open(path, "r", encoding="utf-8") as handle:
                loaded = yaml.safe_load(handle) or {}
        except OSError as exc:
            raise ConfigError(f"cannot read config {path}: {exc}") from exc
        except yaml.YAMLError as exc:
            raise ConfigError(f"invalid YAML in {path}: {exc}") from exc
        if not isinstance(loaded, dict):
            raise ConfigError("config must be a mapping")
        _deep_merge(cfg, loaded)
    _apply_env_overrides(cfg)
    errors = validate_config(cfg)
    if errors:
        raise ConfigError("Invalid config: " + "; ".join(errors))
    return _build_config(cfg)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> None:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


def _apply_env_overrides(cfg: dict[str, Any]) -> None:
    library_dir = os.environ.get("FL_LIBRARY_DIR", "").strip()
    if library_dir:
        cfg["library"]["root"] = library_dir
    state_db = os.environ.get("FL_STATE_DB", "").strip()
    if state_db:
        cfg["library"]["state_db"] = state_db


def validate_config(cfg: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    _validate_dict(cfg, DEFAULT_CONFIG, "config", errors)
    return errors


def _validate_dict(value: dict[str, Any], schema: dict[str, Any], path: str, errors: list[str]) -> None:
    if not isinstance(value, dict):
        errors.append(f"{path} must be an object")
        return
    for key in schema.keys():
        if key not in value:
            errors.append(f"missing {path}.{key}")
    for key in value.keys():
        if key not in schema:
            errors.append(f"unknown {path}.{key}")
    for key, default in schema.items():
        if key not in value:
            continue
        _validate_value(value[key], default, f"{path}.{key}", errors)


def _validate_value(value: Any, default: Any, path: str, errors: list[str]) -> None:
    if isinstance(default, dict):
        _validate_dict(value, default, path, errors)
        return
    if isinstance(default, bool):
        if not isinstance(value, bool):
            errors.append(f"{path} must be a boolean")
        return
    if isinstance(default, int):
        if isinstance(value, bool) or not isinstance(value, int):
            errors.append(f"{path} must be an integer")
        elif value < 0:
            errors.append(f"{path} must not be negative")
        return
    if isinstance(default, float):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            errors.append(f"{path} must be a number")
        elif value < 0:
            errors.append(f"{path} must not be negative")
        return
    if isinstance(default, str):
        if not isinstance(value, str):
            errors.append(f"{path} must be a string")


def _build_config(cfg: dict[str, Any]) -> Config:
    library_cfg = cfg["library"]
    fetch_cfg = cfg["fetch"]
    ingest_cfg = cfg["ingest"]
    return Config(
        library=LibraryConfig(
            root=str(library_cfg["root"]),
            state_db=str(library_cfg["state_db"]),
        ),
        fetch=FetchConfig(
            delay_seconds=float(fetch_cfg["delay_seconds"]),
            retries=int(fetch_cfg["retries"]),
            timeout_seconds=float(fetch_cfg["timeout_seconds"]),
            cache_ttl_seconds=float(fetch_cfg["cache_ttl_seconds"]),
            user_agent=str(fetch_cfg["user_agent"]),
        ),
        ingest=IngestConfig(
            text_only=bool(ingest_cfg["text_only"]),
            min_read_time_minutes=int(ingest_cfg["min_read_time_minutes"]),
            max_articles_per_publication=int(ingest_cfg["max_articles_per_publication"]),
        ),
    )


def options_from_config(config: Config, **overrides: Any) -> IngestionOptions:
    options = IngestionOptions(
        library_dir=config.library.root,
        fetch_delay_seconds=config.fetch.delay_seconds,
        fetch_retries=config.fetch.retries,
        fetch_timeout_seconds=config.fetch.timeout_seconds,
        user_agent=config.fetch.user_agent,
        text_only=config.ingest.text_only,
        min_read_time_minutes=config.ingest.min_read_time_minutes,
        max_articles_per_pub=config.ingest.max_articles_per_publication or None,
    )
    overrides = {key: value for key, value in overrides.items() if value is not None}
    if "since" in overrides:
        since = parse_datetime(overrides["since"])
        if since is None:
            raise ConfigError(f"invalid since date: {overrides['since']}")
        overrides["since"] = since
    return replace(options, **overrides)


def load_sources_file(path: str) -> list[IngestionSource]:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except OSError as exc:
        raise ConfigError(f"cannot read sources file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid sources file {path}: {exc}") from exc
    publications = data.get("publications") if isinstance(data, dict) else None
    if not isinstance(publications, list):
        raise ConfigError("Invalid sources file: expected { publications: [...] }")

    sources: list[IngestionSource] = []
    for index, entry in enumerate(publications):
        if not isinstance(entry, dict):
            raise ConfigError(f"publications[{index}] must be an object")
        feed_url = entry.get("feedUrl") or entry.get("feed_url")
        if not feed_url and entry.get("url"):
            feed_url = f"{str(entry['url']).rstrip('/')}/feed"
        if not feed_url:
            continue
        name = entry.get("name")
        slug = entry.get("slug")
        if not name or not slug:
            raise ConfigError(f"publications[{index}] requires name and slug")
        sources.append(
            IngestionSource(
                name=str(name),
                slug=str(slug),
                feed_url=str(feed_url),
                author=str(entry["author"]) if entry.get("author") else None,
            )
        )
    return sources
