"""Loader settings and their JSON file representation."""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from .fetcher import DEFAULT_MAX_REDIRECTS, DEFAULT_TIMEOUT

DEFAULT_CACHE_DIR = Path("data/http_cache")
DEFAULT_USER_AGENT = "Mozilla/5.0 (X11; Linux x86_64; rv:108.0) Gecko/20100101 Firefox/108.0"
DEFAULT_HOURS_CHANGING = 4
DEFAULT_HOURS_STABLE = 24 * 30
CONFIG_VERSION = 1


class ConfigError(RuntimeError):
    """Raised when a configuration file cannot be interpreted."""


@dataclass(slots=True)
class LoaderConfig:
    cache_dir: Path | None = DEFAULT_CACHE_DIR
    user_agent: str = DEFAULT_USER_AGENT
    hours_changing: int = DEFAULT_HOURS_CHANGING
    hours_stable: int = DEFAULT_HOURS_STABLE
    timeout: tuple[float, float] = field(default=DEFAULT_TIMEOUT)
    max_redirects: int = DEFAULT_MAX_REDIRECTS
    offline: bool = False

    def with_overrides(self, **changes: Any) -> "LoaderConfig":
        """Return a copy where the non-None *changes* replace current values."""

        return replace(self, **{name: value for name, value in changes.items() if value is not None})


def load_config(path: Path) -> LoaderConfig:
    """Return the configuration stored at *path*, or the defaults if absent."""

    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return LoaderConfig()

    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Config file {path} contains invalid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object")

    config = LoaderConfig()
    try:
        if "cache_dir" in payload:
            cache_dir = payload["cache_dir"]
            config.cache_dir = Path(cache_dir) if cache_dir else None
        if "user_agent" in payload:
            config.user_agent = str(payload["user_agent"])
        if "hours_changing" in payload:
            config.hours_changing = int(payload["hours_changing"])
        if "hours_stable" in payload:
            config.hours_stable = int(payload["hours_stable"])
        if "timeout" in payload:
            config.timeout = _parse_timeout(payload["timeout"])
        if "max_redirects" in payload:
            config.max_redirects = int(payload["max_redirects"])
        if "offline" in payload:
            config.offline = bool(payload["offline"])
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Config file {path} has an invalid value: {exc}") from exc
    return config


def save_config(path: Path, config: LoaderConfig) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    payload: dict[str, Any] = {
        "cache_dir": str(config.cache_dir) if config.cache_dir is not None else None,
        "user_agent": config.user_agent,
        "hours_changing": config.hours_changing,
        "hours_stable": config.hours_stable,
        "timeout": list(config.timeout),
        "max_redirects": config.max_redirects,
        "offline": config.offline,
        "version": CONFIG_VERSION,
    }
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")


def _parse_timeout(value: Any) -> tuple[float, float]:
    if isinstance(value, (int, float)):
        return float(value), float(value)
    connect, read = value
    return float(connect), float(read)


__all__ = [
    "ConfigError",
    "DEFAULT_CACHE_DIR",
    "LoaderConfig",
    "load_config",
    "save_config",
]
