"""Configuration loading utilities for the directory watcher."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import yaml # type: ignore

from .entries import EntryType
from .filters import FILTER_TYPES, EntryFilter, NamePattern


logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 60.0


class ConfigError(Exception):
    """Raised when the configuration file is missing or invalid."""


@dataclass
class WatcherConfig:
    """Options describing what to watch and how to mirror it."""

    directory: str
    poll_interval: float = DEFAULT_POLL_INTERVAL
    name_filter: NamePattern = None
    type_filter: Optional[str] = None
    mirror_directory: Optional[Path] = None
    allow_mirror_deletion: bool = False
    disable_delete_guard: bool = False
    dry_run: bool = False
    one_shot: bool = False

    def validate(self) -> None:
        """Check option values; raises ``ConfigError`` on the first bad one."""

        if not isinstance(self.directory, str) or not self.directory:
            raise ConfigError("watcher.directory must be a non-empty string")
        if isinstance(self.poll_interval, bool) or not isinstance(self.poll_interval, (int, float)):
            raise ConfigError("watcher.poll_interval must be numeric")
        if self.poll_interval <= 0:
            raise ConfigError(f"watcher.poll_interval is not positive: {self.poll_interval}")
        if self.type_filter is not None and self.type_filter not in FILTER_TYPES:
            allowed = ", ".join(FILTER_TYPES)
            raise ConfigError(f"watcher.type_filter must be one of: {allowed}")
        try:
            self.entry_filter()
        except ValueError as exc:
            raise ConfigError(f"watcher.name_filter is invalid: {exc}") from exc
        if self.mirror_directory is not None and self.type_filter not in (None, EntryType.OBJECT.value):
            logger.warning(
                "Mirroring %s with type_filter=%s; only objects can be mirrored",
                self.directory,
                self.type_filter,
            )

    def entry_filter(self) -> EntryFilter:
        return EntryFilter.build(name=self.name_filter, type=self.type_filter)


@dataclass
class StoreConfig:
    """Selects and configures the store holding the watched directory."""

    backend: str = "filesystem"
    root: Optional[Path] = None


@dataclass
class AppConfig:
    """Top-level configuration structure."""

    watcher: WatcherConfig
    store: Optional[StoreConfig] = None


def load_config(path: Path) -> AppConfig:
    """Load and validate the YAML configuration file."""

    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}")

    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as exc:  # pragma: no cover - logging helper
        raise ConfigError(f"Failed to parse YAML configuration: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError("Configuration root must be a mapping")

    watcher_cfg = _parse_watcher_config(data.get("watcher"), config_path=path)
    store_cfg = _parse_store_config(data.get("store"), config_path=path)
    unknown = sorted(key for key in data if key not in ("watcher", "store"))
    if unknown:
        logger.warning("Ignoring unknown configuration sections: %s", ", ".join(unknown))

    return AppConfig(watcher=watcher_cfg, store=store_cfg)


def _parse_watcher_config(raw: Any, *, config_path: Path) -> WatcherConfig:
    if not isinstance(raw, dict):
        raise ConfigError("'watcher' section must be a mapping")

    directory = raw.get("directory")
    if not isinstance(directory, str) or not directory:
        raise ConfigError("watcher.directory must be a string")

    poll_interval = raw.get("poll_interval", DEFAULT_POLL_INTERVAL)
    if isinstance(poll_interval, bool):
        raise ConfigError("watcher.poll_interval must be numeric")
    try:
        poll_interval_val = float(poll_interval)
    except (TypeError, ValueError) as exc:
        raise ConfigError("watcher.poll_interval must be numeric") from exc
    if poll_interval_val <= 0:
        raise ConfigError("watcher.poll_interval must be positive")

    name_filter = raw.get("name_filter")
    if name_filter is not None and not isinstance(name_filter, str):
        raise ConfigError("watcher.name_filter must be a glob string")

    type_filter = raw.get("type_filter")
    if type_filter is not None and type_filter not in FILTER_TYPES:
        allowed = ", ".join(FILTER_TYPES)
        raise ConfigError(f"watcher.type_filter must be one of: {allowed}")

    mirror_directory = _resolve_optional_path(
        raw.get("mirror_directory"), "watcher.mirror_directory", config_path=config_path
    )

    config = WatcherConfig(
        directory=directory,
        poll_interval=poll_interval_val,
        name_filter=name_filter,
        type_filter=type_filter,
        mirror_directory=mirror_directory,
        allow_mirror_deletion=_ensure_bool(raw.get("allow_mirror_deletion", False), "watcher.allow_mirror_deletion"),
        disable_delete_guard=_ensure_bool(raw.get("disable_delete_guard", False), "watcher.disable_delete_guard"),
        dry_run=_ensure_bool(raw.get("dry_run", False), "watcher.dry_run"),
        one_shot=_ensure_bool(raw.get("one_shot", False), "watcher.one_shot"),
    )
    config.validate()
    logger.info(
        "Loaded watcher for %s (interval=%ss, mirror=%s)",
        config.directory,
        config.poll_interval,
        config.mirror_directory,
    )
    return config


def _parse_store_config(raw: Any, *, config_path: Path) -> Optional[StoreConfig]:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise ConfigError("'store' section must be a mapping")

    backend = raw.get("backend", "filesystem")
    if not isinstance(backend, str):
        raise ConfigError("store.backend must be a string")

    root = _resolve_optional_path(raw.get("root"), "store.root", config_path=config_path)
    return StoreConfig(backend=backend, root=root)


def _resolve_optional_path(value: Any, field_name: str, *, config_path: Path) -> Optional[Path]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(f"{field_name} must be a string")
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = (config_path.parent / path).resolve()
    return path


def _ensure_bool(value: Any, field_name: str) -> bool:
    if not isinstance(value, bool):
        raise ConfigError(f"{field_name} must be a boolean")
    return value
