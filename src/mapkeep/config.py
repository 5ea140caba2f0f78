"""Configuration loading from environment variables and mapkeep.toml."""

from __future__ import annotations

import getpass
import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

_DEFAULT_STORAGE_DIR = Path.home() / "Documents" / "WiseMapping"
_CONFIG_FILENAME = "mapkeep.toml"
_TRUE_VALUES = {"1", "true", "yes", "on"}


def _default_creator() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "local"


def _as_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE_VALUES


@dataclass
class StorageConfig:
    """Where and how documents are stored."""

    dir: Path = _DEFAULT_STORAGE_DIR
    list_concurrency: int = 16
    atomic_writes: bool = True
    export_roots: list[Path] = field(default_factory=list)


@dataclass
class PersistenceConfig:
    """Editor persistence capability."""

    mode: str = "unlocked"
    creator: str = field(default_factory=_default_creator)


@dataclass
class MapkeepConfig:
    """Top-level mapkeep configuration."""

    storage: StorageConfig = field(default_factory=StorageConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    log_level: str = "INFO"


def load_config(config_path: Path | None = None) -> MapkeepConfig:
    """Load configuration from environment variables and optional mapkeep.toml.

    Priority: environment variables > mapkeep.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        # Search current dir and ~/.mapkeep/
        for candidate in [
            Path.cwd() / _CONFIG_FILENAME,
            Path.home() / ".mapkeep" / _CONFIG_FILENAME,
        ]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    storage_data = file_data.get("storage", {})
    persistence_data = file_data.get("persistence", {})

    storage_dir = os.getenv("MAPKEEP_STORAGE_DIR", storage_data.get("dir"))

    config = MapkeepConfig(
        storage=StorageConfig(
            dir=Path(storage_dir).expanduser() if storage_dir else _DEFAULT_STORAGE_DIR,
            list_concurrency=int(
                os.getenv("MAPKEEP_LIST_CONCURRENCY", storage_data.get("list_concurrency", 16))
            ),
            atomic_writes=_as_bool(
                os.getenv("MAPKEEP_ATOMIC_WRITES", storage_data.get("atomic_writes", True))
            ),
            export_roots=[Path(p).expanduser() for p in storage_data.get("export_roots", [])],
        ),
        persistence=PersistenceConfig(
            mode=os.getenv("MAPKEEP_PERSISTENCE_MODE", persistence_data.get("mode", "unlocked")),
            creator=os.getenv(
                "MAPKEEP_CREATOR", persistence_data.get("creator") or _default_creator()
            ),
        ),
        log_level=os.getenv("MAPKEEP_LOG_LEVEL", file_data.get("log_level", "INFO")),
    )
    return config
