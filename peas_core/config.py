"""PeasConfig: store-local configuration.

The store root (normally ``<project>/.peas``) holds one config file, the
first found of config.toml, config.yml, config.yaml, config.json:

    [peas]
    prefix = "peas-"
    id_length = 5
    id_mode = "random"        # or "sequential"
    default_status = "todo"
    default_type = "task"
    frontmatter = "toml"      # "toml", "yaml" or "flat" for new records
    undo_depth = 50
    scan_timeout = 10.0       # seconds a directory listing may take
    lock_timeout = 5.0        # seconds to wait for the id counter lock

PEAS_ROOT overrides root discovery, which is mostly useful for keeping tests
away from real data.
"""

import json
import logging
import os
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import tomli_w
import yaml

from peas_core.constants import (
    CONFIG_FILENAMES,
    DATA_DIR,
    DEFAULT_FRONTMATTER,
    DEFAULT_ID_LENGTH,
    DEFAULT_PREFIX,
    DEFAULT_STATUS,
    DEFAULT_TYPE,
    ID_MODES,
    LOCK_TIMEOUT,
    MAX_UNDO_LEVELS,
    SCAN_TIMEOUT,
    VALID_STATUSES,
    VALID_TYPES,
)
from peas_core.exceptions import ConfigError, NotInitializedError
from peas_core.frontmatter import FrontmatterFormat
from peas_core.utils import atomic_write_text

__all__ = [
    "PeasConfig",
    "load_config",
    "save_config",
    "find_root",
    "ROOT_ENV_VAR",
]

logger = logging.getLogger(__name__)

ROOT_ENV_VAR = "PEAS_ROOT"

_SECTION = "peas"
_SCHEMA_HEADER = "# peas store configuration\n\n"


@dataclass
class PeasConfig:
    """Resolved configuration for one store root."""

    root: Path = field(default_factory=Path)
    prefix: str = DEFAULT_PREFIX
    id_length: int = DEFAULT_ID_LENGTH
    id_mode: str = "random"
    default_status: str = DEFAULT_STATUS
    default_type: str = DEFAULT_TYPE
    frontmatter: str = DEFAULT_FRONTMATTER
    undo_depth: int = MAX_UNDO_LEVELS
    scan_timeout: float = SCAN_TIMEOUT
    lock_timeout: float = LOCK_TIMEOUT
    source: Optional[Path] = None

    def __post_init__(self) -> None:
        self.root = Path(self.root)
        self.validate()

    def validate(self) -> None:
        if self.id_mode not in ID_MODES:
            raise ConfigError(f"Invalid id_mode: {self.id_mode}. Must be one of {ID_MODES}")
        if not 1 <= int(self.id_length) <= 40:
            raise ConfigError(f"id_length must be between 1 and 40, got {self.id_length}")
        if self.frontmatter not in {f.value for f in FrontmatterFormat}:
            raise ConfigError(f"Invalid frontmatter format: {self.frontmatter}")
        if self.default_status not in VALID_STATUSES:
            raise ConfigError(f"Invalid default_status: {self.default_status}")
        if self.default_type not in VALID_TYPES:
            raise ConfigError(f"Invalid default_type: {self.default_type}")
        if self.undo_depth < 1:
            raise ConfigError(f"undo_depth must be positive, got {self.undo_depth}")

    @property
    def frontmatter_format(self) -> FrontmatterFormat:
        return FrontmatterFormat(self.frontmatter)

    def settings(self) -> Dict[str, Any]:
        """Values that belong in the config file."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name not in ("root", "source")
        }


def _setting_names() -> set:
    return {f.name for f in fields(PeasConfig)} - {"root", "source"}


def _read_raw(config_path: Path) -> Dict[str, Any]:
    suffix = config_path.suffix
    try:
        if suffix == ".toml":
            with config_path.open("rb") as f:
                return tomllib.load(f)
        text = config_path.read_text(encoding="utf-8")
        if suffix == ".json":
            return json.loads(text)
        return yaml.safe_load(text) or {}
    except (tomllib.TOMLDecodeError, json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigError(f"Cannot parse {config_path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read {config_path}: {e}") from e


def load_config(root: Union[str, Path]) -> PeasConfig:
    """Load the config file from a store root, falling back to defaults."""
    root_path = Path(root)

    for filename in CONFIG_FILENAMES:
        config_path = root_path / filename
        if config_path.exists():
            break
    else:
        return PeasConfig(root=root_path)

    raw = _read_raw(config_path)
    if not isinstance(raw, dict):
        raise ConfigError(f"{config_path} must contain a mapping")

    section = raw.get(_SECTION, {})
    if not isinstance(section, dict):
        raise ConfigError(f"[{_SECTION}] in {config_path} must be a table")

    known = _setting_names()
    for key in section:
        if key not in known:
            logger.warning("ignoring unknown config key %s in %s", key, config_path)

    values = {key: value for key, value in section.items() if key in known}
    try:
        config = PeasConfig(root=root_path, source=config_path, **values)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid configuration in {config_path}: {e}") from e
    return config


def save_config(config: PeasConfig, path: Optional[Path] = None) -> Path:
    """Write config to path (default: the file it came from, else config.toml).

    The serializer follows the file extension.
    """
    target = Path(path) if path else (config.source or config.root / CONFIG_FILENAMES[0])
    data = {_SECTION: config.settings()}

    if target.suffix == ".json":
        content = json.dumps(data, indent=2) + "\n"
    elif target.suffix in (".yml", ".yaml"):
        content = _SCHEMA_HEADER + yaml.safe_dump(data, sort_keys=False)
    else:
        content = _SCHEMA_HEADER + tomli_w.dumps(data)

    atomic_write_text(target, content)
    config.source = target
    return target


def find_root(start: Optional[Union[str, Path]] = None) -> Path:
    """Locate the store root.

    PEAS_ROOT wins when set. Otherwise walk upward from start (default: cwd)
    looking for a .peas directory.

    Raises:
        NotInitializedError: If no store is found
    """
    override = os.environ.get(ROOT_ENV_VAR)
    if override:
        return Path(override)

    start_path = Path(start) if start else Path.cwd()
    start_path = start_path.resolve()
    for directory in (start_path, *start_path.parents):
        candidate = directory / DATA_DIR
        if candidate.is_dir():
            return candidate
    raise NotInitializedError(str(start_path))
