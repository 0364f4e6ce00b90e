"""Load bot settings from an optional YAML file.

Path via env `CONFIG_FILE`, default `config/config.yaml`. Keys are the
snake_case field names of `Settings` (e.g. `pool_id`, `price_band_pct`).
Returns an empty dict when the file does not exist.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict

import yaml

DEFAULT_CONFIG_FILE = "config/config.yaml"


class ConfigFileError(ValueError):
    pass


def resolve_config_path(path: str | None = None) -> Path:
    if path is None:
        path = os.getenv("CONFIG_FILE") or DEFAULT_CONFIG_FILE
    return Path(path)


def load_file_config(path: str | None = None) -> Dict[str, Any]:
    p = resolve_config_path(path)
    if not p.exists():
        return {}
    try:
        with p.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigFileError(f"Cannot read config file {p}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigFileError(f"Config file {p} must contain a mapping, got {type(data).__name__}")
    return data
