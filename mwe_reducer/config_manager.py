"""Configuration manager for the reducer using TOML files."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

try:
    import toml
except ImportError:
    toml = None  # type: ignore


DEFAULT_REDUCER_CONFIG: Dict[str, Any] = {
    "algorithm": "gdd",
    "workers": 1,
    "timeout": 120.0,
    "fragment_limit": 0,
    "passes": 1,
    "store": "memory",
    "guarantees": False,
    "prune_comments": True,
}


def _config_file() -> Path:
    from .config import CONFIG_FILE
    return CONFIG_FILE


def load_full_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """Load the entire TOML config (all sections)."""
    config_file = path or _config_file()
    if not config_file.exists() or toml is None:
        return {}
    try:
        with open(config_file, "r") as f:
            return toml.load(f)
    except (OSError, toml.TomlDecodeError):
        return {}


def load_reducer_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """Load the ``[reducer]`` section merged over the defaults.

    Unknown keys are ignored so an older binary can read a newer file.
    """
    merged = DEFAULT_REDUCER_CONFIG.copy()
    section = load_full_config(path).get("reducer", {})
    for key, value in section.items():
        if key in merged:
            merged[key] = value
    return merged


def save_reducer_config(values: Dict[str, Any], path: Optional[Path] = None) -> bool:
    """Write the ``[reducer]`` section, preserving other sections.

    Returns:
        True if saved successfully, False otherwise
    """
    if toml is None:
        return False
    config_file = path or _config_file()
    config = load_full_config(config_file)
    section = config.get("reducer", {})
    section.update({k: v for k, v in values.items() if k in DEFAULT_REDUCER_CONFIG})
    config["reducer"] = section
    config_file.parent.mkdir(parents=True, exist_ok=True)
    try:
        with open(config_file, "w") as f:
            toml.dump(config, f)
        return True
    except OSError:
        return False
