"""Configuration paths and defaults for local reduction runs."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Set

BASE_DIR = Path(os.environ.get("MWE_HOME", str(Path.home() / ".mwe"))).expanduser()
RUNS_DIR = BASE_DIR / "runs"
CONFIG_FILE = BASE_DIR / "config.toml"

DEFAULT_WORKERS = 1
DEFAULT_TIMEOUT = 120.0
DEFAULT_FRAGMENT_LIMIT = 0
SUPPORTED_EXTENSIONS = {".py"}

SKIP_DIRS: Set[str] = {
    ".venv", "venv", "__pycache__", "node_modules", ".git",
    "site-packages", ".tox", ".pytest_cache", "build", "dist",
    ".mypy_cache", ".ruff_cache", "htmlcov", ".eggs",
    "egg-info", ".mwe",
}


@dataclass
class ReducerSettings:
    algorithm: str = "gdd"
    workers: int = DEFAULT_WORKERS
    timeout: float = DEFAULT_TIMEOUT
    fragment_limit: int = DEFAULT_FRAGMENT_LIMIT
    passes: int = 1
    store: str = "memory"
    guarantees: bool = False
    prune_comments: bool = True

    def merged(self, **overrides: Any) -> "ReducerSettings":
        """Return a copy with every non-None override applied."""
        values: Dict[str, Any] = {f.name: getattr(self, f.name) for f in fields(self)}
        values.update({k: v for k, v in overrides.items() if v is not None and k in values})
        return ReducerSettings(**values)


def load_settings(path: Optional[Path] = None) -> ReducerSettings:
    """Load reducer settings from ``config.toml`` (or defaults)."""
    from .config_manager import load_reducer_config

    raw = load_reducer_config(path)
    return ReducerSettings(
        algorithm=str(raw["algorithm"]),
        workers=int(raw["workers"]),
        timeout=float(raw["timeout"]),
        fragment_limit=int(raw["fragment_limit"]),
        passes=int(raw["passes"]),
        store=str(raw["store"]),
        guarantees=bool(raw["guarantees"]),
        prune_comments=bool(raw["prune_comments"]),
    )


def ensure_base_dirs() -> None:
    """Create base directories for local storage if needed."""
    RUNS_DIR.mkdir(parents=True, exist_ok=True)
    BASE_DIR.mkdir(parents=True, exist_ok=True)
