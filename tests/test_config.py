"""Tests for reducer settings and config.toml handling."""

from pathlib import Path

from mwe_reducer.config import ReducerSettings, ensure_base_dirs, load_settings
from mwe_reducer.config_manager import (
    DEFAULT_REDUCER_CONFIG,
    load_full_config,
    load_reducer_config,
    save_reducer_config,
)


def test_defaults_without_file(temp_dir: Path):
    assert load_reducer_config(temp_dir / "missing.toml") == DEFAULT_REDUCER_CONFIG
    assert load_settings(temp_dir / "missing.toml") == ReducerSettings()


def test_save_preserves_other_sections(temp_dir: Path):
    """Test writing [reducer] keeps unrelated sections and ignores unknown keys."""
    path = temp_dir / "config.toml"
    path.write_text('[project]\nname = "demo"\n')

    assert save_reducer_config({"algorithm": "hdd", "workers": 3, "colour": "red"}, path)

    full = load_full_config(path)
    assert full["project"] == {"name": "demo"}
    assert full["reducer"] == {"algorithm": "hdd", "workers": 3}

    settings = load_settings(path)
    assert settings.algorithm == "hdd"
    assert settings.workers == 3
    assert settings.timeout == DEFAULT_REDUCER_CONFIG["timeout"]


def test_broken_file_falls_back_to_defaults(temp_dir: Path):
    path = temp_dir / "config.toml"
    path.write_text("[reducer\nalgorithm = ")
    assert load_reducer_config(path) == DEFAULT_REDUCER_CONFIG


def test_merged_ignores_none():
    settings = ReducerSettings(workers=2).merged(workers=None, algorithm="ddmin", unknown=1)
    assert settings.workers == 2
    assert settings.algorithm == "ddmin"


def test_ensure_base_dirs(_isolated_home: Path):
    ensure_base_dirs()
    assert (_isolated_home / "runs").is_dir()
