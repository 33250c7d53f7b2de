"""Pytest configuration and fixtures for mwe-reducer tests."""

import shutil
import tempfile
from pathlib import Path
from typing import Callable, Dict, Generator, Iterable, List, Optional

import pytest

from mwe_reducer.models import Fragment, Token
from mwe_reducer.parser import ASTFallbackParser, TreeSitterParser
from mwe_reducer.storage import DependencyGraph, InMemoryGraphStore, SQLiteGraphStore


@pytest.fixture(autouse=True)
def _isolated_home(tmp_path: Path, monkeypatch):
    """Keep config.toml and run directories out of the real home directory."""
    home = tmp_path / "mwe-home"
    monkeypatch.setattr("mwe_reducer.config.BASE_DIR", home)
    monkeypatch.setattr("mwe_reducer.config.RUNS_DIR", home / "runs")
    monkeypatch.setattr("mwe_reducer.config.CONFIG_FILE", home / "config.toml")
    monkeypatch.setattr("mwe_reducer.storage.RUNS_DIR", home / "runs")
    return home


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def sample_project_path() -> Path:
    """Get path to sample test project."""
    return Path(__file__).parent / "fixtures" / "sample_project"


@pytest.fixture
def sample_python_code() -> str:
    """Sample Python code for testing the parsers."""
    return '''"""Sample module for testing."""

import os
from .helpers import clamp as limit


def hello(name):
    # greet someone
    return "Hello, " + name


class Calculator:
    def add(self, a, b):
        return limit(a + b, 0, 10)

    def twice(self, a):
        return self.add(a, a)


print(hello(os.getcwd()))
calc = Calculator()
'''


@pytest.fixture(params=["tree-sitter", "ast"])
def python_parser(request):
    """Each available parser backend."""
    if request.param == "ast":
        return ASTFallbackParser()
    parser = TreeSitterParser()
    if not parser.supports_language("python"):
        pytest.skip("tree-sitter grammar for Python is not installed")
    return parser


def make_fragment(
    fid: int,
    parent: Optional[int] = None,
    kind: str = "stmt",
    text: Optional[str] = None,
    path: str = "main.py",
    level: int = 0,
    **attributes: str,
) -> Fragment:
    """A fragment owning a single token; the token offset is the id."""
    return Fragment(
        id=fid,
        path=path,
        kind=kind,
        tokens=[Token(start=fid, text=text if text is not None else f"<{fid}>", node=fid)],
        level=level,
        parent=parent,
        attributes=dict(attributes),
    )


def flat_fragments(count: int) -> List[Fragment]:
    """*count* independent root fragments."""
    return [make_fragment(i) for i in range(count)]


def link(fragments: Dict[int, Fragment]) -> Dict[int, Fragment]:
    """Fill children lists and levels from the parent fields."""
    for fragment in fragments.values():
        fragment.children = []
    for fid in sorted(fragments):
        parent = fragments[fid].parent
        if parent is not None:
            fragments[parent].children.append(fid)
    for fid in sorted(fragments):
        fragment = fragments[fid]
        fragment.level = 0 if fragment.parent is None else fragments[fragment.parent].level + 1
    return fragments


@pytest.fixture(params=["memory", "sqlite"])
def store_factory(request, temp_dir: Path) -> Generator[Callable[[Iterable[Fragment]], DependencyGraph], None, None]:
    """Build a store of each kind holding the given fragments (roots first)."""
    created: List[DependencyGraph] = []

    def factory(fragments: Iterable[Fragment]) -> DependencyGraph:
        if request.param == "memory":
            store: DependencyGraph = InMemoryGraphStore()
        else:
            store = SQLiteGraphStore(temp_dir / f"graph-{len(created)}.db")
        created.append(store)
        by_id = {f.id: f for f in fragments}
        for fid in sorted(by_id):
            fragment = by_id[fid]
            store.add_fragments([fragment], parent=fragment.parent)
        return store

    yield factory
    for store in created:
        store.close()
