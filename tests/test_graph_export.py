"""Tests for DOT export of the dependency graph."""

from pathlib import Path

from conftest import link, make_fragment

from mwe_reducer.graph_export import export_dot, render_dot
from mwe_reducer.models import DependencyEdge, EdgeType, GuaranteeEdge, GuaranteeType
from mwe_reducer.storage import InMemoryGraphStore


def _store():
    store = InMemoryGraphStore()
    store.add_forest(link({
        0: make_fragment(0, kind="module", text=""),
        1: make_fragment(1, parent=0, kind="function_definition", text='def f(): return "x"'),
        2: make_fragment(2, parent=0, kind="call", text="f()"),
        3: make_fragment(3, parent=0, kind="comment", text="# note"),
    }))
    store._insert_dependency_edges([DependencyEdge(2, 1, EdgeType.INVOCATION_TO_DECLARATION)])
    store._insert_guarantee_edges([GuaranteeEdge(0, 1, GuaranteeType.REQUIRED_CHILD)])
    return store


def test_render_dot_nodes_and_edges():
    """Test every live fragment and edge appears with its style."""
    dot = render_dot(_store())

    assert dot.startswith("digraph Fragments {")
    assert dot.rstrip().endswith("}")
    assert '"1" -> "0";' in dot
    assert '"2" -> "1" [style=dashed, label="INVOCATION_TO_DECLARATION"];' in dot
    assert 'style=dotted, color=darkgreen, label="REQUIRED_CHILD"' in dot
    assert '\\"x\\"' in dot
    assert 'label="0: module\\nmain.py"' in dot


def test_discarded_fragments_hidden_by_default():
    store = _store()
    store.discard([3])

    assert '"3"' not in render_dot(store)
    dot = render_dot(store, include_discarded=True)
    assert '"3" [label="3: comment\\n# note", fillcolor="lightgrey"];' in dot


def test_long_code_is_shortened():
    dot = render_dot(_store(), code_width=10)
    assert "def f(...." not in dot
    assert "def f()..." in dot


def test_export_dot(temp_dir: Path):
    output = temp_dir / "graph.dot"
    export_dot(_store(), output)
    assert output.read_text(encoding="utf-8") == render_dot(_store())
