"""Graph export helpers for DOT output."""

from __future__ import annotations

from pathlib import Path
from typing import List

from .models import EdgeType, FragmentState
from .storage import DependencyGraph

STATE_COLOURS = {
    FragmentState.FREE: "white",
    FragmentState.ACTIVE: "lightblue",
    FragmentState.FIXED: "palegreen",
    FragmentState.DISCARDED: "lightgrey",
}


def render_dot(store: DependencyGraph, include_discarded: bool = False, code_width: int = 30) -> str:
    states = [s for s in FragmentState if include_discarded or s is not FragmentState.DISCARDED]
    shown = {fid: state for state in states for fid in store.ids_in_state(state)}

    lines: List[str] = ["digraph Fragments {", "  rankdir=BT;", "  node [shape=box, style=filled];"]
    for fid in sorted(shown):
        fragment = store.fragment(fid)
        code = " ".join(fragment.code.split())
        if len(code) > code_width:
            code = code[: code_width - 3] + "..."
        label = f"{fid}: {_esc(fragment.kind)}\\n{_esc(code or fragment.path)}"
        lines.append(f'  "{fid}" [label="{label}", fillcolor="{STATE_COLOURS[shown[fid]]}"];')

    for edge in store.dependency_edges():
        if edge.src not in shown or edge.dst not in shown:
            continue
        if edge.edge_type is EdgeType.STRUCTURAL:
            lines.append(f'  "{edge.src}" -> "{edge.dst}";')
        else:
            lines.append(
                f'  "{edge.src}" -> "{edge.dst}" [style=dashed, label="{_esc(edge.edge_type.value)}"];'
            )

    for guarantee in store.guarantee_edges():
        if guarantee.src in shown and guarantee.dst in shown:
            lines.append(
                f'  "{guarantee.src}" -> "{guarantee.dst}" '
                f'[style=dotted, color=darkgreen, label="{_esc(guarantee.guarantee_type.value)}"];'
            )

    lines.append("}")
    return "\n".join(lines)


def export_dot(store: DependencyGraph, output_file: Path, include_discarded: bool = False) -> None:
    output_file.write_text(render_dot(store, include_discarded), encoding="utf-8")


def _esc(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"')
