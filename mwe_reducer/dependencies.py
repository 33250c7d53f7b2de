"""Cross-reference and guarantee rules over Python fragments.

Each rule is a plain function registered against the edge type it produces.
Rules read only fragment attributes projected by the parser, so they work the
same for both parser backends and can be checked one at a time.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Set, Tuple

from .models import DependencyEdge, EdgeType, Fragment, GuaranteeEdge, GuaranteeType

logger = logging.getLogger(__name__)

Pair = Tuple[int, int]


class FragmentIndex:
    """Lookup tables shared by the rules for one set of fragments."""

    def __init__(self, fragments: Mapping[int, Fragment]) -> None:
        self.fragments = fragments
        self.roots_by_unit: Dict[str, int] = {}
        self.unit_of: Dict[str, str] = {}
        self.package_of: Dict[str, str] = {}
        self.declarations: Dict[Tuple[str, str], List[int]] = {}
        self.imports_by_path: Dict[str, List[Fragment]] = {}

        for fragment in sorted(fragments.values(), key=lambda f: f.id):
            attrs = fragment.attributes
            if fragment.parent is None and "unit" in attrs:
                self.roots_by_unit[attrs["unit"]] = fragment.id
                self.unit_of[fragment.path] = attrs["unit"]
                self.package_of[fragment.path] = attrs.get("package", "")
            if "declares" in attrs:
                key = (attrs.get("declaration", ""), attrs["declares"])
                self.declarations.setdefault(key, []).append(fragment.id)
            if "binds" in attrs or "imports" in attrs:
                self.imports_by_path.setdefault(fragment.path, []).append(fragment)

    def is_descendant(self, fragment_id: int, ancestor_id: int) -> bool:
        current = self.fragments[fragment_id].parent
        while current is not None:
            if current == ancestor_id:
                return True
            parent = self.fragments.get(current)
            current = parent.parent if parent is not None else None
        return False

    def resolve_module(self, imp: Fragment) -> str:
        """Absolute dotted module named by an import fragment."""
        module = imp.attributes.get("imports", "")
        level = int(imp.attributes.get("relative_level", "0") or 0)
        if not level:
            return module
        package = self.package_of.get(imp.path, "")
        parts = package.split(".") if package else []
        if level > 1:
            parts = parts[: max(len(parts) - (level - 1), 0)]
        if module:
            parts.append(module)
        return ".".join(parts)

    def binding_imports(self, path: str, name: str) -> List[Fragment]:
        return [
            imp for imp in self.imports_by_path.get(path, [])
            if name in _split(imp.attributes.get("binds", ""))
        ]

    def visible_declarations(self, path: str, name: str, declaration: str) -> List[int]:
        """Declarations of *name* in *path* or imported into it by name."""
        found: List[int] = []
        candidates = self.declarations.get((declaration, name), [])
        importing_units = {
            self.resolve_module(imp) for imp in self.binding_imports(path, name)
            if imp.kind in _FROM_IMPORT_KINDS
        }
        for decl_id in candidates:
            decl_path = self.fragments[decl_id].path
            if decl_path == path or self.unit_of.get(decl_path) in importing_units:
                found.append(decl_id)
        return found


_FROM_IMPORT_KINDS = {"import_from_statement", "ImportFrom"}


def _split(value: str) -> List[str]:
    return [part for part in value.split(",") if part]


def _longest_unit(index: FragmentIndex, dotted: str) -> Optional[int]:
    parts = dotted.split(".")
    while parts:
        root = index.roots_by_unit.get(".".join(parts))
        if root is not None:
            return root
        parts.pop()
    return None


# ===================================================================
# Cross-reference rules
# ===================================================================

def _calls_to(declaration: str) -> Callable[[FragmentIndex], Iterator[Pair]]:
    def rule(index: FragmentIndex) -> Iterator[Pair]:
        for fragment in index.fragments.values():
            name = fragment.attributes.get("invokes")
            if not name:
                continue
            for decl_id in index.visible_declarations(fragment.path, name, declaration):
                yield fragment.id, decl_id
    return rule


def import_to_unit(index: FragmentIndex) -> Iterator[Pair]:
    for imports in index.imports_by_path.values():
        for imp in imports:
            if imp.attributes.get("relative_level"):
                continue
            modules = _split(imp.attributes.get("imports", ""))
            if imp.kind in _FROM_IMPORT_KINDS and modules:
                # ``from pkg import mod`` may name submodules as well
                modules += [f"{modules[0]}.{n}" for n in _split(imp.attributes.get("binds", ""))]
            for module in modules:
                root = index.roots_by_unit.get(module)
                if root is None and imp.kind not in _FROM_IMPORT_KINDS:
                    root = _longest_unit(index, module)
                if root is not None:
                    yield imp.id, root


def class_to_import(index: FragmentIndex) -> Iterator[Pair]:
    for fragment in index.fragments.values():
        name = fragment.attributes.get("references")
        if not name:
            continue
        for imp in index.binding_imports(fragment.path, name):
            yield fragment.id, imp.id


def class_to_unit_in_package(index: FragmentIndex) -> Iterator[Pair]:
    for imports in index.imports_by_path.values():
        for imp in imports:
            if not imp.attributes.get("relative_level"):
                continue
            base = index.resolve_module(imp)
            targets = [base] + [
                f"{base}.{name}" if base else name
                for name in _split(imp.attributes.get("binds", ""))
            ]
            for unit in targets:
                root = index.roots_by_unit.get(unit)
                if root is not None:
                    yield imp.id, root


CROSS_REFERENCE_RULES: Dict[EdgeType, Callable[[FragmentIndex], Iterable[Pair]]] = {
    EdgeType.INVOCATION_TO_DECLARATION: _calls_to("function"),
    EdgeType.INSTANTIATION_TO_DECLARATION: _calls_to("class"),
    EdgeType.IMPORT_TO_UNIT: import_to_unit,
    EdgeType.CLASS_TO_IMPORT: class_to_import,
    EdgeType.CLASS_TO_UNIT_IN_PACKAGE: class_to_unit_in_package,
}


def derive_dependency_edges(fragments: Mapping[int, Fragment]) -> List[DependencyEdge]:
    """Run every registered cross-reference rule over *fragments*.

    Self edges and edges into the source's own subtree are dropped: together
    with the structural child -> parent edges they would close a cycle.
    """
    index = FragmentIndex(fragments)
    edges: Set[DependencyEdge] = set()
    for edge_type, rule in CROSS_REFERENCE_RULES.items():
        for src, dst in rule(index):
            if src == dst or index.is_descendant(dst, src):
                continue
            edges.add(DependencyEdge(src, dst, edge_type))
    return sorted(edges, key=lambda e: (e.src, e.dst, e.edge_type.value))


# ===================================================================
# Guarantee rules
# ===================================================================

# Grammar fields a node of the given kind cannot be written without.
REQUIRED_FIELDS: Dict[str, Set[str]] = {
    # tree-sitter
    "function_definition": {"name", "parameters", "body"},
    "class_definition": {"name", "body"},
    "if_statement": {"condition", "consequence"},
    "elif_clause": {"condition", "consequence"},
    "while_statement": {"condition", "body"},
    "for_statement": {"left", "right", "body"},
    "call": {"function", "arguments"},
    "assignment": {"left"},
    "keyword_argument": {"name", "value"},
    # ast
    "If": {"test"},
    "While": {"test"},
    "For": {"target", "iter"},
    "Assign": {"targets", "value"},
    "AugAssign": {"target", "value"},
    "Call": {"func"},
    "Attribute": {"value"},
    "Subscript": {"value", "slice"},
    "BinOp": {"left", "right"},
    "Compare": {"left", "comparators"},
}


def required_child(fragments: Mapping[int, Fragment]) -> Iterator[Pair]:
    for fragment in fragments.values():
        required = REQUIRED_FIELDS.get(fragment.kind)
        if not required:
            continue
        for child_id in fragment.children:
            child = fragments.get(child_id)
            if child is None:
                continue
            owner, _, field = child.attributes.get("field", "").partition(".")
            if owner == fragment.kind and field in required:
                yield fragment.id, child_id


def decorated_definition(fragments: Mapping[int, Fragment]) -> Iterator[Pair]:
    # ast decorators sit below their definition and yield no edge
    for fragment in fragments.values():
        if fragment.kind == "decorator" and fragment.parent in fragments:
            # the decorated_definition wrapper owns no token, so the decorator
            # and its definition end up as siblings
            siblings = fragments[fragment.parent].children
            if fragment.id not in siblings:
                continue
            for sibling_id in siblings[siblings.index(fragment.id) + 1:]:
                sibling = fragments.get(sibling_id)
                if sibling is not None and sibling.attributes.get("field") == "decorated_definition.definition":
                    yield fragment.id, sibling_id
                    break


GUARANTEE_RULES: Dict[GuaranteeType, Callable[[Mapping[int, Fragment]], Iterable[Pair]]] = {
    GuaranteeType.REQUIRED_CHILD: required_child,
    GuaranteeType.DECORATED_DEFINITION: decorated_definition,
}


def derive_guarantee_edges(fragments: Mapping[int, Fragment]) -> List[GuaranteeEdge]:
    edges: Set[GuaranteeEdge] = set()
    for guarantee_type, rule in GUARANTEE_RULES.items():
        for src, dst in rule(fragments):
            if src != dst:
                edges.add(GuaranteeEdge(src, dst, guarantee_type))
    return sorted(edges, key=lambda e: (e.src, e.dst, e.guarantee_type.value))
