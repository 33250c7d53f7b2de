"""Fragment builder: groups tokens by owning syntax node into a leveled forest."""

from __future__ import annotations

import itertools
import logging
from collections import deque
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Set

from .errors import ExtractionError
from .models import Fragment, ParsedSource

logger = logging.getLogger(__name__)


class SequenceGenerator:
    """Monotonically increasing fragment ids for one run."""

    def __init__(self, start: int = 0) -> None:
        self._counter = itertools.count(start)
        self.issued = start

    def next(self) -> int:
        value = next(self._counter)
        self.issued = value + 1
        return value


class FragmentBuilder:
    """Turns parsed sources into fragment forests with stable ids.

    Each distinct syntax node that owns at least one token becomes one
    fragment; the file's root node always becomes the synthetic root fragment
    at level 0. Nodes without tokens (intermediate nodes) do not become
    fragments: their descendants are attached to the nearest strict ancestor
    that owns one.

    Every fragment built so far is kept in ``self.fragments`` keyed by id.
    """

    def __init__(self, sequence: Optional[SequenceGenerator] = None) -> None:
        self.sequence = sequence or SequenceGenerator()
        self.fragments: Dict[int, Fragment] = {}

    def build(self, parsed: ParsedSource) -> Fragment:
        """Build the forest for one file and return its root fragment."""
        root, built = _build_forest(parsed, self.sequence)
        self.fragments.update(built)
        logger.debug("Built %d fragments for %s", len(built), parsed.path)
        return root

    def build_all(self, sources: Iterable[ParsedSource]) -> List[Fragment]:
        """Build every file and return the root fragments in input order."""
        return [self.build(parsed) for parsed in sources]


def _build_forest(parsed: ParsedSource, sequence: SequenceGenerator):
    if parsed.root not in parsed.nodes:
        raise ExtractionError("Root node missing from node table", path=parsed.path, node=parsed.root)

    root_node = parsed.nodes[parsed.root]
    root = Fragment(
        id=sequence.next(),
        path=parsed.path,
        kind=root_node.kind,
        level=0,
        attributes=dict(root_node.attributes),
    )
    by_node: Dict[int, Fragment] = {parsed.root: root}

    # Combine all tokens that belong to the same syntax node
    for token in sorted(parsed.tokens, key=lambda t: t.start):
        fragment = by_node.get(token.node)
        if fragment is None:
            node = parsed.nodes.get(token.node)
            if node is None:
                raise ExtractionError("Token owned by unknown node", path=parsed.path, node=token.node)
            fragment = Fragment(
                id=sequence.next(),
                path=parsed.path,
                kind=node.kind,
                attributes=dict(node.attributes),
            )
            by_node[token.node] = fragment
        fragment.tokens.append(token)

    _assign_levels(parsed, by_node)
    return root, {f.id: f for f in by_node.values()}


def _assign_levels(parsed: ParsedSource, by_node: Dict[int, Fragment]) -> None:
    root = by_node[parsed.root]
    by_parent: Dict[int, List[int]] = {}
    for key in by_node:
        if key == parsed.root:
            continue
        parent_key = parsed.nodes[key].parent
        if parent_key is not None:
            by_parent.setdefault(parent_key, []).append(key)

    # breadth-first from the root over nodes whose parent owns a fragment
    frontier = deque([parsed.root])
    while frontier:
        parent_key = frontier.popleft()
        parent = by_node[parent_key]
        for child_key in by_parent.get(parent_key, []):
            child = by_node[child_key]
            if child.level >= 0:
                continue
            child.level = parent.level + 1
            child.parent = parent.id
            parent.children.append(child.id)
            frontier.append(child_key)

    # sometimes there are middle nodes that are not assigned to a token
    unassigned = sorted(
        (key for key, fr in by_node.items() if fr.level < 0),
        key=lambda key: by_node[key].start,
    )
    for key in unassigned:
        fragment = by_node[key]
        parent = by_node[_nearest_fragment_ancestor(parsed, by_node, key)]
        parent.children.append(fragment.id)
        fragment.parent = parent.id
        fragment.level = parent.level + 1

    by_id = {f.id: f for f in by_node.values()}
    for fragment in by_id.values():
        fragment.children.sort(key=lambda cid: by_id[cid].start)
    _recalculate_levels(parsed.path, by_id, root)


def _nearest_fragment_ancestor(
    parsed: ParsedSource,
    by_node: Mapping[int, Fragment],
    key: int,
) -> int:
    seen: Set[int] = {key}
    ancestor = parsed.nodes[key].parent
    while ancestor is not None and ancestor not in by_node:
        if ancestor in seen or ancestor not in parsed.nodes:
            ancestor = None
            break
        seen.add(ancestor)
        ancestor = parsed.nodes[ancestor].parent
    if ancestor is None:
        raise ExtractionError(
            "Unable to calculate dependencies. Found unassignable node",
            path=parsed.path,
            node=key,
        )
    return ancestor


def _recalculate_levels(path: str, by_id: Mapping[int, Fragment], root: Fragment) -> None:
    visited: Set[int] = set()
    stack = [(root, 0)]
    while stack:
        fragment, level = stack.pop()
        if fragment.id in visited:
            raise ExtractionError("Cyclic parent relation between fragments", path=path, node=fragment.id)
        visited.add(fragment.id)
        fragment.level = level
        stack.extend((by_id[c], level + 1) for c in fragment.children)
    if len(visited) != len(by_id):
        stray = min(set(by_id) - visited)
        raise ExtractionError("Fragment not reachable from the file root", path=path, node=stray)


def iter_subtree(fragments: Mapping[int, Fragment], fragment_id: int) -> Iterator[Fragment]:
    """Yield *fragment_id* and all its descendants, depth first."""
    stack = [fragment_id]
    while stack:
        current = fragments.get(stack.pop())
        if current is None:
            continue
        yield current
        stack.extend(reversed(current.children))


def subtree_ids(fragments: Mapping[int, Fragment], ids: Iterable[int]) -> Set[int]:
    result: Set[int] = set()
    for fragment_id in ids:
        result.update(f.id for f in iter_subtree(fragments, fragment_id))
    return result


def fragments_by_level(fragments: Mapping[int, Fragment]) -> Dict[int, List[int]]:
    levels: Dict[int, List[int]] = {}
    for fragment in sorted(fragments.values(), key=lambda f: f.id):
        levels.setdefault(fragment.level, []).append(fragment.id)
    return levels


def render_files(fragments: Mapping[int, Fragment], included: Iterable[int]) -> Dict[str, str]:
    """Concatenate the tokens of the included fragments per file in offset order.

    Files without any included fragment are left out of the result.
    """
    tokens_by_file: Dict[str, list] = {}
    for fragment_id in included:
        fragment = fragments.get(fragment_id)
        if fragment is None:
            continue
        tokens_by_file.setdefault(fragment.path, []).extend(fragment.tokens)
    return {
        path: "".join(t.text for t in sorted(tokens, key=lambda t: t.start))
        for path, tokens in tokens_by_file.items()
    }
