"""Dependency graph store for one reduction run.

Architecture:
- **DependencyGraph** defines the operations the minimizers rely on and
  implements the queries that can be expressed through the others.
- **InMemoryGraphStore** keeps adjacency maps keyed by fragment id, for small
  runs and tests.
- **SQLiteGraphStore** keeps fragments and edges in SQLite tables and answers
  closure queries with recursive CTEs, for large runs.

Both stores serialize every call with a re-entrant lock, so the state-changing
operations are atomic with respect to each other even when oracle calls run on
worker threads.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from collections import Counter, deque
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple, Union

from .config import RUNS_DIR, ensure_base_dirs
from .dependencies import derive_dependency_edges, derive_guarantee_edges
from .errors import GraphConsistencyError
from .models import (
    DependencyEdge,
    EdgeType,
    Fragment,
    FragmentState,
    GuaranteeEdge,
    GuaranteeType,
    Token,
)

logger = logging.getLogger(__name__)


# ===================================================================
# RunManager
# ===================================================================

class RunManager:
    """Manage per-run working directories below ``RUNS_DIR``."""

    def __init__(self, runs_dir: Optional[Path] = None) -> None:
        self.runs_dir = runs_dir or RUNS_DIR
        if runs_dir is None:
            ensure_base_dirs()
        self.runs_dir.mkdir(parents=True, exist_ok=True)

    def list_runs(self) -> List[str]:
        return sorted(p.name for p in self.runs_dir.iterdir() if p.is_dir())

    def run_dir(self, run_name: str) -> Path:
        return self.runs_dir / run_name

    def create_run(self, project_name: str) -> Path:
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S-%f")
        path = self.run_dir(f"{project_name}-{stamp}")
        path.mkdir(parents=True, exist_ok=True)
        return path

    def delete_run(self, run_name: str) -> bool:
        path = self.run_dir(run_name)
        if not path.exists():
            return False
        for child in sorted(path.glob("**/*"), reverse=True):
            if child.is_file():
                child.unlink()
            elif child.is_dir():
                child.rmdir()
        path.rmdir()
        return True


# ===================================================================
# Abstract store
# ===================================================================

class DependencyGraph(ABC):
    """Fragments with a lifecycle state plus dependency and guarantee edges.

    A dependency edge ``src -> dst`` means *src* cannot be part of a
    configuration unless *dst* is. A guarantee edge ``src -> dst`` means that
    once *src* is fixed, *dst* is necessary as well.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Primitives
    # ------------------------------------------------------------------

    @abstractmethod
    def add_fragments(self, fragments: Sequence[Fragment], parent: Optional[int] = None) -> List[int]:
        """Insert *fragments* as ``Free``, each with a structural edge to *parent*."""

    @abstractmethod
    def _insert_dependency_edges(self, edges: Sequence[DependencyEdge]) -> int:
        ...

    @abstractmethod
    def _insert_guarantee_edges(self, edges: Sequence[GuaranteeEdge]) -> int:
        ...

    @abstractmethod
    def _activate_frontier(self, limit: int) -> List[int]:
        ...

    @abstractmethod
    def mark_fixed(self, ids: Iterable[int]) -> List[int]:
        """Fix the ``Active`` *ids* and every ``Free`` fragment their guarantees imply.

        A guaranteed fragment is fixed along with its ``Free`` dependencies,
        so the fixed set stays dependency-closed. Returns the ids that were
        fixed without being active. Raises :class:`GraphConsistencyError`
        for an id that is not ``Active``.
        """

    @abstractmethod
    def discard(self, ids: Iterable[int]) -> Set[int]:
        """Discard *ids* and everything that transitively depends on them.

        Raises :class:`GraphConsistencyError`, changing nothing, when that
        closure reaches a ``Fixed`` fragment.
        """

    @abstractmethod
    def excluded_by_deselection(self, deselected: Iterable[int]) -> Set[int]:
        """``Free`` fragments that depend, transitively, on *deselected*."""

    @abstractmethod
    def reset_all(self) -> None:
        """Return every fragment that is not discarded to ``Free``."""

    @abstractmethod
    def state_of(self, fragment_id: int) -> FragmentState:
        ...

    @abstractmethod
    def ids_in_state(self, state: FragmentState) -> List[int]:
        ...

    @abstractmethod
    def fragment(self, fragment_id: int) -> Fragment:
        ...

    @abstractmethod
    def dependency_edges(self) -> List[DependencyEdge]:
        ...

    @abstractmethod
    def guarantee_edges(self) -> List[GuaranteeEdge]:
        ...

    def close(self) -> None:
        pass

    # ------------------------------------------------------------------
    # Derived operations
    # ------------------------------------------------------------------

    def add_forest(self, fragments: Mapping[int, Fragment]) -> int:
        """Insert a whole fragment forest top-down; returns the number inserted."""
        with self._lock:
            roots = [f for f in fragments.values() if f.parent is None]
            inserted = len(self.add_fragments(sorted(roots, key=lambda f: f.id)))
            queue = deque(roots)
            while queue:
                current = queue.popleft()
                children = [fragments[c] for c in current.children]
                inserted += len(self.add_fragments(children, parent=current.id))
                queue.extend(children)
            return inserted

    def alive_ids(self) -> List[int]:
        with self._lock:
            return sorted(
                fid
                for state in (FragmentState.FREE, FragmentState.ACTIVE, FragmentState.FIXED)
                for fid in self.ids_in_state(state)
            )

    def alive_fragments(self) -> Dict[int, Fragment]:
        with self._lock:
            return {fid: self.fragment(fid) for fid in self.alive_ids()}

    def undecided_count(self) -> int:
        with self._lock:
            return len(self.ids_in_state(FragmentState.FREE)) + len(self.ids_in_state(FragmentState.ACTIVE))

    def compute_cross_reference_edges(self) -> int:
        """Derive semantic edges over all live fragments, across files."""
        with self._lock:
            edges = derive_dependency_edges(self.alive_fragments())
            added = self._insert_dependency_edges(edges)
            for edge_type, count in sorted(Counter(e.edge_type for e in edges).items()):
                logger.info("Added %d %s dependencies", count, edge_type.value)
            return added

    def compute_guarantees(self) -> int:
        with self._lock:
            edges = derive_guarantee_edges(self.alive_fragments())
            added = self._insert_guarantee_edges(edges)
            for guarantee_type, count in sorted(Counter(e.guarantee_type for e in edges).items()):
                logger.info("Added %d %s guarantees", count, guarantee_type.value)
            return added

    def mark_active_frontier(self, limit: int = 0) -> List[int]:
        """Activate ``Free`` fragments none of whose dependencies are ``Free``.

        At most *limit* fragments are activated (0 means no cap); the rest stay
        ``Free`` for a later call. Raises :class:`GraphConsistencyError` when
        undecided fragments remain but none can ever become active.
        """
        with self._lock:
            activated = self._activate_frontier(limit)
            if activated or self.ids_in_state(FragmentState.ACTIVE):
                return activated
            if self.ids_in_state(FragmentState.FREE):
                cycle = self.find_cycle()
                raise GraphConsistencyError(
                    "Dependency cycle blocks the frontier: " + " -> ".join(map(str, cycle)),
                    fragment_id=cycle[0] if cycle else None,
                    phase="mark_active_frontier",
                )
            return activated

    def prune_kinds(self, kinds: Iterable[str]) -> Set[int]:
        """Discard every live fragment whose kind is in *kinds*."""
        kinds = set(kinds)
        with self._lock:
            doomed = [fid for fid, fr in self.alive_fragments().items() if fr.kind in kinds]
            if not doomed:
                return set()
            removed = self.discard(doomed)
            logger.info("Pruned %d fragments of kind %s", len(removed), ", ".join(sorted(kinds)))
            return removed

    def find_cycle(self) -> List[int]:
        """A dependency cycle among undecided fragments, or an empty list."""
        with self._lock:
            undecided = set(self.ids_in_state(FragmentState.FREE)) | set(self.ids_in_state(FragmentState.ACTIVE))
            out: Dict[int, List[int]] = {}
            for edge in self.dependency_edges():
                if edge.src in undecided and edge.dst in undecided:
                    out.setdefault(edge.src, []).append(edge.dst)

        colour: Dict[int, int] = {}
        for start in sorted(undecided):
            if colour.get(start):
                continue
            path: List[int] = []
            stack: List[Tuple[int, int]] = [(start, 0)]
            while stack:
                node, index = stack.pop()
                if index == 0:
                    colour[node] = 1
                    path.append(node)
                targets = out.get(node, [])
                if index < len(targets):
                    stack.append((node, index + 1))
                    nxt = targets[index]
                    if colour.get(nxt) == 1:
                        return path[path.index(nxt):]
                    if not colour.get(nxt):
                        stack.append((nxt, 0))
                else:
                    colour[node] = 2
                    path.pop()
        return []


# ===================================================================
# In-memory store
# ===================================================================

class InMemoryGraphStore(DependencyGraph):
    """Adjacency maps keyed by fragment id."""

    def __init__(self) -> None:
        super().__init__()
        self._fragments: Dict[int, Fragment] = {}
        self._state: Dict[int, FragmentState] = {}
        self._depends_on: Dict[int, Set[int]] = {}
        self._dependents: Dict[int, Set[int]] = {}
        self._edges: Set[DependencyEdge] = set()
        self._guarantees: Dict[int, Set[int]] = {}
        self._guarantee_edges: Set[GuaranteeEdge] = set()

    def add_fragments(self, fragments: Sequence[Fragment], parent: Optional[int] = None) -> List[int]:
        with self._lock:
            if parent is not None and parent not in self._fragments:
                raise GraphConsistencyError("Unknown parent fragment", fragment_id=parent, phase="add_fragments")
            ids: List[int] = []
            for fragment in fragments:
                if fragment.id in self._fragments:
                    raise GraphConsistencyError("Duplicate fragment", fragment_id=fragment.id, phase="add_fragments")
                self._fragments[fragment.id] = fragment
                self._state[fragment.id] = FragmentState.FREE
                self._depends_on.setdefault(fragment.id, set())
                self._dependents.setdefault(fragment.id, set())
                if parent is not None:
                    self._add_edge(DependencyEdge(fragment.id, parent, EdgeType.STRUCTURAL))
                ids.append(fragment.id)
            return ids

    def _add_edge(self, edge: DependencyEdge) -> bool:
        if edge in self._edges:
            return False
        self._edges.add(edge)
        self._depends_on[edge.src].add(edge.dst)
        self._dependents[edge.dst].add(edge.src)
        return True

    def _insert_dependency_edges(self, edges: Sequence[DependencyEdge]) -> int:
        with self._lock:
            return sum(
                self._add_edge(e) for e in edges
                if e.src in self._fragments and e.dst in self._fragments
            )

    def _insert_guarantee_edges(self, edges: Sequence[GuaranteeEdge]) -> int:
        with self._lock:
            added = 0
            for edge in edges:
                if edge in self._guarantee_edges:
                    continue
                if edge.src not in self._fragments or edge.dst not in self._fragments:
                    continue
                self._guarantee_edges.add(edge)
                self._guarantees.setdefault(edge.src, set()).add(edge.dst)
                added += 1
            return added

    def _activate_frontier(self, limit: int) -> List[int]:
        free = FragmentState.FREE
        candidates = sorted(
            fid for fid, state in self._state.items()
            if state is free and not any(self._state[d] is free for d in self._depends_on[fid])
        )
        selected = candidates[:limit] if limit > 0 else candidates
        for fid in selected:
            self._state[fid] = FragmentState.ACTIVE
        return selected

    def mark_fixed(self, ids: Iterable[int]) -> List[int]:
        with self._lock:
            ids = sorted(set(ids))
            for fid in ids:
                if self._state.get(fid) is not FragmentState.ACTIVE:
                    raise GraphConsistencyError("Only active fragments can be fixed", fragment_id=fid, phase="mark_fixed")
            for fid in ids:
                self._state[fid] = FragmentState.FIXED

            # a guaranteed fragment is fixed together with its free dependencies
            implied: List[int] = []
            queue = deque(ids)
            while queue:
                fid = queue.popleft()
                for target in sorted(self._guarantees.get(fid, set()) | self._depends_on[fid]):
                    if self._state[target] is FragmentState.FREE:
                        self._state[target] = FragmentState.FIXED
                        implied.append(target)
                        queue.append(target)
            return sorted(implied)

    def discard(self, ids: Iterable[int]) -> Set[int]:
        with self._lock:
            removed: Set[int] = set()
            queue = deque(fid for fid in ids if self._state.get(fid) not in (None, FragmentState.DISCARDED))
            while queue:
                fid = queue.popleft()
                if fid in removed:
                    continue
                if self._state[fid] is FragmentState.FIXED:
                    raise GraphConsistencyError("Cannot discard a fixed fragment", fragment_id=fid, phase="discard")
                removed.add(fid)
                queue.extend(
                    d for d in self._dependents[fid]
                    if self._state[d] is not FragmentState.DISCARDED
                )
            for fid in removed:
                self._state[fid] = FragmentState.DISCARDED
            return removed

    def excluded_by_deselection(self, deselected: Iterable[int]) -> Set[int]:
        with self._lock:
            start = set(deselected)
            seen: Set[int] = set(start)
            queue = deque(start)
            while queue:
                for src in self._dependents.get(queue.popleft(), ()):
                    if src not in seen:
                        seen.add(src)
                        queue.append(src)
            return {fid for fid in seen - start if self._state[fid] is FragmentState.FREE}

    def reset_all(self) -> None:
        with self._lock:
            for fid, state in self._state.items():
                if state is not FragmentState.DISCARDED:
                    self._state[fid] = FragmentState.FREE

    def state_of(self, fragment_id: int) -> FragmentState:
        with self._lock:
            try:
                return self._state[fragment_id]
            except KeyError:
                raise GraphConsistencyError("Unknown fragment", fragment_id=fragment_id, phase="state_of") from None

    def ids_in_state(self, state: FragmentState) -> List[int]:
        with self._lock:
            return sorted(fid for fid, s in self._state.items() if s is state)

    def fragment(self, fragment_id: int) -> Fragment:
        with self._lock:
            try:
                return self._fragments[fragment_id]
            except KeyError:
                raise GraphConsistencyError("Unknown fragment", fragment_id=fragment_id, phase="fragment") from None

    def dependency_edges(self) -> List[DependencyEdge]:
        with self._lock:
            return sorted(self._edges, key=lambda e: (e.src, e.dst, e.edge_type.value))

    def guarantee_edges(self) -> List[GuaranteeEdge]:
        with self._lock:
            return sorted(self._guarantee_edges, key=lambda e: (e.src, e.dst, e.guarantee_type.value))


# ===================================================================
# SQLite store
# ===================================================================

class SQLiteGraphStore(DependencyGraph):
    """SQLite tables for fragments and edges, recursive CTEs for closures.

    *path* is a database file (typically ``graph.db`` in a run directory) or
    ``":memory:"``.
    """

    def __init__(self, path: Union[Path, str] = ":memory:") -> None:
        super().__init__()
        self.db_path = str(path)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._init_schema()

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def _init_schema(self) -> None:
        cur = self.conn.cursor()
        cur.execute("""
            CREATE TABLE IF NOT EXISTS fragments (
                id         INTEGER PRIMARY KEY,
                path       TEXT NOT NULL,
                kind       TEXT NOT NULL,
                level      INTEGER NOT NULL,
                parent     INTEGER,
                state      TEXT NOT NULL,
                children   TEXT NOT NULL,
                tokens     TEXT NOT NULL,
                attributes TEXT NOT NULL
            )
        """)
        cur.execute("""
            CREATE TABLE IF NOT EXISTS dependency_edges (
                src       INTEGER NOT NULL,
                dst       INTEGER NOT NULL,
                edge_type TEXT NOT NULL,
                UNIQUE (src, dst, edge_type)
            )
        """)
        cur.execute("""
            CREATE TABLE IF NOT EXISTS guarantee_edges (
                src            INTEGER NOT NULL,
                dst            INTEGER NOT NULL,
                guarantee_type TEXT NOT NULL,
                UNIQUE (src, dst, guarantee_type)
            )
        """)
        cur.execute("CREATE INDEX IF NOT EXISTS idx_fragments_state ON fragments(state)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_dep_src ON dependency_edges(src)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_dep_dst ON dependency_edges(dst)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_guarantee_src ON guarantee_edges(src)")
        # id lists passed into queries, kept out of the bound-variable limit
        cur.execute("CREATE TEMP TABLE IF NOT EXISTS selection (id INTEGER PRIMARY KEY)")
        self.conn.commit()

    def _select(self, ids: Iterable[int]) -> None:
        self.conn.execute("DELETE FROM selection")
        self.conn.executemany("INSERT OR IGNORE INTO selection (id) VALUES (?)", [(i,) for i in ids])

    # ------------------------------------------------------------------
    # Insert
    # ------------------------------------------------------------------

    def add_fragments(self, fragments: Sequence[Fragment], parent: Optional[int] = None) -> List[int]:
        with self._lock:
            if parent is not None and not self._exists(parent):
                raise GraphConsistencyError("Unknown parent fragment", fragment_id=parent, phase="add_fragments")
            rows = [
                (
                    f.id, f.path, f.kind, f.level, f.parent, FragmentState.FREE.value,
                    json.dumps(f.children),
                    json.dumps([[t.start, t.text, t.node] for t in f.tokens]),
                    json.dumps(f.attributes),
                )
                for f in fragments
            ]
            try:
                self.conn.executemany(
                    """
                    INSERT INTO fragments (
                        id, path, kind, level, parent, state, children, tokens, attributes
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    rows,
                )
            except sqlite3.IntegrityError as exc:
                self.conn.rollback()
                raise GraphConsistencyError(f"Duplicate fragment: {exc}", phase="add_fragments") from exc
            if parent is not None:
                self.conn.executemany(
                    "INSERT OR IGNORE INTO dependency_edges (src, dst, edge_type) VALUES (?, ?, ?)",
                    [(f.id, parent, EdgeType.STRUCTURAL.value) for f in fragments],
                )
            self.conn.commit()
            return [f.id for f in fragments]

    def _exists(self, fragment_id: int) -> bool:
        row = self.conn.execute("SELECT 1 FROM fragments WHERE id = ?", (fragment_id,)).fetchone()
        return row is not None

    def _insert_dependency_edges(self, edges: Sequence[DependencyEdge]) -> int:
        with self._lock:
            before = self.conn.total_changes
            self.conn.executemany(
                """
                INSERT OR IGNORE INTO dependency_edges (src, dst, edge_type)
                SELECT ?, ?, ?
                WHERE EXISTS (SELECT 1 FROM fragments WHERE id = ?)
                  AND EXISTS (SELECT 1 FROM fragments WHERE id = ?)
                """,
                [(e.src, e.dst, e.edge_type.value, e.src, e.dst) for e in edges],
            )
            self.conn.commit()
            return self.conn.total_changes - before

    def _insert_guarantee_edges(self, edges: Sequence[GuaranteeEdge]) -> int:
        with self._lock:
            before = self.conn.total_changes
            self.conn.executemany(
                """
                INSERT OR IGNORE INTO guarantee_edges (src, dst, guarantee_type)
                SELECT ?, ?, ?
                WHERE EXISTS (SELECT 1 FROM fragments WHERE id = ?)
                  AND EXISTS (SELECT 1 FROM fragments WHERE id = ?)
                """,
                [(e.src, e.dst, e.guarantee_type.value, e.src, e.dst) for e in edges],
            )
            self.conn.commit()
            return self.conn.total_changes - before

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    def _set_state(self, ids: Sequence[int], state: FragmentState) -> None:
        if ids:
            self._select(ids)
            self.conn.execute(
                "UPDATE fragments SET state = ? WHERE id IN (SELECT id FROM selection)",
                (state.value,),
            )

    def _activate_frontier(self, limit: int) -> List[int]:
        sql = """
            SELECT f.id FROM fragments f
            WHERE f.state = 'Free' AND NOT EXISTS (
                SELECT 1 FROM dependency_edges e
                JOIN fragments t ON t.id = e.dst
                WHERE e.src = f.id AND t.state = 'Free'
            )
            ORDER BY f.id
        """
        params: List[int] = []
        if limit > 0:
            sql += " LIMIT ?"
            params.append(limit)
        selected = [row[0] for row in self.conn.execute(sql, params).fetchall()]
        self._set_state(selected, FragmentState.ACTIVE)
        self.conn.commit()
        return selected

    def mark_fixed(self, ids: Iterable[int]) -> List[int]:
        with self._lock:
            ids = sorted(set(ids))
            if not ids:
                return []
            self._select(ids)
            rows = self.conn.execute(
                "SELECT id, state FROM fragments WHERE id IN (SELECT id FROM selection)",
            ).fetchall()
            states = {row["id"]: row["state"] for row in rows}
            for fid in ids:
                if states.get(fid) != FragmentState.ACTIVE.value:
                    self.conn.rollback()
                    raise GraphConsistencyError("Only active fragments can be fixed", fragment_id=fid, phase="mark_fixed")
            self._set_state(ids, FragmentState.FIXED)

            # a guaranteed fragment is fixed together with its free dependencies
            self._select(ids)
            implied = [
                row[0] for row in self.conn.execute(
                    """
                    WITH RECURSIVE
                    links(src, dst) AS (
                        SELECT src, dst FROM guarantee_edges
                        UNION
                        SELECT src, dst FROM dependency_edges
                    ),
                    implied(id) AS (
                        SELECT id FROM selection
                        UNION
                        SELECT l.dst FROM links l
                        JOIN implied i ON l.src = i.id
                        JOIN fragments f ON f.id = l.dst
                        WHERE f.state = 'Free'
                    )
                    SELECT f.id FROM implied i JOIN fragments f ON f.id = i.id
                    WHERE f.state = 'Free'
                    ORDER BY f.id
                    """,
                ).fetchall()
            ]
            self._set_state(implied, FragmentState.FIXED)
            self.conn.commit()
            return implied

    def discard(self, ids: Iterable[int]) -> Set[int]:
        with self._lock:
            ids = sorted(set(ids))
            if not ids:
                return set()
            self._select(ids)
            rows = self.conn.execute(
                """
                WITH RECURSIVE closure(id) AS (
                    SELECT id FROM fragments
                    WHERE id IN (SELECT id FROM selection) AND state != 'Discarded'
                    UNION
                    SELECT e.src FROM dependency_edges e
                    JOIN closure c ON e.dst = c.id
                    JOIN fragments f ON f.id = e.src
                    WHERE f.state != 'Discarded'
                )
                SELECT c.id, f.state FROM closure c JOIN fragments f ON f.id = c.id
                ORDER BY c.id
                """,
            ).fetchall()
            for row in rows:
                if row["state"] == FragmentState.FIXED.value:
                    self.conn.rollback()
                    raise GraphConsistencyError("Cannot discard a fixed fragment", fragment_id=row["id"], phase="discard")
            removed = {row["id"] for row in rows}
            self._set_state(sorted(removed), FragmentState.DISCARDED)
            self.conn.commit()
            return removed

    def excluded_by_deselection(self, deselected: Iterable[int]) -> Set[int]:
        with self._lock:
            ids = sorted(set(deselected))
            if not ids:
                return set()
            self._select(ids)
            rows = self.conn.execute(
                """
                WITH RECURSIVE reach(id) AS (
                    SELECT id FROM selection
                    UNION
                    SELECT e.src FROM dependency_edges e JOIN reach r ON e.dst = r.id
                )
                SELECT f.id FROM reach r JOIN fragments f ON f.id = r.id
                WHERE f.state = 'Free'
                """,
            ).fetchall()
            return {row[0] for row in rows} - set(ids)

    def reset_all(self) -> None:
        with self._lock:
            self.conn.execute("UPDATE fragments SET state = 'Free' WHERE state != 'Discarded'")
            self.conn.commit()

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def state_of(self, fragment_id: int) -> FragmentState:
        with self._lock:
            row = self.conn.execute("SELECT state FROM fragments WHERE id = ?", (fragment_id,)).fetchone()
        if row is None:
            raise GraphConsistencyError("Unknown fragment", fragment_id=fragment_id, phase="state_of")
        return FragmentState(row["state"])

    def ids_in_state(self, state: FragmentState) -> List[int]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT id FROM fragments WHERE state = ? ORDER BY id", (state.value,),
            ).fetchall()
        return [row[0] for row in rows]

    def fragment(self, fragment_id: int) -> Fragment:
        with self._lock:
            row = self.conn.execute("SELECT * FROM fragments WHERE id = ?", (fragment_id,)).fetchone()
        if row is None:
            raise GraphConsistencyError("Unknown fragment", fragment_id=fragment_id, phase="fragment")
        return Fragment(
            id=row["id"],
            path=row["path"],
            kind=row["kind"],
            tokens=[Token(start, text, node) for start, text, node in json.loads(row["tokens"])],
            level=row["level"],
            parent=row["parent"],
            children=json.loads(row["children"]),
            attributes=json.loads(row["attributes"]),
        )

    def dependency_edges(self) -> List[DependencyEdge]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT src, dst, edge_type FROM dependency_edges ORDER BY src, dst, edge_type",
            ).fetchall()
        return [DependencyEdge(r["src"], r["dst"], EdgeType(r["edge_type"])) for r in rows]

    def guarantee_edges(self) -> List[GuaranteeEdge]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT src, dst, guarantee_type FROM guarantee_edges ORDER BY src, dst, guarantee_type",
            ).fetchall()
        return [GuaranteeEdge(r["src"], r["dst"], GuaranteeType(r["guarantee_type"])) for r in rows]


def open_store(kind: str, run_dir: Optional[Path] = None) -> DependencyGraph:
    """Create the store named by *kind* (``memory`` or ``sqlite``)."""
    if kind == "memory":
        return InMemoryGraphStore()
    if kind == "sqlite":
        return SQLiteGraphStore(run_dir / "graph.db" if run_dir is not None else ":memory:")
    raise ValueError(f"Unknown store kind: {kind!r}")
