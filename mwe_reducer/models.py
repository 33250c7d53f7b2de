"""Core data models shared by the parser, graph store and minimizers."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Optional


class FragmentState(str, Enum):
    FREE = "Free"
    ACTIVE = "Active"
    FIXED = "Fixed"
    DISCARDED = "Discarded"


class TestVerdict(str, Enum):
    OK = "OK"
    FAILED = "FAILED"
    ERROR_COMPILATION = "ERROR_COMPILATION"
    ERROR_RUNTIME = "ERROR_RUNTIME"

    __test__ = False  # keep pytest from collecting this enum


class EdgeType(str, Enum):
    STRUCTURAL = "STRUCTURAL"
    INSTANTIATION_TO_DECLARATION = "INSTANTIATION_TO_DECLARATION"
    IMPORT_TO_UNIT = "IMPORT_TO_UNIT"
    CLASS_TO_IMPORT = "CLASS_TO_IMPORT"
    CLASS_TO_UNIT_IN_PACKAGE = "CLASS_TO_UNIT_IN_PACKAGE"
    INVOCATION_TO_DECLARATION = "INVOCATION_TO_DECLARATION"


class GuaranteeType(str, Enum):
    REQUIRED_CHILD = "REQUIRED_CHILD"
    DECORATED_DEFINITION = "DECORATED_DEFINITION"


@dataclass(frozen=True)
class Token:
    start: int
    text: str
    node: int


@dataclass
class SyntaxNode:
    key: int
    kind: str
    parent: Optional[int]
    start: int
    attributes: Dict[str, str] = field(default_factory=dict)


@dataclass
class ParsedSource:
    path: str
    root: int
    nodes: Dict[int, SyntaxNode]
    tokens: List[Token]


@dataclass
class Fragment:
    id: int
    path: str
    kind: str
    tokens: List[Token] = field(default_factory=list)
    level: int = -1
    parent: Optional[int] = None
    children: List[int] = field(default_factory=list)
    attributes: Dict[str, str] = field(default_factory=dict)

    @property
    def start(self) -> int:
        return self.tokens[0].start if self.tokens else -1

    @property
    def code(self) -> str:
        return "".join(t.text for t in self.tokens)


@dataclass(frozen=True)
class DependencyEdge:
    src: int
    dst: int
    edge_type: EdgeType = EdgeType.STRUCTURAL


@dataclass(frozen=True)
class GuaranteeEdge:
    src: int
    dst: int
    guarantee_type: GuaranteeType = GuaranteeType.REQUIRED_CHILD


@dataclass(frozen=True)
class Configuration:
    """A subset of fragment ids out of ``total`` fragments of a run."""

    ids: FrozenSet[int]
    total: int

    def __post_init__(self) -> None:
        for fragment_id in self.ids:
            if not 0 <= fragment_id < self.total:
                raise ValueError(
                    f"fragment id {fragment_id} outside of [0, {self.total})"
                )

    @classmethod
    def of(cls, ids: Iterable[int], total: int) -> "Configuration":
        return cls(frozenset(ids), total)

    @classmethod
    def from_identifier(cls, identifier: str) -> "Configuration":
        if set(identifier) - {"0", "1"}:
            raise ValueError(f"not a configuration identifier: {identifier!r}")
        return cls(
            frozenset(i for i, bit in enumerate(identifier) if bit == "1"),
            len(identifier),
        )

    @property
    def identifier(self) -> str:
        bits = ["0"] * self.total
        for fragment_id in self.ids:
            bits[fragment_id] = "1"
        return "".join(bits)

    def __len__(self) -> int:
        return len(self.ids)

    def __contains__(self, fragment_id: object) -> bool:
        return fragment_id in self.ids
