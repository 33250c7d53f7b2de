"""Exception taxonomy for fragment extraction, graph handling and oracle calls."""

from __future__ import annotations

from typing import Optional


class MWEReducerError(Exception):
    """Base class for every error raised by the reducer."""


class ExtractionError(MWEReducerError):
    """A syntax node could not be assigned to any fragment."""

    def __init__(self, message: str, path: str = "", node: Optional[int] = None) -> None:
        details = []
        if path:
            details.append(f"file={path}")
        if node is not None:
            details.append(f"node={node}")
        suffix = f" ({', '.join(details)})" if details else ""
        super().__init__(f"{message}{suffix}")
        self.path = path
        self.node = node


class GraphConsistencyError(MWEReducerError):
    """The dependency graph holds a cyclic or unassignable relation."""

    def __init__(self, message: str, fragment_id: Optional[int] = None, phase: str = "") -> None:
        details = []
        if fragment_id is not None:
            details.append(f"fragment={fragment_id}")
        if phase:
            details.append(f"phase={phase}")
        suffix = f" ({', '.join(details)})" if details else ""
        super().__init__(f"{message}{suffix}")
        self.fragment_id = fragment_id
        self.phase = phase


class OracleTimeout(MWEReducerError):
    """An oracle call exceeded its time budget."""


class InitialConditionsError(MWEReducerError):
    """The empty configuration fails already or the full one does not fail."""
