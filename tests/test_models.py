"""Tests for configurations, identifiers and the exception taxonomy."""

import pytest

from mwe_reducer.errors import ExtractionError, GraphConsistencyError, MWEReducerError
from mwe_reducer.models import Configuration, Fragment, Token


class TestConfiguration:
    """Tests for Configuration and its canonical identifier."""

    def test_identifier_marks_included_ids(self):
        """Test one character per fragment id, 1 when included."""
        assert Configuration.of([1, 3], 4).identifier == "0101"
        assert Configuration.of([], 3).identifier == "000"
        assert Configuration.of(range(5), 5).identifier == "11111"

    @pytest.mark.parametrize("ids,total", [
        ([], 0),
        ([0], 1),
        ([2, 5, 7], 8),
        ([0, 1, 2, 3, 4, 5, 6, 7, 8, 9], 12),
    ])
    def test_identifier_round_trip(self, ids, total):
        """Test decoding an identifier reproduces the exact id set."""
        configuration = Configuration.of(ids, total)
        decoded = Configuration.from_identifier(configuration.identifier)
        assert decoded == configuration
        assert decoded.ids == frozenset(ids)
        assert decoded.total == total

    def test_rejects_ids_out_of_range(self):
        """Test ids outside [0, total) are rejected."""
        with pytest.raises(ValueError):
            Configuration.of([4], 4)
        with pytest.raises(ValueError):
            Configuration.of([-1], 4)

    def test_rejects_malformed_identifier(self):
        """Test identifiers other than 0/1 strings are rejected."""
        with pytest.raises(ValueError):
            Configuration.from_identifier("01x1")

    def test_membership_and_size(self):
        configuration = Configuration.of([0, 2], 3)
        assert 2 in configuration
        assert 1 not in configuration
        assert len(configuration) == 2


class TestFragment:
    """Tests for Fragment helpers."""

    def test_code_and_start(self):
        """Test code concatenates tokens and start is the first offset."""
        fragment = Fragment(
            id=1, path="a.py", kind="call",
            tokens=[Token(4, "(", 1), Token(7, ")", 1)],
        )
        assert fragment.code == "()"
        assert fragment.start == 4

    def test_empty_fragment_start(self):
        assert Fragment(id=0, path="a.py", kind="module").start == -1


class TestErrors:
    """Tests for error context."""

    def test_extraction_error_carries_context(self):
        exc = ExtractionError("Found unassignable node", path="pkg/mod.py", node=12)
        assert isinstance(exc, MWEReducerError)
        assert exc.path == "pkg/mod.py"
        assert exc.node == 12
        assert "file=pkg/mod.py" in str(exc)
        assert "node=12" in str(exc)

    def test_graph_error_carries_phase(self):
        exc = GraphConsistencyError("cycle", fragment_id=3, phase="mark_active_frontier")
        assert exc.fragment_id == 3
        assert "phase=mark_active_frontier" in str(exc)
