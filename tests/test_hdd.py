"""Tests for hierarchical delta debugging."""

import pytest
from conftest import link, make_fragment

from mwe_reducer.errors import InitialConditionsError
from mwe_reducer.hdd import HierarchicalReducer
from mwe_reducer.models import TestVerdict
from mwe_reducer.oracle import CallableOracle, Tester


def _forest():
    """0 -> {1, 2}, 1 -> {3, 4}, 2 -> {5}; 6 is a second file root."""
    return link({
        0: make_fragment(0),
        1: make_fragment(1, parent=0),
        2: make_fragment(2, parent=0),
        3: make_fragment(3, parent=1),
        4: make_fragment(4, parent=1),
        5: make_fragment(5, parent=2),
        6: make_fragment(6, path="other.py"),
    })


def recording_oracle(required):
    seen = []

    def evaluate(configuration):
        seen.append(set(configuration.ids))
        return TestVerdict.FAILED if required <= configuration.ids else TestVerdict.OK

    return CallableOracle(evaluate), seen


class TestHierarchicalReducer:
    """Tests for HierarchicalReducer."""

    def test_reduces_level_by_level(self):
        fragments = _forest()
        oracle, _ = recording_oracle({0, 1, 4})
        with Tester(oracle, timeout=None) as tester:
            result = HierarchicalReducer(fragments, tester, total=7).run()
        assert result == [0, 1, 4]

    def test_configurations_keep_parents(self):
        """Test the oracle never sees a fragment without its parent."""
        fragments = _forest()
        oracle, seen = recording_oracle({0, 2, 5})
        with Tester(oracle, timeout=None) as tester:
            result = HierarchicalReducer(fragments, tester, total=7).run()

        assert result == [0, 2, 5]
        for ids in seen:
            for fid in ids:
                parent = fragments[fid].parent
                assert parent is None or parent in ids

    def test_drops_unneeded_file(self):
        fragments = _forest()
        oracle, _ = recording_oracle({6})
        with Tester(oracle, timeout=None) as tester:
            assert HierarchicalReducer(fragments, tester, total=7).run() == [6]

    def test_parallel_workers(self):
        fragments = _forest()
        oracle, _ = recording_oracle({0, 1, 3})
        with Tester(oracle, timeout=None, workers=3) as tester:
            result = HierarchicalReducer(fragments, tester, total=7, workers=3).run()
        assert result == [0, 1, 3]

    def test_initial_conditions(self):
        oracle = CallableOracle(lambda configuration: TestVerdict.OK)
        with Tester(oracle, timeout=None) as tester:
            with pytest.raises(InitialConditionsError):
                HierarchicalReducer(_forest(), tester, total=7).run()
