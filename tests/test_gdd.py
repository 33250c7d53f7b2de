"""Tests for graph-driven delta debugging."""

import pytest
from conftest import link, make_fragment

from mwe_reducer.errors import InitialConditionsError
from mwe_reducer.gdd import GraphReducer
from mwe_reducer.models import DependencyEdge, EdgeType, FragmentState, GuaranteeEdge, GuaranteeType, TestVerdict
from mwe_reducer.oracle import CallableOracle, Tester


def recording_oracle(required):
    seen = []

    def evaluate(configuration):
        seen.append(set(configuration.ids))
        return TestVerdict.FAILED if required <= configuration.ids else TestVerdict.OK

    return CallableOracle(evaluate), seen


def _flat_with_invocation(store_factory, edge_type=EdgeType.INVOCATION_TO_DECLARATION):
    """Six fragments where 5 depends on 2."""
    store = store_factory([make_fragment(i) for i in range(6)])
    store._insert_dependency_edges([DependencyEdge(5, 2, edge_type)])
    return store


def dependency_closed(store, ids):
    return all(edge.dst in ids for edge in store.dependency_edges() if edge.src in ids)


class TestGraphReducer:
    """Tests for GraphReducer."""

    @pytest.mark.parametrize("edge_type", [EdgeType.STRUCTURAL, EdgeType.INVOCATION_TO_DECLARATION])
    def test_dependencies_are_respected(self, store_factory, edge_type):
        """Test no configuration holds 5 without the fragment it depends on."""
        store = _flat_with_invocation(store_factory, edge_type)
        oracle, seen = recording_oracle({1, 5})
        with Tester(oracle, timeout=None) as tester:
            result = GraphReducer(store, tester, total=6).run()

        assert result == [1, 2, 5]
        assert all(2 in ids for ids in seen if 5 in ids)
        assert store.undecided_count() == 0
        assert store.ids_in_state(FragmentState.DISCARDED) == [0, 3, 4]

    def test_result_fails_and_shrinks(self, store_factory):
        """Test the kept set still fails and never grows between batches."""
        store = store_factory(link({
            0: make_fragment(0),
            1: make_fragment(1, parent=0),
            2: make_fragment(2, parent=0),
            3: make_fragment(3, parent=1),
            4: make_fragment(4, parent=2),
            5: make_fragment(5),
        }).values())
        oracle, seen = recording_oracle({0, 2, 4})
        with Tester(oracle, timeout=None) as tester:
            reducer = GraphReducer(store, tester, total=6)
            result = reducer.run()

        assert result == [0, 2, 4]
        assert reducer.batches == 3
        failing = [ids for ids in seen if {0, 2, 4} <= ids]
        assert all(len(b) <= len(a) for a, b in zip(failing, failing[1:]))

    def test_failing_empty_selection_drops_batch(self, store_factory):
        """Test a batch is discarded whole when nothing of it is needed."""
        store = store_factory(link({
            0: make_fragment(0),
            1: make_fragment(1, parent=0),
            2: make_fragment(2, parent=0),
        }).values())
        oracle, _ = recording_oracle({0})
        with Tester(oracle, timeout=None) as tester:
            reducer = GraphReducer(store, tester, total=3)
            assert reducer.run() == [0]
        assert reducer.batches == 2

    def test_fragment_limit(self, store_factory):
        store = _flat_with_invocation(store_factory)
        oracle, _ = recording_oracle({1, 5})
        with Tester(oracle, timeout=None) as tester:
            reducer = GraphReducer(store, tester, total=6, limit=2)
            assert reducer.run() == [1, 2, 5]
        assert reducer.batches >= 3

    def test_guarantees_skip_oracle_calls(self, store_factory):
        """Test a guaranteed fragment is fixed without being tested."""
        store = store_factory(link({
            0: make_fragment(0),
            1: make_fragment(1, parent=0),
            2: make_fragment(2, parent=1),
        }).values())
        store._insert_guarantee_edges([GuaranteeEdge(1, 2, GuaranteeType.REQUIRED_CHILD)])
        oracle, seen = recording_oracle({0, 1})
        with Tester(oracle, timeout=None) as tester:
            reducer = GraphReducer(store, tester, total=3)
            assert reducer.run() == [0, 1, 2]
        assert reducer.batches == 2
        assert {0, 1} not in seen

    def test_guaranteed_fragment_brings_its_dependencies(self, store_factory):
        """Test a guarantee never lets a fragment in without what it depends on."""
        store = store_factory(link({
            0: make_fragment(0),
            1: make_fragment(1, parent=0),
            2: make_fragment(2, parent=1),
            3: make_fragment(3, parent=0),
            4: make_fragment(4, parent=3),
        }).values())
        store._insert_dependency_edges([DependencyEdge(2, 4, EdgeType.INVOCATION_TO_DECLARATION)])
        store._insert_guarantee_edges([GuaranteeEdge(1, 2, GuaranteeType.REQUIRED_CHILD)])
        oracle, seen = recording_oracle({0, 1, 2})
        with Tester(oracle, timeout=None) as tester:
            result = GraphReducer(store, tester, total=5).run()

        assert result == [0, 1, 2, 3, 4]
        assert {0, 1, 2} <= set(result)
        assert all(dependency_closed(store, ids) for ids in seen)
        assert store.ids_in_state(FragmentState.FIXED) == [0, 1, 2, 3, 4]
        assert store.ids_in_state(FragmentState.DISCARDED) == []

    def test_multiple_passes(self, store_factory):
        store = _flat_with_invocation(store_factory)
        oracle, _ = recording_oracle({1, 5})
        with Tester(oracle, timeout=None) as tester:
            reducer = GraphReducer(store, tester, total=6, passes=3)
            assert reducer.run() == [1, 2, 5]
        assert store.undecided_count() == 0

    def test_parallel_workers(self, store_factory):
        store = _flat_with_invocation(store_factory)
        oracle, _ = recording_oracle({1, 5})
        with Tester(oracle, timeout=None, workers=4) as tester:
            assert GraphReducer(store, tester, total=6, workers=4).run() == [1, 2, 5]

    def test_initial_conditions(self, store_factory):
        store = _flat_with_invocation(store_factory)
        oracle, seen = recording_oracle(set())
        with Tester(oracle, timeout=None) as tester:
            with pytest.raises(InitialConditionsError):
                GraphReducer(store, tester, total=6).run()
        assert len(seen) == 2
