"""Graph-driven delta debugging over the dependency graph store."""

from __future__ import annotations

import logging
import threading
from typing import List, Optional, Set

from .ddmin import check_initial_conditions, ddmin
from .models import TestVerdict
from .oracle import Tester
from .storage import DependencyGraph

logger = logging.getLogger(__name__)


class GraphReducer:
    """Minimize the live fragments of *store* one frontier batch at a time.

    Each batch is the set of fragments activated by
    :meth:`DependencyGraph.mark_active_frontier`. Dropping a batch member
    also drops every ``Free`` fragment depending on it, so the oracle only
    sees dependency-closed configurations. Survivors are fixed, the rest are
    discarded, and the loop ends once no fragment is undecided.
    """

    def __init__(
        self,
        store: DependencyGraph,
        tester: Tester,
        total: int,
        limit: int = 0,
        passes: int = 1,
        workers: int = 1,
    ) -> None:
        self.store = store
        self.tester = tester
        self.total = total
        self.limit = limit
        self.passes = max(1, passes)
        self.workers = workers
        self.batches = 0

    def run(self) -> List[int]:
        check_initial_conditions(
            self.tester.test_ids([], self.total),
            self.tester.test_ids(self.store.alive_ids(), self.total),
        )
        for number in range(1, self.passes + 1):
            discarded = self._single_pass()
            logger.info("Pass %d discarded %d fragments", number, discarded)
            if not discarded or number == self.passes:
                break
            self.store.reset_all()
        return self.store.alive_ids()

    def _single_pass(self) -> int:
        discarded = 0
        while self.store.undecided_count() > 0:
            active = self.store.mark_active_frontier(self.limit)
            if not active:
                break
            self.batches += 1
            kept = self._reduce_batch(active)
            dropped = sorted(set(active) - set(kept))
            # dropped fragments go first so no guarantee can fix one of their dependents
            removed: Set[int] = self.store.discard(dropped) if dropped else set()
            implied = self.store.mark_fixed(kept) if kept else []
            discarded += len(removed)
            logger.info(
                "Batch %d: %d active, %d fixed, %d implied by guarantees, %d discarded",
                self.batches, len(active), len(kept), len(implied), len(removed),
            )
        return discarded

    def _reduce_batch(self, active: List[int]) -> List[int]:
        alive = set(self.store.alive_ids())
        batch = set(active)

        def test(selected: List[int], cancelled: Optional[threading.Event]) -> TestVerdict:
            deselected = batch - set(selected)
            excluded = deselected | self.store.excluded_by_deselection(deselected)
            return self.tester.test_ids(alive - excluded, self.total, cancelled)

        if test([], None) is TestVerdict.FAILED:
            return []
        return ddmin(active, test, workers=self.workers, check_preconditions=False)
