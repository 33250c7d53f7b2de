"""Hierarchical delta debugging: ddmin applied level by level."""

from __future__ import annotations

import logging
import threading
from typing import List, Mapping, Optional, Set

from .ddmin import check_initial_conditions, ddmin
from .fragments import fragments_by_level, subtree_ids
from .models import Fragment, TestVerdict
from .oracle import Tester

logger = logging.getLogger(__name__)


class HierarchicalReducer:
    """Minimize a fragment forest from the coarsest level to the finest.

    At each level the candidates are the fragments whose parent survived the
    previous level (the file roots at level 0). A candidate that is left out
    takes its whole subtree with it; survivors become mandatory for the finer
    levels.
    """

    def __init__(
        self,
        fragments: Mapping[int, Fragment],
        tester: Tester,
        total: int,
        workers: int = 1,
    ) -> None:
        self.fragments = fragments
        self.tester = tester
        self.total = total
        self.workers = workers

    def run(self) -> List[int]:
        check_initial_conditions(
            self.tester.test_ids([], self.total),
            self.tester.test_ids(self.fragments.keys(), self.total),
        )

        fixed: Set[int] = set()
        for level, ids in sorted(fragments_by_level(self.fragments).items()):
            candidates = [
                fid for fid in ids
                if self.fragments[fid].parent is None or self.fragments[fid].parent in fixed
            ]
            if not candidates:
                break
            kept = self._reduce_level(candidates, fixed)
            fixed.update(kept)
            logger.info("Level %d: kept %d of %d fragments", level, len(kept), len(candidates))
        return sorted(fixed)

    def _reduce_level(self, candidates: List[int], fixed: Set[int]) -> List[int]:
        def test(selected: List[int], cancelled: Optional[threading.Event]) -> TestVerdict:
            included = fixed | subtree_ids(self.fragments, selected)
            return self.tester.test_ids(included, self.total, cancelled)

        if test([], None) is TestVerdict.FAILED:
            return []
        return ddmin(candidates, test, workers=self.workers, check_preconditions=False)
