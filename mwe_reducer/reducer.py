"""Reducer orchestrating parsing, graph construction and minimization."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from .config import ReducerSettings
from .ddmin import ddmin
from .fragments import FragmentBuilder, render_files
from .gdd import GraphReducer
from .hdd import HierarchicalReducer
from .models import Configuration, Fragment
from .oracle import CommandOracle, TestOracle, Tester
from .parser import Parser, SourceParser
from .storage import DependencyGraph, RunManager, open_store

logger = logging.getLogger(__name__)

ALGORITHMS = ("ddmin", "hdd", "gdd")


@dataclass
class RunStatistics:
    files: int = 0
    fragments: int = 0
    pruned: int = 0
    result_size: int = 0
    oracle_calls: int = 0
    cache_hits: int = 0
    timeouts: int = 0
    compilation_errors: int = 0
    runtime_errors: int = 0
    failed_runs: int = 0
    ok_runs: int = 0
    elapsed: float = 0.0

    def summary(self) -> str:
        return (
            f"Oracle calls: {self.oracle_calls}, compilation errors: {self.compilation_errors}, "
            f"runtime errors: {self.runtime_errors}, failed runs: {self.failed_runs}, "
            f"ok runs: {self.ok_runs}"
        )


@dataclass
class ReductionResult:
    algorithm: str
    configuration: Configuration
    files: Dict[str, str]
    statistics: RunStatistics
    output_dir: Optional[Path] = None
    removed_files: List[str] = field(default_factory=list)

    @property
    def identifier(self) -> str:
        return self.configuration.identifier


class Reducer:
    """Run one reduction of the Python project at *project_root*.

    The failing behaviour is described by *command* (run from the project
    root) and *expected*, a string its output must contain. A custom
    *oracle* replaces the command oracle entirely.
    """

    def __init__(
        self,
        project_root: Path,
        command: str = "",
        expected: str = "",
        settings: Optional[ReducerSettings] = None,
        source: str = ".",
        exclude: Sequence[str] = (),
        oracle: Optional[TestOracle] = None,
        parser: Optional[Parser] = None,
        run_dir: Optional[Path] = None,
    ) -> None:
        self.project_root = Path(project_root).resolve()
        self.command = command
        self.expected = expected
        self.settings = settings or ReducerSettings()
        self.source = source
        self.exclude = tuple(exclude)
        self.oracle = oracle
        self.parser = parser
        self.run_dir = run_dir

        if self.settings.algorithm not in ALGORITHMS:
            raise ValueError(f"Unknown algorithm: {self.settings.algorithm!r}")

        self.fragments: Dict[int, Fragment] = {}
        self.total = 0
        self.store: Optional[DependencyGraph] = None
        self.statistics = RunStatistics()

    # ------------------------------------------------------------------
    # Preparation
    # ------------------------------------------------------------------

    def prepare(self) -> DependencyGraph:
        """Parse the sources, build fragments and fill the dependency graph."""
        parser = self.parser or SourceParser()
        source_root = self.project_root / self.source
        sources = parser.parse_project(source_root, self.exclude)
        builder = FragmentBuilder()
        builder.build_all(sources)
        self.fragments = builder.fragments
        self.total = builder.sequence.issued
        self.statistics.files = len(sources)
        self.statistics.fragments = len(self.fragments)
        logger.info("Extracted %d fragments from %d files", self.total, len(sources))

        if self.settings.store == "sqlite" and self.run_dir is None:
            self.run_dir = RunManager().create_run(self.project_root.name.replace(" ", "_"))
        store = open_store(self.settings.store, self.run_dir)
        store.add_forest(self.fragments)
        store.compute_cross_reference_edges()
        if self.settings.guarantees:
            store.compute_guarantees()
        if self.settings.prune_comments:
            self.statistics.pruned = len(store.prune_kinds({"comment"}))
        self.store = store
        return store

    def _make_oracle(self) -> TestOracle:
        if self.oracle is not None:
            return self.oracle
        if not self.command:
            raise ValueError("A command is required when no oracle is given")
        return CommandOracle(
            self.project_root,
            self.fragments,
            self.command,
            self.expected,
            source_dir=self.source,
            timeout=self.settings.timeout,
        )

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self, output: Optional[Path] = None) -> ReductionResult:
        start = time.monotonic()
        store = self.store or self.prepare()
        oracle = self._make_oracle()
        tester = Tester(oracle, timeout=self.settings.timeout, workers=self.settings.workers)
        try:
            kept = self._minimize(store, tester)
        finally:
            tester.close()
            store.close()

        configuration = Configuration.of(kept, self.total)
        files = render_files(self.fragments, sorted(kept))
        self._collect_statistics(tester, len(kept), time.monotonic() - start)
        logger.info("Found a (locally) minimal configuration: %s", configuration.identifier)
        logger.info(self.statistics.summary())

        result = ReductionResult(
            algorithm=self.settings.algorithm,
            configuration=configuration,
            files=files,
            statistics=self.statistics,
            removed_files=sorted({f.path for f in self.fragments.values()} - set(files)),
        )
        if output is not None:
            result.output_dir = self.recreate(configuration, output, oracle)
        return result

    def _minimize(self, store: DependencyGraph, tester: Tester) -> List[int]:
        algorithm = self.settings.algorithm
        workers = self.settings.workers
        if algorithm == "gdd":
            return GraphReducer(
                store, tester, self.total,
                limit=self.settings.fragment_limit,
                passes=self.settings.passes,
                workers=workers,
            ).run()
        alive = store.alive_fragments()
        if algorithm == "hdd":
            return HierarchicalReducer(alive, tester, self.total, workers=workers).run()
        return ddmin(
            sorted(alive),
            lambda subset, cancelled: tester.test_ids(subset, self.total, cancelled),
            workers=workers,
        )

    def _collect_statistics(self, tester: Tester, result_size: int, elapsed: float) -> None:
        counters = tester.counters
        stats = self.statistics
        stats.result_size = result_size
        stats.oracle_calls = counters.oracle_calls
        stats.cache_hits = counters.cache_hits
        stats.timeouts = counters.timeouts
        stats.compilation_errors = counters.compilation_errors
        stats.runtime_errors = counters.runtime_errors
        stats.failed_runs = counters.failed_runs
        stats.ok_runs = counters.ok_runs
        stats.elapsed = elapsed

    def recreate(self, configuration: Configuration, output: Path, oracle: Optional[TestOracle] = None) -> Path:
        """Write the program described by *configuration* into *output*."""
        output = Path(output)
        if isinstance(oracle, CommandOracle):
            oracle.write_configuration(output, configuration)
        else:
            source_root = output / self.source
            for rel_path, text in render_files(self.fragments, sorted(configuration.ids)).items():
                target = source_root / rel_path
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text(text, encoding="utf-8")
        logger.info("Recreated result in %s", output)
        return output
