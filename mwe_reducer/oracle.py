"""Oracle adapters, the verdict cache and the timeout-bounded tester."""

from __future__ import annotations

import concurrent.futures
import logging
import shlex
import shutil
import subprocess
import tempfile
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, Optional, Sequence, Set, Union

from .config import DEFAULT_TIMEOUT, SKIP_DIRS
from .errors import OracleTimeout
from .fragments import render_files
from .models import Configuration, Fragment, TestVerdict

logger = logging.getLogger(__name__)


class TestOracle(ABC):
    """Classifies the program described by a configuration."""

    __test__ = False

    @abstractmethod
    def evaluate(self, configuration: Configuration) -> TestVerdict:
        ...


class CallableOracle(TestOracle):
    """Wraps a plain ``configuration -> verdict`` function."""

    def __init__(self, func: Callable[[Configuration], TestVerdict]) -> None:
        self.func = func

    def evaluate(self, configuration: Configuration) -> TestVerdict:
        return self.func(configuration)


class CommandOracle(TestOracle):
    """Materializes a configuration into a copy of the project and runs a command.

    The project is copied to a fresh temporary directory per call. Reducible
    files are rewritten from the included fragments; a reducible file with no
    included fragment is removed. Every rewritten file must compile, then
    *command* runs from the copy's root:

    - exit status 0 -> ``OK``
    - *expected* found in stdout or stderr -> ``FAILED``
    - anything else -> ``ERROR_RUNTIME``
    """

    def __init__(
        self,
        project_root: Path,
        fragments: Mapping[int, Fragment],
        command: Union[str, Sequence[str]],
        expected: str,
        source_dir: str = ".",
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.project_root = Path(project_root)
        self.fragments = fragments
        self.command = shlex.split(command) if isinstance(command, str) else list(command)
        self.expected = expected
        self.source_dir = source_dir
        self.timeout = timeout
        self.reducible_paths = sorted({f.path for f in fragments.values()})

    def render(self, configuration: Configuration) -> Dict[str, str]:
        return render_files(self.fragments, sorted(configuration.ids))

    def write_configuration(self, target: Path, configuration: Configuration) -> Dict[str, str]:
        """Copy the project to *target* and apply *configuration* to it."""
        shutil.copytree(
            self.project_root, target,
            ignore=shutil.ignore_patterns(*SKIP_DIRS),
            dirs_exist_ok=True,
        )
        files = self.render(configuration)
        source_root = target / self.source_dir
        for rel_path in self.reducible_paths:
            file_path = source_root / rel_path
            if rel_path in files:
                file_path.parent.mkdir(parents=True, exist_ok=True)
                file_path.write_text(files[rel_path], encoding="utf-8")
            elif file_path.exists():
                file_path.unlink()
        return files

    def evaluate(self, configuration: Configuration) -> TestVerdict:
        files = self.render(configuration)
        for rel_path, text in files.items():
            try:
                compile(text, rel_path, "exec")
            except (SyntaxError, ValueError) as exc:
                logger.debug("Compilation failed for %s: %s", rel_path, exc)
                return TestVerdict.ERROR_COMPILATION

        with tempfile.TemporaryDirectory(prefix="mwe-") as tmp:
            workdir = Path(tmp) / "project"
            self.write_configuration(workdir, configuration)
            try:
                result = subprocess.run(
                    self.command,
                    cwd=workdir,
                    capture_output=True,
                    text=True,
                    timeout=self.timeout,
                )
            except subprocess.TimeoutExpired as exc:
                raise OracleTimeout(f"Command timed out after {self.timeout}s") from exc
            except OSError as exc:
                logger.warning("Could not run %s: %s", self.command, exc)
                return TestVerdict.ERROR_RUNTIME

        if result.returncode == 0:
            return TestVerdict.OK
        if self.expected and (self.expected in result.stdout or self.expected in result.stderr):
            return TestVerdict.FAILED
        return TestVerdict.ERROR_RUNTIME


class ResultCache:
    """Configuration identifier -> verdict, shared by all worker threads."""

    def __init__(self) -> None:
        self._results: Dict[str, TestVerdict] = {}
        self._lock = threading.Lock()

    def get(self, identifier: str) -> Optional[TestVerdict]:
        with self._lock:
            return self._results.get(identifier)

    def put(self, identifier: str, verdict: TestVerdict) -> None:
        with self._lock:
            self._results.setdefault(identifier, verdict)

    def __contains__(self, identifier: object) -> bool:
        with self._lock:
            return identifier in self._results

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)

    def items(self):
        with self._lock:
            return list(self._results.items())


@dataclass
class OracleCounters:
    oracle_calls: int = 0
    cache_hits: int = 0
    timeouts: int = 0
    discarded: int = 0
    compilation_errors: int = 0
    runtime_errors: int = 0
    failed_runs: int = 0
    ok_runs: int = 0

    def record(self, verdict: TestVerdict) -> None:
        if verdict is TestVerdict.OK:
            self.ok_runs += 1
        elif verdict is TestVerdict.FAILED:
            self.failed_runs += 1
        elif verdict is TestVerdict.ERROR_COMPILATION:
            self.compilation_errors += 1
        else:
            self.runtime_errors += 1


class Tester:
    """Cached, timeout-bounded access to an oracle.

    Oracle calls run on a bounded thread pool. A call that exceeds *timeout*
    (or raises :class:`OracleTimeout`) yields ``ERROR_RUNTIME``; its
    configuration is remembered and never retried, and the verdict is never
    cached. When *cancelled* is set by the time a result arrives the result is
    dropped without touching the cache.
    """

    __test__ = False

    def __init__(
        self,
        oracle: TestOracle,
        timeout: Optional[float] = DEFAULT_TIMEOUT,
        workers: int = 1,
        cache: Optional[ResultCache] = None,
    ) -> None:
        self.oracle = oracle
        self.timeout = timeout if timeout and timeout > 0 else None
        self.cache = cache if cache is not None else ResultCache()
        self.counters = OracleCounters()
        self._timed_out: Set[str] = set()
        self._lock = threading.Lock()
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=max(1, workers), thread_name_prefix="mwe-oracle",
        )

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> "Tester":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def test(
        self,
        configuration: Configuration,
        cancelled: Optional[threading.Event] = None,
    ) -> TestVerdict:
        identifier = configuration.identifier
        cached = self.cache.get(identifier)
        if cached is not None:
            with self._lock:
                self.counters.cache_hits += 1
            return cached
        with self._lock:
            if identifier in self._timed_out:
                return TestVerdict.ERROR_RUNTIME
        if cancelled is not None and cancelled.is_set():
            return TestVerdict.ERROR_RUNTIME

        with self._lock:
            self.counters.oracle_calls += 1
        started = threading.Event()

        def run() -> TestVerdict:
            started.set()
            return self.oracle.evaluate(configuration)

        future = self._executor.submit(run)
        # the time budget covers the call itself, not the wait for a free worker
        while not started.wait(0.1) and not future.done():
            pass
        try:
            verdict = future.result(timeout=self.timeout)
        except (concurrent.futures.TimeoutError, OracleTimeout):
            future.cancel()
            with self._lock:
                self._timed_out.add(identifier)
                self.counters.timeouts += 1
                self.counters.record(TestVerdict.ERROR_RUNTIME)
            logger.warning("%s -> %s (timed out)", identifier, TestVerdict.ERROR_RUNTIME.value)
            return TestVerdict.ERROR_RUNTIME

        if cancelled is not None and cancelled.is_set():
            with self._lock:
                self.counters.discarded += 1
            logger.debug("%s -> %s (discarded, round already decided)", identifier, verdict.value)
            return verdict

        self.cache.put(identifier, verdict)
        with self._lock:
            self.counters.record(verdict)
        logger.info("%s -> %s", identifier, verdict.value)
        return verdict

    def test_ids(
        self,
        ids: Iterable[int],
        total: int,
        cancelled: Optional[threading.Event] = None,
    ) -> TestVerdict:
        return self.test(Configuration.of(ids, total), cancelled)

    def statistics(self) -> str:
        with self._lock:
            c = self.counters
            return (
                f"Oracle calls: {c.oracle_calls}, compilation errors: {c.compilation_errors}, "
                f"runtime errors: {c.runtime_errors}, failed runs: {c.failed_runs}, ok runs: {c.ok_runs}"
            )
