# cypherscan/scanner/dispatcher.py
"""
Analyzer dispatcher: bounded, batch-at-a-time fan-out.

    runs = AnalyzerDispatcher(call_timeout=120).run(files, analyzers, concurrency_limit=4)

The analyzer list is cut into batches of `concurrency_limit`. A batch runs
concurrently on its own thread pool; the next batch starts only once every
analyzer in the current one has finished (or hit its deadline). This is a
fixed batch, not a sliding window.

An analyzer that raises, or runs past `call_timeout`, becomes a failed
AnalyzerRun with no findings. It never takes down its siblings.
"""

from __future__ import annotations

import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout, wait
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional, Sequence

from cypherscan.scanner.base import AnalyzerRun, BaseAnalyzer, FileArtifact, Finding, Location, Severity
from cypherscan.scanner.errors import AnalyzerError

logger = logging.getLogger(__name__)

DEFAULT_CALL_TIMEOUT = 120.0

ProgressCallback = Callable[[int, int], None]


def _batches(items: Sequence[BaseAnalyzer], size: int) -> List[Sequence[BaseAnalyzer]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


def _normalize(finding: Any, analyzer_name: str) -> Finding:
    """
    Coerce one raw finding into the shape grouping relies on.

    Severity is parsed leniently and confidence clamped to 0-100. Raises
    ValueError when the finding cannot be repaired.
    """
    if not isinstance(finding, Finding):
        raise ValueError(f"expected a Finding, got {type(finding).__name__}")
    if not isinstance(finding.location, Location):
        raise ValueError(f"finding {finding.finding_id!r} has no location")

    try:
        confidence = float(finding.confidence)
    except (TypeError, ValueError):
        raise ValueError(
            f"finding {finding.finding_id!r} has non-numeric confidence {finding.confidence!r}"
        )
    if math.isnan(confidence):
        raise ValueError(f"finding {finding.finding_id!r} has NaN confidence")

    return replace(
        finding,
        category=str(finding.category or ""),
        severity=Severity.parse(finding.severity),
        confidence=max(0.0, min(100.0, confidence)),
        analyzer=finding.analyzer or analyzer_name,
    )


class AnalyzerDispatcher:

    def __init__(self, call_timeout: Optional[float] = DEFAULT_CALL_TIMEOUT):
        self.call_timeout = call_timeout

    def run(
        self,
        files: Sequence[FileArtifact],
        analyzers: Sequence[BaseAnalyzer],
        concurrency_limit: int,
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[AnalyzerRun]:
        """
        Run every analyzer over `files`, `concurrency_limit` at a time.

        Returns one AnalyzerRun per analyzer, in the order given.
        `on_progress(completed, total)` is called after each batch.
        """
        if concurrency_limit < 1:
            raise ValueError("concurrency_limit must be >= 1")

        files = tuple(files)
        total = len(analyzers)
        runs: Dict[int, AnalyzerRun] = {}
        completed = 0

        for batch_no, batch in enumerate(_batches(list(analyzers), concurrency_limit), start=1):
            logger.debug(
                f"Dispatching batch {batch_no} ({', '.join(a.name for a in batch)})"
            )
            offset = completed
            for i, run in enumerate(self._run_batch(files, batch)):
                runs[offset + i] = run

            completed += len(batch)
            if on_progress:
                on_progress(completed, total)

        ordered = [runs[i] for i in range(total)]
        failed = [r.analyzer_id for r in ordered if not r.success]
        logger.info(
            f"Dispatch finished: {total - len(failed)}/{total} analyzers succeeded"
            + (f" (failed: {', '.join(failed)})" if failed else "")
        )
        return ordered

    def _run_batch(
        self,
        files: Sequence[FileArtifact],
        batch: Sequence[BaseAnalyzer],
    ) -> List[AnalyzerRun]:
        executor = ThreadPoolExecutor(max_workers=len(batch), thread_name_prefix="analyzer")
        started = time.monotonic()
        try:
            futures = [executor.submit(self._invoke, analyzer, files) for analyzer in batch]
            wait(futures, timeout=self.call_timeout)

            results: List[AnalyzerRun] = []
            for analyzer, future in zip(batch, futures):
                try:
                    results.append(future.result(timeout=0))
                except FutureTimeout:
                    future.cancel()
                    err = AnalyzerError(analyzer.name, f"timed out after {self.call_timeout}s")
                    logger.error(f"Analyzer '{analyzer.name}' failed: {err}")
                    results.append(AnalyzerRun(
                        analyzer_id=analyzer.name,
                        success=False,
                        error=str(err),
                        duration_seconds=round(time.monotonic() - started, 2),
                    ))
            return results
        finally:
            # A stuck analyzer keeps its thread; we just stop waiting for it.
            executor.shutdown(wait=False, cancel_futures=True)

    @staticmethod
    def _invoke(analyzer: BaseAnalyzer, files: Sequence[FileArtifact]) -> AnalyzerRun:
        """Run one analyzer with timing and error capture. Never raises."""
        start = time.monotonic()
        try:
            findings: List[Finding] = [
                _normalize(f, analyzer.name) for f in (analyzer.analyze(files) or [])
            ]
            run = AnalyzerRun(analyzer_id=analyzer.name, findings=findings)
        except Exception as e:
            logger.exception(f"Analyzer '{analyzer.name}' failed")
            err = AnalyzerError(analyzer.name, f"{type(e).__name__}: {e}")
            run = AnalyzerRun(analyzer_id=analyzer.name, success=False, error=str(err))
        finally:
            duration = round(time.monotonic() - start, 2)

        run.duration_seconds = duration
        logger.debug(
            f"Analyzer '{analyzer.name}' produced {len(run.findings)} findings in {duration}s"
        )
        return run
