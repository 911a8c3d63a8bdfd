# cypherscan/scanner/orchestrator.py
"""
Scan Orchestrator — owns the scan state machine and sequences the pipeline.

    PENDING → SCANNING → VOTING → COMPLETED
        └──────────┴─────────┴──→ FAILED

Pipeline for one scan (runs on its own daemon thread):

    1. Fetch source files through the cache-backed ArtifactFetcher   5 → 15
    2. Run analyzers in bounded batches via AnalyzerDispatcher       15 → 85
    3. Group raw findings by (category, severity)                    88
    4. Voting: reporters vote CONFIRMED, everyone else reviews       90 → 99
    5. Finalize: confirmed groups become the report                  100

Usage:
    orchestrator = ScanOrchestrator(fetcher, analyzers)
    scan_id = orchestrator.submit(request)     # returns immediately
    snapshot = orchestrator.get_status(scan_id)

Callers only ever see `Scan.snapshot()` copies. A scan always ends in
COMPLETED or FAILED; fetch failures and orchestration faults fail it,
analyzer failures never do.
"""

from __future__ import annotations

import logging
import math
import secrets
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Set

from cypherscan.scanner.base import (
    AnalyzerRun,
    BaseAnalyzer,
    FileArtifact,
    Finding,
    Scan,
    ScanOptions,
    ScanRequest,
    ScanStatus,
    Vote,
    VoteDecision,
    now_utc,
)
from cypherscan.scanner.consensus import (
    DEFAULT_QUORUM_THRESHOLD,
    DEFAULT_VOTING_TIMEOUT,
    ConsensusEngine,
    ConsensusResult,
)
from cypherscan.scanner.dispatcher import AnalyzerDispatcher
from cypherscan.scanner.errors import NotFoundError, UpstreamError, ValidationError
from cypherscan.scanner.fetcher import ArtifactFetcher
from cypherscan.scanner.grouping import FindingGroup, FindingGrouper

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY_LIMIT = 4

# extra wait past the voting timeout before unsettled groups are forced
_VOTING_GRACE_SECONDS = 30.0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def new_scan_id() -> str:
    """scan_<epoch ms>_<random hex>"""
    return f"scan_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


def _clamp_confidence(value: float) -> float:
    return max(0.0, min(100.0, float(value)))


def _run_summary(run: AnalyzerRun) -> Dict[str, object]:
    return {
        "success": run.success,
        "findingsProduced": len(run.findings),
        "durationSeconds": run.duration_seconds,
        "error": run.error,
    }


# ---------------------------------------------------------------------------
# Voting round
# ---------------------------------------------------------------------------

class _VotingRound:
    """
    Settlement bookkeeping for one scan's voting phase.

    A group settles exactly once: when the engine reports consensus, when
    every expected response is in, or when its timer fires. Settling closes
    the group in the engine, which freezes its vote set.
    """

    def __init__(self, scan: Scan, groups: Sequence[FindingGroup]):
        self.scan = scan
        self.groups: Dict[str, FindingGroup] = {g.key: g for g in groups}
        self.engine: Optional[ConsensusEngine] = None
        self.verdicts: Dict[str, ConsensusResult] = {}
        self.votes: Dict[str, List[Vote]] = {}
        self.timed_out: Set[str] = set()
        self._pending: Dict[str, int] = {}
        self._cond = threading.Condition()

    def is_settled(self, key: str) -> bool:
        with self._cond:
            return key in self.verdicts

    def settle(self, key: str, reason: str) -> None:
        with self._cond:
            if key in self.verdicts:
                return
            result = self.engine.close(key)
            self.verdicts[key] = result
            self.votes[key] = self.engine.get_votes(key)
            if reason == "timeout":
                self.timed_out.add(key)

            logger.info(
                f"Scan {self.scan.scan_id}: group {key} settled by {reason} → "
                f"{result.decision.value} ({result.total_votes} votes, {result.confidence_score}%)"
            )
            self.scan.advance(90 + (9 * len(self.verdicts)) // len(self.groups))
            self._cond.notify_all()

    def on_consensus(self, key: str, result: ConsensusResult) -> None:
        self.settle(key, "consensus")

    def on_timeout(self, key: str) -> None:
        self.settle(key, "timeout")

    def expect(self, key: str, responses: int) -> None:
        with self._cond:
            self._pending[key] = responses
        if responses == 0:
            self.settle(key, "all votes in")

    def response_received(self, key: str) -> None:
        with self._cond:
            self._pending[key] -= 1
            remaining = self._pending[key]
        if remaining == 0:
            self.settle(key, "all votes in")

    def wait(self, timeout: float) -> bool:
        with self._cond:
            return self._cond.wait_for(lambda: len(self.verdicts) == len(self.groups), timeout=timeout)

    def unsettled(self) -> List[str]:
        with self._cond:
            return [k for k in self.groups if k not in self.verdicts]


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class ScanOrchestrator:
    """
    Coordinates scans from submission to final report.

    Holds the in-memory scan table. One instance is shared by the whole
    process (see cypherscan.extensions); scans run concurrently and share
    only the fetcher's cache.
    """

    def __init__(
        self,
        fetcher: ArtifactFetcher,
        analyzers: Iterable[BaseAnalyzer],
        dispatcher: Optional[AnalyzerDispatcher] = None,
        concurrency_limit: int = DEFAULT_CONCURRENCY_LIMIT,
        quorum_threshold: float = DEFAULT_QUORUM_THRESHOLD,
        minimum_votes: Optional[int] = None,
        voting_timeout: float = DEFAULT_VOTING_TIMEOUT,
        weighting_enabled: bool = False,
        analyzer_weights: Optional[Dict[str, float]] = None,
    ):
        self.fetcher = fetcher
        self.dispatcher = dispatcher or AnalyzerDispatcher()
        self.concurrency_limit = concurrency_limit
        self.quorum_threshold = quorum_threshold
        self.minimum_votes = minimum_votes
        self.voting_timeout = voting_timeout
        self.weighting_enabled = weighting_enabled
        self.analyzer_weights = dict(analyzer_weights or {})

        self.analyzers: Dict[str, BaseAnalyzer] = {}
        for analyzer in analyzers:
            if analyzer.name in self.analyzers:
                raise ValueError(f"Duplicate analyzer name: {analyzer.name}")
            self.analyzers[analyzer.name] = analyzer

        self._scans: Dict[str, Scan] = {}
        self._done: Dict[str, threading.Event] = {}
        self._lock = threading.RLock()

    # -------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------

    def submit(self, request: ScanRequest) -> str:
        """
        Validate the request, register a PENDING scan and start it in the
        background. Raises ValidationError (and creates nothing) if the
        request is malformed.
        """
        request.validate()
        self._select_analyzers(request.options)

        scan_id = new_scan_id()
        scan = Scan(scan_id=scan_id, request=request)
        with self._lock:
            self._scans[scan_id] = scan
            self._done[scan_id] = threading.Event()

        logger.info(f"Scan {scan_id} submitted for {request.target_label}")

        thread = threading.Thread(
            target=self._run_in_background,
            args=(scan_id,),
            name=f"scan-{scan_id}",
            daemon=True,
        )
        thread.start()
        return scan_id

    def get_status(self, scan_id: str) -> Optional[Scan]:
        """Snapshot of the scan, or None if the id is unknown (or evicted)."""
        with self._lock:
            scan = self._scans.get(scan_id)
        return scan.snapshot() if scan else None

    def list_scans(self) -> List[Scan]:
        """Snapshots of every retained scan, newest first."""
        with self._lock:
            scans = list(self._scans.values())
        snapshots = [s.snapshot() for s in scans]
        snapshots.sort(key=lambda s: s.created_at, reverse=True)
        return snapshots

    def wait(self, scan_id: str, timeout: Optional[float] = None) -> Optional[Scan]:
        """Block until the scan is terminal (or `timeout` passes); return its snapshot."""
        with self._lock:
            done = self._done.get(scan_id)
        if done is None:
            return None
        done.wait(timeout)
        return self.get_status(scan_id)

    def evict_finished(self, older_than: float) -> int:
        """Drop terminal scans that completed more than `older_than` seconds ago."""
        cutoff = now_utc() - timedelta(seconds=older_than)
        with self._lock:
            stale = [
                scan_id for scan_id, scan in self._scans.items()
                if scan.status.is_terminal and scan.completed_at and scan.completed_at < cutoff
            ]
            for scan_id in stale:
                del self._scans[scan_id]
                self._done.pop(scan_id, None)

        if stale:
            logger.info(f"Evicted {len(stale)} finished scans")
        return len(stale)

    # -------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------

    def _run_in_background(self, scan_id: str) -> None:
        try:
            self.run_scan(scan_id)
        finally:
            with self._lock:
                done = self._done.get(scan_id)
            if done:
                done.set()

    def run_scan(self, scan_id: str) -> Scan:
        """
        Run the full pipeline for a registered scan, synchronously.

        Never raises for pipeline failures: they are recorded on the scan
        as FAILED with an error message. Returns the final snapshot.
        """
        with self._lock:
            scan = self._scans.get(scan_id)
        if scan is None:
            raise NotFoundError(f"Unknown scan {scan_id}")

        started = time.monotonic()
        try:
            self._execute(scan)
        except Exception as e:
            logger.exception(f"Scan {scan_id} failed for {scan.request.target_label}")
            scan.fail(str(e)[:500] or type(e).__name__)

        logger.info(
            f"Scan {scan_id} finished: {scan.status.value} "
            f"in {round(time.monotonic() - started, 2)}s"
        )
        return scan.snapshot()

    def _execute(self, scan: Scan) -> None:
        request = scan.request

        # --- 1. Fetch ---
        scan.transition(ScanStatus.SCANNING)
        scan.advance(5)
        logger.info(f"Scan {scan.scan_id}: fetching {request.target_label}")
        try:
            files = self.fetcher.fetch(request)
        except (NotFoundError, UpstreamError) as e:
            logger.error(f"Scan {scan.scan_id}: fetch failed: {e}")
            scan.fail(f"Fetch failed: {e}")
            return
        scan.advance(15)

        # --- 2. Run analyzers ---
        analyzers = self._select_analyzers(request.options)
        limit = request.options.concurrency_limit or self.concurrency_limit

        def _on_batch(completed: int, total: int) -> None:
            scan.advance(15 + (70 * completed) // total)

        logger.info(
            f"Scan {scan.scan_id}: running {len(analyzers)} analyzers over "
            f"{len(files)} files (concurrency {limit})"
        )
        runs = self.dispatcher.run(files, analyzers, limit, on_progress=_on_batch)
        with scan.lock:
            scan.analyzers = {run.analyzer_id: _run_summary(run) for run in runs}
        scan.advance(85)

        # --- 3. Group ---
        scan.transition(ScanStatus.VOTING)
        grouper = FindingGrouper()
        grouper.add_findings(f for run in runs if run.success for f in run.findings)
        groups = grouper.get_groups()
        scan.advance(88)
        logger.info(f"Scan {scan.scan_id}: {grouper.get_stats()}")

        # --- 4. Vote ---
        voters = [a for a, run in zip(analyzers, runs) if run.success]
        voting = self._collect_votes(scan, groups, voters, files, limit)

        # --- 5. Finalize ---
        self._finalize(scan, groups, voting)

    def _collect_votes(
        self,
        scan: Scan,
        groups: Sequence[FindingGroup],
        voters: Sequence[BaseAnalyzer],
        files: Sequence[FileArtifact],
        limit: int,
    ) -> _VotingRound:
        voting = _VotingRound(scan, groups)
        if not groups:
            return voting

        engine = ConsensusEngine.for_analyzers(
            len(voters),
            quorum_threshold=self.quorum_threshold,
            minimum_votes=self.minimum_votes,
            voting_timeout=self.voting_timeout,
            weighting_enabled=self.weighting_enabled,
            analyzer_weights=self.analyzer_weights,
            on_consensus=voting.on_consensus,
        )
        voting.engine = engine
        scan.advance(90)

        for group in groups:
            engine.start_timeout(group.key, voting.on_timeout)

        # Each group's reporter votes land together, before any review runs,
        # so a group its reporters alone decide is decided the same way every run.
        for group in groups:
            engine.submit_votes(
                Vote(
                    analyzer_id=analyzer_id,
                    group_key=group.key,
                    decision=VoteDecision.CONFIRMED,
                    confidence=_clamp_confidence(confidence),
                    rationale=f"reported {sum(1 for f in group.findings if f.analyzer == analyzer_id)} finding(s)",
                )
                for analyzer_id, confidence in sorted(group.reporters.items())
            )

        executor = ThreadPoolExecutor(max_workers=limit, thread_name_prefix="review")
        try:
            for group in groups:
                if voting.is_settled(group.key):
                    continue
                reviewers = [a for a in voters if a.name not in group.reporters]
                voting.expect(group.key, len(reviewers))
                for analyzer in reviewers:
                    executor.submit(self._review, analyzer, group, files, voting)

            if not voting.wait(self.voting_timeout + _VOTING_GRACE_SECONDS):
                for key in voting.unsettled():
                    logger.error(f"Scan {scan.scan_id}: group {key} never settled; forcing")
                    voting.settle(key, "timeout")
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
            engine.cancel_all()

        return voting

    @staticmethod
    def _review(
        analyzer: BaseAnalyzer,
        group: FindingGroup,
        files: Sequence[FileArtifact],
        voting: _VotingRound,
    ) -> None:
        try:
            decision = analyzer.review(group, files)
        except Exception:
            logger.exception(f"Analyzer '{analyzer.name}' review of {group.key} failed")
            decision = None

        try:
            if decision is not None:
                voting.engine.submit_vote(Vote(
                    analyzer_id=analyzer.name,
                    group_key=group.key,
                    decision=decision.decision,
                    confidence=_clamp_confidence(decision.confidence),
                    rationale=decision.rationale,
                ))
            else:
                logger.debug(f"Analyzer '{analyzer.name}' abstained on {group.key}")
        finally:
            voting.response_received(group.key)

    def _finalize(self, scan: Scan, groups: Sequence[FindingGroup], voting: _VotingRound) -> None:
        confirmed: List[Finding] = []
        for group in groups:
            result = voting.verdicts.get(group.key)
            if result is None or result.decision != VoteDecision.CONFIRMED:
                continue
            confirmed.append(group.representative.with_confidence(result.confidence_score))

        confirmed.sort(
            key=lambda f: (-f.severity.rank, -f.confidence, f.location.file, f.location.line)
        )
        confirmed = [
            replace(f, finding_id=f"{scan.scan_id}-F{i:03d}")
            for i, f in enumerate(confirmed, start=1)
        ]

        votes = [v for group in groups for v in voting.votes.get(group.key, [])]
        final_score = (
            round(math.fsum(f.confidence for f in confirmed) / len(confirmed), 2)
            if confirmed else 0.0
        )
        consensus_reached = bool(voting.verdicts) and not voting.timed_out and all(
            r.reached for r in voting.verdicts.values()
        )

        scan.complete(
            findings=confirmed,
            votes=votes,
            final_confidence_score=final_score,
            consensus_reached=consensus_reached,
        )
        logger.info(
            f"Scan {scan.scan_id}: {len(confirmed)}/{len(groups)} groups confirmed, "
            f"{len(votes)} votes, confidence {final_score}%"
        )

    # -------------------------------------------------------------------
    # Analyzer selection
    # -------------------------------------------------------------------

    def _select_analyzers(self, options: ScanOptions) -> List[BaseAnalyzer]:
        """
        Explicitly requested analyzers always run; otherwise every registered
        analyzer runs, minus deep-only ones unless deep_scan is set.
        """
        if options.analyzers:
            unknown = [n for n in options.analyzers if n not in self.analyzers]
            if unknown:
                raise ValidationError(
                    f"unknown analyzers: {', '.join(unknown)}", field="options.analyzers"
                )
            selected = [self.analyzers[n] for n in dict.fromkeys(options.analyzers)]
        else:
            selected = [
                a for a in self.analyzers.values()
                if options.deep_scan or not a.deep_only
            ]

        if not selected:
            raise ValidationError("no analyzers available for this scan", field="options.analyzers")
        return selected
