"""Tests for bounded batch dispatch of analyzers."""

from __future__ import annotations

import threading
import time
from dataclasses import replace

import pytest

from cypherscan.scanner.base import FileArtifact, Severity
from cypherscan.scanner.dispatcher import AnalyzerDispatcher

from conftest import FakeAnalyzer, make_finding

FILES = (FileArtifact(path="contracts/Vault.sol", content="contract Vault {}"),)


class ConcurrencyProbe(FakeAnalyzer):
    """Records how many probes run at once."""

    active = 0
    peak = 0
    lock = threading.Lock()

    def analyze(self, files):
        cls = type(self)
        with cls.lock:
            cls.active += 1
            cls.peak = max(cls.peak, cls.active)
        time.sleep(0.05)
        with cls.lock:
            cls.active -= 1
        return []


def test_failing_analyzer_yields_empty_failed_run():
    good_a = FakeAnalyzer("a", findings=[make_finding(line=1)])
    broken = FakeAnalyzer("b", error=RuntimeError("parser crashed"))
    good_c = FakeAnalyzer("c", findings=[make_finding(line=2), make_finding(line=3)])

    runs = AnalyzerDispatcher().run(FILES, [good_a, broken, good_c], concurrency_limit=3)

    assert [r.analyzer_id for r in runs] == ["a", "b", "c"]
    assert runs[1].success is False
    assert runs[1].findings == []
    assert runs[1].error.startswith("b: RuntimeError")
    assert len(runs[0].findings) == 1
    assert len(runs[2].findings) == 2
    assert runs[0].success and runs[2].success


def test_batches_never_exceed_concurrency_limit():
    ConcurrencyProbe.active = 0
    ConcurrencyProbe.peak = 0
    probes = [ConcurrencyProbe(f"p{i}") for i in range(5)]
    progress = []

    AnalyzerDispatcher().run(FILES, probes, concurrency_limit=2, on_progress=lambda d, t: progress.append((d, t)))

    assert ConcurrencyProbe.peak <= 2
    assert progress == [(2, 5), (4, 5), (5, 5)]


def test_next_batch_waits_for_the_whole_batch():
    events = []

    class Recorder(FakeAnalyzer):
        def analyze(self, files):
            events.append(("start", self.name))
            time.sleep(self.delay)
            events.append(("end", self.name))
            return []

    slow = Recorder("slow", delay=0.2)
    fast = Recorder("fast")
    later = Recorder("later")

    AnalyzerDispatcher().run(FILES, [slow, fast, later], concurrency_limit=2)

    assert events.index(("end", "slow")) < events.index(("start", "later"))


def test_stuck_analyzer_is_recorded_as_timed_out():
    release = threading.Event()
    stuck = FakeAnalyzer("stuck", gate=release)
    fine = FakeAnalyzer("fine", findings=[make_finding()])

    try:
        runs = AnalyzerDispatcher(call_timeout=0.1).run(FILES, [stuck, fine], concurrency_limit=2)
    finally:
        release.set()

    assert runs[0].success is False
    assert "timed out" in runs[0].error
    assert runs[1].success is True
    assert len(runs[1].findings) == 1


def test_findings_are_stamped_with_analyzer_name():
    analyzer = FakeAnalyzer("static_code", findings=[make_finding(analyzer="")])
    run = AnalyzerDispatcher().run(FILES, [analyzer], concurrency_limit=1)[0]

    assert run.findings[0].analyzer == "static_code"
    assert run.duration_seconds >= 0


def test_analyzers_receive_the_same_frozen_files():
    a, b = FakeAnalyzer("a"), FakeAnalyzer("b")
    AnalyzerDispatcher().run(FILES, [a, b], concurrency_limit=1)

    assert a.received == b.received == FILES


def test_concurrency_limit_must_be_positive():
    with pytest.raises(ValueError):
        AnalyzerDispatcher().run(FILES, [FakeAnalyzer("a")], concurrency_limit=0)


def test_loose_findings_are_normalized():
    loose = [
        replace(make_finding(line=1), severity="high", confidence="72.5"),
        replace(make_finding(line=2), severity="nonsense", confidence=140),
        replace(make_finding(line=3), confidence=-5),
    ]
    runs = AnalyzerDispatcher().run(FILES, [FakeAnalyzer("loose", findings=loose)], concurrency_limit=1)

    run = runs[0]
    assert run.success is True
    assert [f.severity for f in run.findings] == [Severity.HIGH, Severity.INFO, Severity.HIGH]
    assert [f.confidence for f in run.findings] == [72.5, 100.0, 0.0]


@pytest.mark.parametrize("bad", [
    replace(make_finding(), confidence=None),
    replace(make_finding(), confidence="very"),
    replace(make_finding(), confidence=float("nan")),
    replace(make_finding(), location=None),
    {"category": "reentrancy", "severity": "HIGH"},
])
def test_unrepairable_finding_fails_only_that_analyzer(bad):
    sloppy = FakeAnalyzer("sloppy", findings=[make_finding(line=1), bad])
    good = FakeAnalyzer("good", findings=[make_finding(line=2)])

    runs = AnalyzerDispatcher().run(FILES, [sloppy, good], concurrency_limit=2)

    assert runs[0].success is False
    assert runs[0].findings == []
    assert runs[0].error.startswith("sloppy: ValueError")
    assert runs[1].success is True and len(runs[1].findings) == 1
