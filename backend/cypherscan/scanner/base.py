# cypherscan/scanner/base.py
"""
Core data structures and the analyzer contract for the scan pipeline.

Architecture:
    ScanRequest → ArtifactFetcher → AnalyzerDispatcher → grouping → ConsensusEngine

BaseAnalyzer: Inspects the fetched source files and produces raw Findings.
              Analyzers NEVER fetch. They only read the FileArtifacts
              they are handed. They may also be asked to review a finding
              group reported by someone else and cast a vote on it.

Scan:         The mutable aggregate for one run. Only the orchestrator
              mutates it, always under `scan.lock`. Everyone else gets a
              snapshot.
"""

from __future__ import annotations

import re
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Tuple

from cypherscan.scanner.errors import InvalidTransition, ValidationError

if TYPE_CHECKING:
    from cypherscan.scanner.grouping import FindingGroup


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def now_utc() -> datetime:
    """Timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


REPO_RE = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")
ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")

# chain name → EVM chain id, used by the explorer provider
SUPPORTED_CHAINS: Dict[str, int] = {
    "ethereum": 1,
    "sepolia": 11155111,
    "polygon": 137,
    "arbitrum": 42161,
    "optimism": 10,
    "base": 8453,
    "bsc": 56,
}

MAX_CONCURRENCY_LIMIT = 32


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class Severity(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    INFO = "INFO"

    @property
    def rank(self) -> int:
        """Higher is worse. CRITICAL=4 ... INFO=0."""
        return _SEVERITY_RANK[self]

    @classmethod
    def parse(cls, value: Any) -> "Severity":
        """Lenient parse: accepts enum members and any-case strings, unknown → INFO."""
        if isinstance(value, Severity):
            return value
        try:
            return cls(str(value or "").strip().upper())
        except ValueError:
            return cls.INFO


_SEVERITY_RANK = {
    Severity.CRITICAL: 4,
    Severity.HIGH: 3,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
    Severity.INFO: 0,
}


class VoteDecision(str, Enum):
    CONFIRMED = "CONFIRMED"
    REJECTED = "REJECTED"
    UNCERTAIN = "UNCERTAIN"


class ScanStatus(str, Enum):
    PENDING = "PENDING"
    SCANNING = "SCANNING"
    VOTING = "VOTING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (ScanStatus.COMPLETED, ScanStatus.FAILED)


class SourceType(str, Enum):
    GITHUB = "github"
    ONCHAIN = "onchain"


# Legal status changes. FAILED is reachable from every non-terminal state.
ALLOWED_TRANSITIONS: Dict[ScanStatus, Tuple[ScanStatus, ...]] = {
    ScanStatus.PENDING: (ScanStatus.SCANNING, ScanStatus.FAILED),
    ScanStatus.SCANNING: (ScanStatus.VOTING, ScanStatus.FAILED),
    ScanStatus.VOTING: (ScanStatus.COMPLETED, ScanStatus.FAILED),
    ScanStatus.COMPLETED: (),
    ScanStatus.FAILED: (),
}


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FileArtifact:
    """One fetched source file. Frozen so analyzers cannot mutate shared input."""
    path: str
    content: str


@dataclass(frozen=True)
class Location:
    file: str
    line: int = 0


@dataclass(frozen=True)
class Finding:
    """
    A candidate or confirmed defect.

    Raw findings come from a single analyzer and carry that analyzer's own
    id. Confirmed findings are minted during consensus finalization with a
    scan-unique id (`<scan_id>-F<nnn>`) and the group's consensus score as
    their confidence.

    Fields:
        finding_id:     Analyzer-local id for raw findings, scan-unique once confirmed.
        category:       Grouping tag, e.g. "reentrancy", "access-control".
        severity:       Severity enum.
        title:          One-line summary.
        description:    What was found and why it matters.
        location:       File + line of the first match.
        recommendation: How to fix it.
        confidence:     0-100.
        analyzer:       Which analyzer produced it (stamped by the dispatcher).
        code_snippet:   Matched source line, trimmed.
        references:     URLs for more info (SWC, CWE, ...).
    """
    finding_id: str
    category: str
    severity: Severity
    title: str
    description: str
    location: Location
    recommendation: str = ""
    confidence: float = 0.0
    analyzer: str = ""
    code_snippet: Optional[str] = None
    references: Tuple[str, ...] = ()

    def with_confidence(self, confidence: float) -> "Finding":
        return replace(self, confidence=confidence)


@dataclass(frozen=True)
class Vote:
    """One analyzer's opinion on one finding group."""
    analyzer_id: str
    group_key: str
    decision: VoteDecision
    confidence: float
    rationale: str = ""
    timestamp: datetime = field(default_factory=now_utc)


@dataclass(frozen=True)
class ReviewDecision:
    """What BaseAnalyzer.review() returns; the orchestrator turns it into a Vote."""
    decision: VoteDecision
    confidence: float
    rationale: str = ""


@dataclass
class AnalyzerRun:
    """
    Standardized output of one analyzer invocation.

    A failed run always has `findings == []` and a non-empty `error`.
    Failed analyzers are excluded from voting.
    """
    analyzer_id: str
    findings: List[Finding] = field(default_factory=list)
    success: bool = True
    error: Optional[str] = None
    duration_seconds: float = 0.0


@dataclass(frozen=True)
class ScanOptions:
    deep_scan: bool = False
    include_dependencies: bool = False
    analyzers: Tuple[str, ...] = ()         # empty = every registered analyzer
    concurrency_limit: Optional[int] = None


@dataclass(frozen=True)
class ScanRequest:
    """
    Immutable scan request.

    Either (repository [+ path]) for source_type=github, or
    (contract_address + chain) for source_type=onchain.
    """
    source_type: SourceType = SourceType.GITHUB
    repository: Optional[str] = None
    path: str = ""
    contract_address: Optional[str] = None
    chain: Optional[str] = None
    access_token: Optional[str] = field(default=None, repr=False)
    options: ScanOptions = field(default_factory=ScanOptions)

    @property
    def normalized_path(self) -> str:
        return (self.path or "").strip().strip("/")

    @property
    def target_label(self) -> str:
        if self.source_type == SourceType.ONCHAIN:
            return f"{self.chain}:{self.contract_address}"
        path = self.normalized_path
        return f"{self.repository}/{path}" if path else str(self.repository)

    def validate(self) -> None:
        """Raise ValidationError if the request cannot be scanned."""
        if self.source_type == SourceType.GITHUB:
            repo = (self.repository or "").strip()
            if not repo:
                raise ValidationError("repository is required", field="repository")
            if not REPO_RE.match(repo):
                raise ValidationError(
                    f"repository must look like 'owner/name', got {repo!r}", field="repository"
                )
            if ".." in self.normalized_path.split("/"):
                raise ValidationError("path must not contain '..' segments", field="path")
        elif self.source_type == SourceType.ONCHAIN:
            if not ADDRESS_RE.match(self.contract_address or ""):
                raise ValidationError(
                    "contractAddress must be a 0x-prefixed 20-byte hex address",
                    field="contractAddress",
                )
            if (self.chain or "").lower() not in SUPPORTED_CHAINS:
                raise ValidationError(
                    f"chain must be one of {sorted(SUPPORTED_CHAINS)}", field="chain"
                )
        else:
            raise ValidationError(f"unsupported source type {self.source_type!r}", field="type")

        limit = self.options.concurrency_limit
        if limit is not None and not (1 <= limit <= MAX_CONCURRENCY_LIMIT):
            raise ValidationError(
                f"concurrencyLimit must be between 1 and {MAX_CONCURRENCY_LIMIT}",
                field="options.concurrencyLimit",
            )


@dataclass
class Scan:
    """
    The mutable aggregate for one analysis run.

    Mutated only by the orchestrator's pipeline thread, always under `lock`.
    `progress` never decreases. Once status is terminal the scan is frozen.
    """
    scan_id: str
    request: ScanRequest
    status: ScanStatus = ScanStatus.PENDING
    progress: int = 0
    findings: List[Finding] = field(default_factory=list)
    votes: List[Vote] = field(default_factory=list)
    final_confidence_score: float = 0.0
    total_votes: int = 0
    consensus_reached: bool = False
    analyzers: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    error: Optional[str] = None
    created_at: datetime = field(default_factory=now_utc)
    completed_at: Optional[datetime] = None

    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    def transition(self, new_status: ScanStatus) -> None:
        with self.lock:
            if new_status not in ALLOWED_TRANSITIONS[self.status]:
                raise InvalidTransition(
                    f"scan {self.scan_id}: {self.status.value} -> {new_status.value} is not allowed"
                )
            self.status = new_status

    def advance(self, progress: int) -> None:
        """Move progress forward; lower values are ignored."""
        with self.lock:
            if self.status.is_terminal:
                return
            self.progress = max(self.progress, min(100, int(progress)))

    def complete(
        self,
        findings: Sequence[Finding],
        votes: Sequence[Vote],
        final_confidence_score: float,
        consensus_reached: bool,
    ) -> None:
        with self.lock:
            self.transition(ScanStatus.COMPLETED)
            self.findings = list(findings)
            self.votes = list(votes)
            self.total_votes = len(votes)
            self.final_confidence_score = final_confidence_score
            self.consensus_reached = consensus_reached
            self.progress = 100
            self.completed_at = now_utc()

    def fail(self, message: str) -> None:
        """Move to FAILED. No partial findings survive."""
        with self.lock:
            if self.status.is_terminal:
                return
            self.transition(ScanStatus.FAILED)
            self.findings = []
            self.consensus_reached = False
            self.final_confidence_score = 0.0
            self.error = message
            self.progress = 100
            self.completed_at = now_utc()

    def snapshot(self) -> "Scan":
        """Consistent copy for readers. Findings and votes are frozen, so shallow list copies suffice."""
        with self.lock:
            return replace(
                self,
                findings=list(self.findings),
                votes=list(self.votes),
                analyzers={k: dict(v) for k, v in self.analyzers.items()},
                lock=threading.RLock(),
            )


# ---------------------------------------------------------------------------
# Abstract base class
# ---------------------------------------------------------------------------

class BaseAnalyzer(ABC):
    """
    Abstract base for analyzer workers.

    To create a new analyzer:
        1. Subclass BaseAnalyzer (or PatternAnalyzer for regex rules)
        2. Set the `name` property (e.g., "reentrancy")
        3. Set `categories` to the finding categories you are competent to judge
        4. Implement `analyze(files) -> List[Finding]`

    The dispatcher handles automatically:
        - Timing and per-call deadlines
        - Error catching (exceptions become an empty, failed AnalyzerRun)
        - Stamping findings with the analyzer name

    Analyzers must not mutate `files`.
    """

    # Confidence attached to the default REJECTED review vote.
    review_confidence: float = 50.0

    # Expensive or noisy analyzers only run when options.deep_scan is set.
    deep_only: bool = False

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique analyzer identifier. Used as the voter identity."""
        ...

    @property
    def categories(self) -> Tuple[str, ...]:
        """Finding categories this analyzer can judge. Empty = abstain on everything else."""
        return ()

    def covers(self, category: str) -> bool:
        return category.lower() in {c.lower() for c in self.categories}

    @abstractmethod
    def analyze(self, files: Sequence[FileArtifact]) -> List[Finding]:
        """Inspect the files and return raw findings."""
        ...

    def review(
        self,
        group: "FindingGroup",
        files: Sequence[FileArtifact],
    ) -> Optional[ReviewDecision]:
        """
        Vote on a group this analyzer did not report.

        Default: if the category is one we cover and we found nothing, say
        REJECTED; otherwise abstain. Override for model-backed second opinions.
        """
        if not self.covers(group.category):
            return None
        return ReviewDecision(
            decision=VoteDecision.REJECTED,
            confidence=self.review_confidence,
            rationale=f"{self.name} covers '{group.category}' and reported nothing at {group.severity.value}",
        )
