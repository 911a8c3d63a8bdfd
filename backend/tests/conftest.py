"""Shared test fixtures for cypherscan tests. Nothing here touches the network."""

from __future__ import annotations

import threading
import time
from typing import Any, Dict, List, Optional, Sequence

import pytest

from cypherscan.scanner.base import (
    BaseAnalyzer,
    FileArtifact,
    Finding,
    Location,
    ReviewDecision,
    ScanRequest,
    Severity,
)
from cypherscan.scanner.cache import ArtifactCache
from cypherscan.scanner.errors import UpstreamError
from cypherscan.scanner.fetcher import ArtifactFetcher, SourceProvider
from cypherscan.scanner.orchestrator import ScanOrchestrator


VAULT_SOL = """pragma solidity ^0.8.19;

contract Vault {
    mapping(address => uint256) public balances;

    function withdraw() external {
        uint256 amount = balances[msg.sender];
        (bool ok, ) = msg.sender.call{value: amount}("");
        require(ok);
        balances[msg.sender] = 0;
    }
}
"""

MATH_SOL = """pragma solidity ^0.8.19;

library SafeishMath {
    function add(uint256 a, uint256 b) internal pure returns (uint256) {
        unchecked { return a + b; }
    }
}
"""


def _file(path: str, content: Optional[str] = None) -> Dict[str, Any]:
    return {
        "name": path.rsplit("/", 1)[-1],
        "path": path,
        "type": "file",
        "url": f"blob://{path}",
        "content": content.encode() if content is not None else None,
    }


def _dir(path: str) -> Dict[str, Any]:
    return {"name": path.rsplit("/", 1)[-1], "path": path, "type": "dir", "url": "", "content": None}


# path → listing; files without inline content are served by get_file_content
REPO_TREE: Dict[str, List[Dict[str, Any]]] = {
    "": [_dir("contracts"), _dir("lib"), _file("README.md", "# Vault")],
    "contracts": [_file("contracts/Vault.sol"), _dir("contracts/utils"), _file("contracts/notes.txt", "x")],
    "contracts/utils": [_file("contracts/utils/Math.sol", MATH_SOL)],
    "contracts/Vault.sol": [_file("contracts/Vault.sol", VAULT_SOL)],
    "lib": [_file("lib/Dep.sol", "pragma solidity ^0.8.0;\ncontract Dep {}\n")],
    "docs": [_file("docs/README.md", "nothing to see")],
}

BLOBS: Dict[str, bytes] = {"blob://contracts/Vault.sol": VAULT_SOL.encode()}


class FakeProvider(SourceProvider):
    """In-memory source provider that counts every upstream call."""

    def __init__(self, tree=None, blobs=None):
        self.tree = dict(REPO_TREE if tree is None else tree)
        self.blobs = dict(BLOBS if blobs is None else blobs)
        self.list_calls: List[tuple] = []
        self.content_calls: List[str] = []
        self.fail_with: Optional[Exception] = None

    def list_directory(self, locator, path, credential=None):
        self.list_calls.append((locator, path, credential))
        if self.fail_with is not None:
            raise self.fail_with
        if path not in self.tree:
            raise UpstreamError(f"GitHub returned 404 for {locator}/{path}", status=404)
        return [dict(entry) for entry in self.tree[path]]

    def get_file_content(self, url, credential=None):
        self.content_calls.append(url)
        return self.blobs[url]


class ManualClock:
    """Monotonic clock the test moves by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


_DEFAULT = object()


class FakeAnalyzer(BaseAnalyzer):
    """
    Scriptable analyzer.

    `gate` blocks analyze() until set; `review_gate` blocks review() the same way.
    `review` overrides the default review decision (None = abstain).
    """

    def __init__(
        self,
        name: str,
        findings: Sequence[Finding] = (),
        categories: Sequence[str] = (),
        error: Optional[Exception] = None,
        review: Any = _DEFAULT,
        delay: float = 0.0,
        gate: Optional[threading.Event] = None,
        review_gate: Optional[threading.Event] = None,
        deep_only: bool = False,
    ):
        self._name = name
        self._findings = list(findings)
        self._categories = tuple(categories)
        self.error = error
        self.review_result = review
        self.delay = delay
        self.gate = gate
        self.review_gate = review_gate
        self.deep_only = deep_only
        self.calls = 0
        self.review_calls = 0
        self.received: Optional[Sequence[FileArtifact]] = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def categories(self):
        return self._categories

    def analyze(self, files):
        self.calls += 1
        self.received = files
        if self.gate is not None:
            self.gate.wait(5)
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self._findings)

    def review(self, group, files) -> Optional[ReviewDecision]:
        self.review_calls += 1
        if self.review_gate is not None:
            self.review_gate.wait(5)
        if self.review_result is not _DEFAULT:
            return self.review_result
        return super().review(group, files)


def make_finding(
    category: str = "reentrancy",
    severity: Severity = Severity.HIGH,
    confidence: float = 80.0,
    file: str = "contracts/Vault.sol",
    line: int = 10,
    analyzer: str = "",
    finding_id: Optional[str] = None,
) -> Finding:
    return Finding(
        finding_id=finding_id or f"{category}-{file}-{line}",
        category=category,
        severity=severity,
        title=f"{category} issue",
        description="test finding",
        location=Location(file=file, line=line),
        recommendation="fix it",
        confidence=confidence,
        analyzer=analyzer,
    )


def github_request(**kwargs) -> ScanRequest:
    kwargs.setdefault("repository", "acme/vault")
    return ScanRequest(**kwargs)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def cache(clock) -> ArtifactCache:
    return ArtifactCache(max_entries=100, default_ttl=600, clock=clock)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def fetcher(provider, cache) -> ArtifactFetcher:
    return ArtifactFetcher(provider, cache)


@pytest.fixture
def make_orchestrator(fetcher):
    """Factory: make_orchestrator([analyzers], **kwargs) with a short voting timeout."""

    def _make(analyzers, **kwargs) -> ScanOrchestrator:
        kwargs.setdefault("voting_timeout", 5.0)
        return ScanOrchestrator(fetcher, analyzers, **kwargs)

    return _make
