# cypherscan/scanner/analyzers/dependency_risk.py
"""
Dependency risk analyzer.

Only sees what the fetched files import. Skipped vendored directories
(lib/, node_modules/) are not inspected unless the scan includes them.
"""

from __future__ import annotations

from cypherscan.scanner.analyzers.pattern import SWC, PatternAnalyzer, PatternRule, rx
from cypherscan.scanner.base import Severity


class DependencyRiskAnalyzer(PatternAnalyzer):
    name = "dependency_risk"

    RULES = (
        PatternRule(
            rule_id="remote-import",
            category="dependency",
            severity=Severity.HIGH,
            title="Import from a URL",
            description="The imported code can change under the same URL without any change in this repository.",
            recommendation="Vendor the dependency at a pinned version through a package manager.",
            pattern=rx(r"import\s+[^;]*[\"']https?://"),
            confidence=60.0,
        ),
        PatternRule(
            rule_id="legacy-openzeppelin",
            category="dependency",
            severity=Severity.MEDIUM,
            title="Legacy OpenZeppelin module",
            description="SafeMath and the drafts/ tree belong to OpenZeppelin releases that no longer get fixes.",
            recommendation="Upgrade to a maintained OpenZeppelin 4.x/5.x release.",
            pattern=rx(r"import\s+[^;]*@openzeppelin/contracts/(math/SafeMath|drafts/)"),
            confidence=45.0,
        ),
        PatternRule(
            rule_id="floating-pragma",
            category="compiler-version",
            severity=Severity.INFO,
            title="Floating compiler pragma",
            description="A caret pragma lets the contract compile with a compiler version it was never tested on.",
            recommendation="Pin the exact compiler version used in testing.",
            pattern=rx(r"pragma\s+solidity\s*\^"),
            confidence=40.0,
            references=(SWC.format("SWC-103"),),
        ),
    )
