# cypherscan/scanner/analyzers/static_code.py
"""
General static checks, a broad low-precision first pass.

Checks performed:
    HIGH:
        - Low-level .call( (reentrancy risk)
    MEDIUM:
        - Compiler older than 0.8 (no built-in overflow checks)
        - unchecked { } arithmetic blocks
    LOW:
        - block.timestamp used in logic
"""

from __future__ import annotations

from cypherscan.scanner.analyzers.pattern import SWC, PatternAnalyzer, PatternRule, rx
from cypherscan.scanner.base import Severity


class StaticCodeAnalyzer(PatternAnalyzer):
    name = "static_code"

    RULES = (
        PatternRule(
            rule_id="low-level-call",
            category="reentrancy",
            severity=Severity.HIGH,
            title="Potential reentrancy via low-level call",
            description=(
                "A low-level .call() hands control to an external address. If state "
                "is updated after the call, the callee can re-enter and act on stale state."
            ),
            recommendation=(
                "Follow checks-effects-interactions: update state before the external "
                "call, and guard the function with a nonReentrant modifier."
            ),
            pattern=rx(r"\.call\s*[\({]"),
            confidence=55.0,
            references=(SWC.format("SWC-107"),),
        ),
        PatternRule(
            rule_id="legacy-compiler",
            category="arithmetic",
            severity=Severity.MEDIUM,
            title="Compiler without checked arithmetic",
            description=(
                "Solidity before 0.8.0 does not revert on integer overflow or underflow. "
                "Every arithmetic operation must be guarded manually."
            ),
            recommendation="Upgrade to Solidity ^0.8.0 or use SafeMath for every operation.",
            pattern=rx(r"pragma\s+solidity\s*[\^>=<~ ]*0\.[4-7]\."),
            confidence=70.0,
            references=(SWC.format("SWC-101"), SWC.format("SWC-102")),
        ),
        PatternRule(
            rule_id="unchecked-block",
            category="arithmetic",
            severity=Severity.MEDIUM,
            title="Unchecked arithmetic block",
            description=(
                "Arithmetic inside unchecked { } skips overflow checks. A wrong bound "
                "assumption silently wraps values."
            ),
            recommendation="Keep unchecked blocks to loop counters and proven bounds; document the invariant.",
            pattern=rx(r"\bunchecked\s*\{"),
            confidence=45.0,
            references=(SWC.format("SWC-101"),),
        ),
        PatternRule(
            rule_id="timestamp-dependence",
            category="timestamp-dependence",
            severity=Severity.LOW,
            title="Logic depends on block.timestamp",
            description=(
                "Block producers can skew block.timestamp by several seconds. "
                "Logic keyed on exact timestamps or short windows can be gamed."
            ),
            recommendation="Avoid exact timestamp comparisons and windows shorter than a few minutes.",
            pattern=rx(r"\bblock\.timestamp\b|\bnow\b\s*[<>=+-]"),
            confidence=50.0,
            references=(SWC.format("SWC-116"),),
        ),
    )
