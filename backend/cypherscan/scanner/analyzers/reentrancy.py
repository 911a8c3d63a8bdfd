# cypherscan/scanner/analyzers/reentrancy.py
"""
Reentrancy analyzer.

Only flags calls that forward value, which is where reentrancy actually
pays an attacker. Plain .call() without value is left to static_code.
"""

from __future__ import annotations

from cypherscan.scanner.analyzers.pattern import SWC, PatternAnalyzer, PatternRule, rx
from cypherscan.scanner.base import Severity


class ReentrancyAnalyzer(PatternAnalyzer):
    name = "reentrancy"
    review_confidence = 60.0

    RULES = (
        PatternRule(
            rule_id="value-call",
            category="reentrancy",
            severity=Severity.HIGH,
            title="External call forwards ether",
            description=(
                "The call forwards ether and all remaining gas to an external address. "
                "A malicious receiver can re-enter before balances are updated."
            ),
            recommendation=(
                "Zero out balances before sending, or apply OpenZeppelin's ReentrancyGuard "
                "to every function that transfers value."
            ),
            pattern=rx(r"\.call\s*\{\s*value\s*:|\.call\.value\s*\(|\braw_call\s*\(.*\bvalue\s*="),
            exclude=rx(r"nonReentrant"),
            confidence=75.0,
            references=(SWC.format("SWC-107"),),
        ),
    )
