# cypherscan/scanner/analyzers/attack_surface.py
"""
Attack surface analyzer: external call exposure and fallback entry points.
"""

from __future__ import annotations

from cypherscan.scanner.analyzers.pattern import SWC, PatternAnalyzer, PatternRule, rx
from cypherscan.scanner.base import Severity


class AttackSurfaceAnalyzer(PatternAnalyzer):
    name = "attack_surface"

    RULES = (
        PatternRule(
            rule_id="arbitrary-call",
            category="arbitrary-call",
            severity=Severity.HIGH,
            title="Call with caller-controlled calldata",
            description="Forwarding arbitrary calldata lets a caller make the contract call anything it can.",
            recommendation="Allow-list targets and function selectors, or drop the generic call.",
            pattern=rx(r"\.call\s*(\{[^}]*\})?\s*\(\s*_?(data|payload|callData)\s*\)"),
            confidence=60.0,
            references=(SWC.format("SWC-112"),),
        ),
        PatternRule(
            rule_id="payable-fallback",
            category="external-exposure",
            severity=Severity.LOW,
            title="Payable fallback or receive",
            description="Ether sent by mistake or by a failed integration is accepted silently.",
            recommendation="Revert in fallback/receive unless the contract is meant to hold ether.",
            pattern=rx(r"\b(fallback|receive)\s*\(\s*\)\s*external\s+payable"),
            confidence=40.0,
        ),
    )
