# cypherscan/scanner/analyzers/mev.py
"""
MEV analyzer: front-running and sandwich exposure on swaps.
"""

from __future__ import annotations

from cypherscan.scanner.analyzers.pattern import SWC, PatternAnalyzer, PatternRule, rx
from cypherscan.scanner.base import Severity


class MevAnalyzer(PatternAnalyzer):
    name = "mev"

    RULES = (
        PatternRule(
            rule_id="zero-slippage",
            category="front-running",
            severity=Severity.HIGH,
            title="Swap accepts any output amount",
            description=(
                "The swap passes 0 as the minimum output. A searcher can sandwich "
                "the transaction and take almost the whole trade."
            ),
            recommendation="Compute amountOutMin from a quoted price minus a bounded slippage tolerance.",
            pattern=rx(r"\bswap\w*\s*\(\s*[^,()]+,\s*0\s*[,)]"),
            confidence=55.0,
            references=(SWC.format("SWC-114"),),
        ),
        PatternRule(
            rule_id="now-deadline",
            category="front-running",
            severity=Severity.MEDIUM,
            title="Swap deadline set to the current block",
            description="A deadline of block.timestamp never expires, so a held transaction stays executable.",
            recommendation="Pass a caller-supplied deadline instead of block.timestamp.",
            pattern=rx(r"\bswap\w*\s*\(.*\bblock\.timestamp\s*\)"),
            confidence=50.0,
        ),
    )
