# cypherscan/scanner/analyzers/oracle_manipulation.py
"""
Oracle manipulation analyzer.

Flags spot-price reads that a flash loan can move inside one transaction,
and price feeds consumed without a staleness check.
"""

from __future__ import annotations

from cypherscan.scanner.analyzers.pattern import SWC, PatternAnalyzer, PatternRule, rx
from cypherscan.scanner.base import Severity


class OracleManipulationAnalyzer(PatternAnalyzer):
    name = "oracle_manipulation"

    RULES = (
        PatternRule(
            rule_id="spot-price",
            category="oracle-manipulation",
            severity=Severity.HIGH,
            title="Spot price read from a single source",
            description=(
                "The price comes from a single on-chain source such as AMM reserves. "
                "A flash loan can move it for the duration of one transaction."
            ),
            recommendation="Use a TWAP or a decentralized oracle, and cross-check against a second source.",
            pattern=rx(r"\b(getReserves|getPrice|slot0|getAmountsOut)\s*\("),
            confidence=60.0,
        ),
        PatternRule(
            rule_id="stale-feed",
            category="oracle-manipulation",
            severity=Severity.MEDIUM,
            title="Price feed read without staleness check",
            description="latestAnswer() carries no timestamp; a stalled feed keeps returning its last value.",
            recommendation="Use latestRoundData() and reject answers whose updatedAt is too old.",
            pattern=rx(r"\blatestAnswer\s*\("),
            confidence=65.0,
        ),
        PatternRule(
            rule_id="timestamp-window",
            category="timestamp-dependence",
            severity=Severity.LOW,
            title="Timestamp-based pricing or deadline window",
            description="Pricing or deadlines keyed on block.timestamp can be nudged by block producers.",
            recommendation="Allow for a few seconds of drift and avoid very short windows.",
            pattern=rx(r"\bblock\.timestamp\b"),
            confidence=45.0,
            references=(SWC.format("SWC-116"),),
        ),
    )
