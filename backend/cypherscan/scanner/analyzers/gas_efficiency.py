# cypherscan/scanner/analyzers/gas_efficiency.py
"""
Gas efficiency analyzer. Noisy, so it only runs on deep scans.
"""

from __future__ import annotations

from cypherscan.scanner.analyzers.pattern import SWC, PatternAnalyzer, PatternRule, rx
from cypherscan.scanner.base import Severity


class GasEfficiencyAnalyzer(PatternAnalyzer):
    name = "gas_efficiency"
    deep_only = True

    RULES = (
        PatternRule(
            rule_id="loop-length",
            category="gas-optimization",
            severity=Severity.LOW,
            title="Array length read on every loop iteration",
            description=(
                "The loop condition reads .length each iteration. On a storage array "
                "that is an SLOAD per iteration, and an unbounded array can exceed the block gas limit."
            ),
            recommendation="Cache the length in a local variable; paginate loops over unbounded arrays.",
            pattern=rx(r"for\s*\([^;]*;[^;]*\.length"),
            confidence=50.0,
            references=(SWC.format("SWC-128"),),
        ),
        PatternRule(
            rule_id="string-revert",
            category="gas-optimization",
            severity=Severity.INFO,
            title="Revert with string reason",
            description="String revert reasons cost more deployment and runtime gas than custom errors.",
            recommendation="Use custom errors (error Unauthorized(); revert Unauthorized();).",
            pattern=rx(r"require\s*\([^;]*,\s*\"[^\"]*\"\s*\)"),
            confidence=35.0,
        ),
    )
