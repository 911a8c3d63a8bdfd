# cypherscan/scanner/analyzers/upgradeability.py
"""
Upgradeability analyzer: proxies and initializers.
"""

from __future__ import annotations

from cypherscan.scanner.analyzers.pattern import SWC, PatternAnalyzer, PatternRule, rx
from cypherscan.scanner.base import Severity


class UpgradeabilityAnalyzer(PatternAnalyzer):
    name = "upgradeability"

    RULES = (
        PatternRule(
            rule_id="unprotected-initializer",
            category="upgradeability",
            severity=Severity.HIGH,
            title="Initializer without initializer modifier",
            description=(
                "An initialize() function without the initializer modifier can be called "
                "again, or by anyone on a fresh implementation contract."
            ),
            recommendation="Mark initialize() with initializer and call _disableInitializers() in the constructor.",
            pattern=rx(r"function\s+initialize\s*\("),
            exclude=rx(r"\b(initializer|onlyInitializing|reinitializer)\b"),
            confidence=65.0,
        ),
        PatternRule(
            rule_id="upgrade-entry-point",
            category="upgradeability",
            severity=Severity.MEDIUM,
            title="Upgrade entry point",
            description="The implementation can be swapped. Storage layout must stay compatible across upgrades.",
            recommendation="Protect upgradeTo with a timelock and validate storage layout before each upgrade.",
            pattern=rx(r"function\s+(upgradeTo|upgradeToAndCall|_authorizeUpgrade)\s*\("),
            confidence=40.0,
        ),
        PatternRule(
            rule_id="proxy-delegatecall",
            category="delegatecall",
            severity=Severity.HIGH,
            title="delegatecall forwarding in proxy logic",
            description="The contract forwards calls with delegatecall; the target decides what happens to storage.",
            recommendation="Pin the implementation slot (EIP-1967) and restrict who can change it.",
            pattern=rx(r"\bdelegatecall\s*\("),
            confidence=60.0,
            references=(SWC.format("SWC-112"),),
        ),
    )
