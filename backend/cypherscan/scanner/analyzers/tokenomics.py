# cypherscan/scanner/analyzers/tokenomics.py
"""
Tokenomics analyzer: supply control and approvals.
"""

from __future__ import annotations

from cypherscan.scanner.analyzers.pattern import PatternAnalyzer, PatternRule, rx
from cypherscan.scanner.base import Severity


class TokenomicsAnalyzer(PatternAnalyzer):
    name = "tokenomics"

    RULES = (
        PatternRule(
            rule_id="unguarded-mint",
            category="token-supply",
            severity=Severity.HIGH,
            title="Mint function without an access modifier",
            description="A public or external mint with no modifier on its signature lets anyone inflate supply.",
            recommendation="Restrict minting with onlyOwner / onlyRole(MINTER_ROLE), or cap total supply.",
            pattern=rx(r"function\s+mint\w*\s*\([^)]*\)\s*(public|external)"),
            exclude=rx(r"\bonly\w+|\binternal\b"),
            confidence=60.0,
        ),
        PatternRule(
            rule_id="unlimited-approval",
            category="token-approval",
            severity=Severity.MEDIUM,
            title="Unlimited token approval",
            description="Approving the maximum uint256 exposes the whole balance if the spender is compromised.",
            recommendation="Approve the exact amount needed and reset it afterwards.",
            pattern=rx(r"approve\s*\([^,]+,\s*(type\s*\(\s*uint256\s*\)\s*\.max|uint256\s*\(\s*-1\s*\)|2\s*\*\*\s*256\s*-\s*1)"),
            confidence=55.0,
        ),
    )
