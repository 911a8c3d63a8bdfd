# cypherscan/scanner/analyzers/defi_risk.py
"""
DeFi risk analyzer.

Flash-loan entry points and prices derived from the contract's own token
balance, which a flash loan can inflate for one transaction.
"""

from __future__ import annotations

from cypherscan.scanner.analyzers.pattern import PatternAnalyzer, PatternRule, rx
from cypherscan.scanner.base import Severity


class DefiRiskAnalyzer(PatternAnalyzer):
    name = "defi_risk"

    RULES = (
        PatternRule(
            rule_id="flash-loan-callback",
            category="flash-loan",
            severity=Severity.MEDIUM,
            title="Flash loan callback",
            description="The callback runs with borrowed funds; any state it trusts can be manipulated first.",
            recommendation="Check msg.sender and the initiator, and keep the callback free of price reads.",
            pattern=rx(r"function\s+(executeOperation|onFlashLoan|uniswapV2Call|uniswapV3FlashCallback|pancakeCall)\s*\("),
            confidence=45.0,
        ),
        PatternRule(
            rule_id="balance-based-price",
            category="oracle-manipulation",
            severity=Severity.HIGH,
            title="Price derived from the contract's token balance",
            description=(
                "Dividing by balanceOf(address(this)) lets anyone move the rate by "
                "transferring tokens in, including with a flash loan."
            ),
            recommendation="Track deposits in internal accounting instead of reading live balances.",
            pattern=rx(r"balanceOf\s*\(\s*address\s*\(\s*this\s*\)\s*\)\s*[*/]|[*/]\s*\w+\.balanceOf\s*\(\s*address\s*\(\s*this\s*\)\s*\)"),
            confidence=50.0,
        ),
    )
