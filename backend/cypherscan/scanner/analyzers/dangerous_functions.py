# cypherscan/scanner/analyzers/dangerous_functions.py
"""
Dangerous function analyzer: delegatecall, tx.origin, selfdestruct.

tx.origin findings share the access-control category with the
access_control analyzer, so the two confirm each other in voting.
"""

from __future__ import annotations

from cypherscan.scanner.analyzers.pattern import SWC, PatternAnalyzer, PatternRule, rx
from cypherscan.scanner.base import Severity


class DangerousFunctionsAnalyzer(PatternAnalyzer):
    name = "dangerous_functions"

    RULES = (
        PatternRule(
            rule_id="delegatecall",
            category="delegatecall",
            severity=Severity.HIGH,
            title="delegatecall usage",
            description=(
                "delegatecall runs foreign code against this contract's storage. "
                "A controllable target can overwrite any slot, including the owner."
            ),
            recommendation=(
                "Only delegatecall to fixed, audited implementations. Never take the "
                "target address from user input."
            ),
            pattern=rx(r"\.delegatecall\s*\("),
            confidence=70.0,
            references=(SWC.format("SWC-112"),),
        ),
        PatternRule(
            rule_id="tx-origin",
            category="access-control",
            severity=Severity.HIGH,
            title="tx.origin used for authorization",
            description=(
                "Checks against tx.origin can be satisfied by a phishing contract "
                "the legitimate user is tricked into calling."
            ),
            recommendation="Replace tx.origin with msg.sender.",
            pattern=rx(r"\btx\.origin\s*==|==\s*tx\.origin\b"),
            confidence=75.0,
            references=(SWC.format("SWC-115"),),
        ),
        PatternRule(
            rule_id="selfdestruct",
            category="selfdestruct",
            severity=Severity.HIGH,
            title="selfdestruct reachable",
            description=(
                "selfdestruct removes the contract's code and forcibly sends its ether. "
                "If reachable by the wrong caller the contract is gone."
            ),
            recommendation="Remove selfdestruct or gate it behind a timelocked multisig.",
            pattern=rx(r"\b(selfdestruct|suicide)\s*\("),
            confidence=70.0,
            references=(SWC.format("SWC-106"),),
        ),
    )
