# cypherscan/scanner/analyzers/access_control.py
"""
Access control analyzer.

Checks performed:
    HIGH:
        - tx.origin used for authorization
        - Public/external function that assigns owner/admin without a modifier
    MEDIUM:
        - Ownership transfer / owner management entry points
"""

from __future__ import annotations

from cypherscan.scanner.analyzers.pattern import SWC, PatternAnalyzer, PatternRule, rx
from cypherscan.scanner.base import Severity


class AccessControlAnalyzer(PatternAnalyzer):
    name = "access_control"
    review_confidence = 55.0

    RULES = (
        PatternRule(
            rule_id="tx-origin-auth",
            category="access-control",
            severity=Severity.HIGH,
            title="Authorization through tx.origin",
            description=(
                "tx.origin is the externally owned account that started the transaction. "
                "Any contract the owner interacts with can call in and pass this check."
            ),
            recommendation="Use msg.sender for authorization checks.",
            pattern=rx(r"(require|if)\s*\(.*\btx\.origin\b"),
            confidence=80.0,
            references=(SWC.format("SWC-115"),),
        ),
        PatternRule(
            rule_id="unguarded-owner-write",
            category="access-control",
            severity=Severity.HIGH,
            title="Privileged role assigned without access modifier",
            description=(
                "A public or external function writes the owner/admin variable and "
                "carries no access modifier on its signature."
            ),
            recommendation="Restrict the function with onlyOwner or a role check (OpenZeppelin Ownable / AccessControl).",
            pattern=rx(r"function\s+\w+\s*\([^)]*\)\s*(public|external)[^{]*\{[^}]*\b(owner|admin)\s*="),
            exclude=rx(r"only\w+|initializer|constructor"),
            confidence=65.0,
            references=(SWC.format("SWC-105"),),
        ),
        PatternRule(
            rule_id="ownership-management",
            category="privilege-management",
            severity=Severity.MEDIUM,
            title="Ownership management entry point",
            description="The contract can change its owner set. A compromised owner key controls the contract.",
            recommendation="Use two-step ownership transfer and a multisig or timelock as owner.",
            pattern=rx(r"function\s+(transferOwnership|addOwner|setOwner|grantRole)\s*\("),
            confidence=40.0,
        ),
    )
