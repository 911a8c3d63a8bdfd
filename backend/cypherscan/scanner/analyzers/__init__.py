# cypherscan/scanner/analyzers/__init__.py
"""
Built-in analyzers.
Each analyzer reads the fetched source files and produces raw Findings
with a category, severity and remediation guidance.
Analyzers do NOT fetch; they only read the files they are handed.
"""
from cypherscan.scanner.analyzers.pattern import PatternAnalyzer, PatternRule
from cypherscan.scanner.analyzers.static_code import StaticCodeAnalyzer
from cypherscan.scanner.analyzers.reentrancy import ReentrancyAnalyzer
from cypherscan.scanner.analyzers.access_control import AccessControlAnalyzer
from cypherscan.scanner.analyzers.dangerous_functions import DangerousFunctionsAnalyzer
from cypherscan.scanner.analyzers.oracle_manipulation import OracleManipulationAnalyzer
from cypherscan.scanner.analyzers.upgradeability import UpgradeabilityAnalyzer
from cypherscan.scanner.analyzers.mev import MevAnalyzer
from cypherscan.scanner.analyzers.defi_risk import DefiRiskAnalyzer
from cypherscan.scanner.analyzers.tokenomics import TokenomicsAnalyzer
from cypherscan.scanner.analyzers.attack_surface import AttackSurfaceAnalyzer
from cypherscan.scanner.analyzers.dependency_risk import DependencyRiskAnalyzer
from cypherscan.scanner.analyzers.gas_efficiency import GasEfficiencyAnalyzer

# Registry of all available analyzers.
# Dispatch batches follow this order.
ALL_ANALYZERS = {
    "static_code": StaticCodeAnalyzer,
    "reentrancy": ReentrancyAnalyzer,
    "access_control": AccessControlAnalyzer,
    "dangerous_functions": DangerousFunctionsAnalyzer,
    "oracle_manipulation": OracleManipulationAnalyzer,
    "upgradeability": UpgradeabilityAnalyzer,
    "mev": MevAnalyzer,
    "defi_risk": DefiRiskAnalyzer,
    "tokenomics": TokenomicsAnalyzer,
    "attack_surface": AttackSurfaceAnalyzer,
    "dependency_risk": DependencyRiskAnalyzer,
    "gas_efficiency": GasEfficiencyAnalyzer,     # deep scans only
}


def build_analyzers(names=None):
    """Instantiate registered analyzers, all of them by default."""
    selected = names or list(ALL_ANALYZERS)
    unknown = [n for n in selected if n not in ALL_ANALYZERS]
    if unknown:
        raise KeyError(f"Unknown analyzers: {', '.join(unknown)}")
    return [ALL_ANALYZERS[n]() for n in selected]


__all__ = [
    "PatternAnalyzer", "PatternRule",
    "StaticCodeAnalyzer", "ReentrancyAnalyzer", "AccessControlAnalyzer",
    "DangerousFunctionsAnalyzer", "OracleManipulationAnalyzer",
    "UpgradeabilityAnalyzer", "GasEfficiencyAnalyzer",
    "MevAnalyzer", "DefiRiskAnalyzer", "TokenomicsAnalyzer",
    "AttackSurfaceAnalyzer", "DependencyRiskAnalyzer",
    "ALL_ANALYZERS", "build_analyzers",
]
