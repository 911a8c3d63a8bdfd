# cypherscan/scanner/__init__.py
"""
Scan pipeline: fetch → analyze → group → vote → report.

Usage:
    from cypherscan.scanner import ScanOrchestrator
"""
from cypherscan.scanner.orchestrator import ScanOrchestrator

__all__ = ["ScanOrchestrator"]
