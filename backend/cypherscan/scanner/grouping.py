# cypherscan/scanner/grouping.py
"""
Groups raw findings from many analyzers into consensus units.

Independent analyzers describe the same issue in different words, so
findings are grouped by (category, severity) rather than by title or id.
Each group records which analyzers reported into it; those analyzers vote
CONFIRMED on it, everyone else is asked to review.

Strategy:
1. Normalize category (lowercase, stripped)
2. Group by (category, severity)
3. Track reporting analyzers and their best confidence per group
4. Pick the highest-confidence finding as the group representative
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from cypherscan.scanner.base import Finding, Severity


def group_key_for(category: str, severity: Severity) -> str:
    return f"{(category or 'uncategorized').strip().lower()}:{severity.value}"


@dataclass
class FindingGroup:
    """All raw findings sharing one (category, severity)."""
    key: str
    category: str
    severity: Severity
    findings: List[Finding] = field(default_factory=list)
    reporters: Dict[str, float] = field(default_factory=dict)   # analyzer → best confidence

    @property
    def representative(self) -> Finding:
        """Highest individual confidence; ties go to the earliest file/line."""
        return min(
            self.findings,
            key=lambda f: (-f.confidence, f.location.file, f.location.line, f.finding_id),
        )

    def add(self, finding: Finding) -> None:
        self.findings.append(finding)
        best = self.reporters.get(finding.analyzer)
        if best is None or finding.confidence > best:
            self.reporters[finding.analyzer] = finding.confidence


class FindingGrouper:

    def __init__(self):
        self._groups: Dict[str, FindingGroup] = {}

    def add_findings(self, findings: Iterable[Finding]) -> None:
        for finding in findings:
            category = (finding.category or "uncategorized").strip().lower()
            key = group_key_for(category, finding.severity)
            group = self._groups.get(key)
            if group is None:
                group = FindingGroup(key=key, category=category, severity=finding.severity)
                self._groups[key] = group
            group.add(finding)

    def get_groups(self) -> List[FindingGroup]:
        """Worst severity first, then category name."""
        return sorted(self._groups.values(), key=lambda g: (-g.severity.rank, g.category))

    def get_stats(self) -> Dict[str, int]:
        return {
            "groups": len(self._groups),
            "findings": sum(len(g.findings) for g in self._groups.values()),
        }
