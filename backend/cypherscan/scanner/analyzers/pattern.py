# cypherscan/scanner/analyzers/pattern.py
"""
Line-oriented regex analyzer.

Subclasses declare RULES; each rule is matched line by line against every
file. A hit becomes one Finding located at that line, with the trimmed line
as the code snippet. Comment lines are skipped.

    class MyAnalyzer(PatternAnalyzer):
        name = "my_analyzer"
        RULES = (PatternRule(rule_id="...", category="...", ...),)

The analyzer's review categories default to the categories of its rules.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Pattern, Sequence, Tuple

from cypherscan.scanner.base import BaseAnalyzer, FileArtifact, Finding, Location, Severity

logger = logging.getLogger(__name__)

SWC = "https://swcregistry.io/docs/{}"

_COMMENT_PREFIXES = ("//", "/*", "*", "#")


@dataclass(frozen=True)
class PatternRule:
    rule_id: str
    category: str
    severity: Severity
    title: str
    description: str
    recommendation: str
    pattern: Pattern[str]
    confidence: float = 60.0
    exclude: Optional[Pattern[str]] = None     # a line matching this is not a hit
    references: Tuple[str, ...] = ()

    def matches(self, line: str) -> bool:
        if not self.pattern.search(line):
            return False
        return not (self.exclude and self.exclude.search(line))


class PatternAnalyzer(BaseAnalyzer):
    """Base for analyzers that are a table of PatternRules."""

    RULES: Tuple[PatternRule, ...] = ()

    # findings per rule per file; the rest of the hits are noise for voting
    max_hits_per_file: int = 25

    @property
    def categories(self) -> Tuple[str, ...]:
        return tuple(dict.fromkeys(rule.category for rule in self.RULES))

    def analyze(self, files: Sequence[FileArtifact]) -> List[Finding]:
        findings: List[Finding] = []
        for artifact in files:
            findings.extend(self._scan_file(artifact))
        return findings

    def _scan_file(self, artifact: FileArtifact) -> List[Finding]:
        hits: List[Finding] = []
        per_rule = {rule.rule_id: 0 for rule in self.RULES}

        for lineno, raw in enumerate(artifact.content.splitlines(), start=1):
            line = raw.strip()
            if not line or line.startswith(_COMMENT_PREFIXES):
                continue

            for rule in self.RULES:
                if per_rule[rule.rule_id] >= self.max_hits_per_file:
                    continue
                if not rule.matches(line):
                    continue

                per_rule[rule.rule_id] += 1
                hits.append(Finding(
                    finding_id=f"{rule.rule_id}-{artifact.path}-{lineno}",
                    category=rule.category,
                    severity=rule.severity,
                    title=rule.title,
                    description=rule.description,
                    location=Location(file=artifact.path, line=lineno),
                    recommendation=rule.recommendation,
                    confidence=rule.confidence,
                    analyzer=self.name,
                    code_snippet=line[:240],
                    references=rule.references,
                ))

        capped = [rid for rid, n in per_rule.items() if n >= self.max_hits_per_file]
        if capped:
            logger.debug(f"{self.name}: hit cap reached in {artifact.path} for {', '.join(capped)}")
        return hits


def rx(expr: str, flags: int = 0) -> Pattern[str]:
    return re.compile(expr, flags)
