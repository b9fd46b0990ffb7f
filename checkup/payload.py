"""
Analysis payload: the immutable result of one checkup.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List

from .analyzer import CheckResult
from .scoring import CategoryScore

RUBRIC_VERSION = "1.0"

REALITY_CHECK_ITEMS = [
    'Not scored. External systems vary. Search: site:example.com "brand".',
    "Not scored. External systems vary. Search the exact business name and review top citations.",
    'Not scored. External systems vary. Ask an LLM: "What is <business> in Coachella Valley?" '
    "and verify whether it cites the site.",
]


@dataclass(frozen=True)
class AnalysisPayload:
    """Full result of one analysis. Cached by normalized URL."""
    url: str
    fetched_at: str
    score: int
    grade: str
    confidence: str
    categories: List[CategoryScore]
    checks: List[CheckResult]
    top_fixes: List[str]
    limitations: List[str]
    reality_check: List[str] = field(default_factory=lambda: list(REALITY_CHECK_ITEMS))
    rubric_version: str = RUBRIC_VERSION
    exports: Dict[str, str] = field(default_factory=lambda: {"markdown": "", "json": "", "html": ""})

    def to_dict(self, include_exports: bool = True) -> Dict[str, Any]:
        data = {
            "url": self.url,
            "fetchedAt": self.fetched_at,
            "rubricVersion": self.rubric_version,
            "score": self.score,
            "grade": self.grade,
            "confidence": self.confidence,
            "categories": [c.to_dict() for c in self.categories],
            "checks": [c.to_dict() for c in self.checks],
            "topFixes": list(self.top_fixes),
            "limitations": list(self.limitations),
            "realityCheck": list(self.reality_check),
        }
        if include_exports:
            data["exports"] = dict(self.exports)
        return data
