"""
Scoring module for AI Visibility Checkup.
Aggregates check results into a 0-100 score, confidence level, and grade.

Scoring philosophy:
- Four equally weighted categories, each rescaled onto its weight
- Any failing check caps the score at 85, any warning at 95
- Low confidence (fetch/parse limitations) caps at 60, Medium at 85
"""

import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .analyzer import (
    ACCESS_FETCH,
    ACCESS_STATUS,
    CATEGORY_NAMES,
    CATEGORY_WEIGHTS,
    FAIL,
    MEANINGFUL_TEXT_CHARS,
    PASS,
    WARN,
    CheckResult,
    PageSignals,
)
from .fetcher import FetchResult
from .logging_setup import get_logger

logger = get_logger("scoring")

HIGH = "High"
MEDIUM = "Medium"
LOW = "Low"

JS_SHELL_CONTENT_CAP = 10
HARSH_META_DESCRIPTION_CHARS = 220
HARSH_META_PENALTY = 3
STRICT_FAIL_CAP = 85
STRICT_WARN_CAP = 95
LOW_CONFIDENCE_CAP = 60
MEDIUM_CONFIDENCE_CAP = 85
MAX_TOP_FIXES = 7

BASE_LIMITATIONS = [
    "This check uses one live fetch and may not reflect geo-specific variants, login states, or cookies.",
    "JavaScript-rendered content can be partially missed because analysis is HTML-first.",
    "Recommendations are heuristic and should be reviewed with your CMS and analytics context.",
]


@dataclass
class CategoryScore:
    """Realized score for one category."""
    id: str
    name: str
    score: int
    max: int

    def to_dict(self) -> Dict[str, object]:
        return {"id": self.id, "name": self.name, "score": self.score, "max": self.max}


@dataclass
class ScoreSummary:
    """Everything the scorer decides about one analysis."""
    score: int
    raw_score: int
    grade: str
    confidence: str
    categories: List[CategoryScore]
    top_fixes: List[str]
    limitations: List[str] = field(default_factory=list)


def clamp(value: float, low: int, high: int) -> int:
    return max(low, min(high, round_half_up(value)))


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def summarize_categories(checks: List[CheckResult], js_shell: bool = False) -> List[CategoryScore]:
    """Rescale each category's raw points onto its weight."""
    totals = {category: [0, 0] for category in CATEGORY_NAMES}
    for check in checks:
        totals[check.category][0] += check.points
        totals[check.category][1] += check.max_points

    categories = []
    for category, name in CATEGORY_NAMES.items():
        points, max_points = totals[category]
        weight = CATEGORY_WEIGHTS[category]
        normalized = round_half_up(clamp(points, 0, max_points) / max_points * weight) if max_points else 0
        score = clamp(normalized, 0, weight)
        if category == "content" and js_shell:
            score = min(score, JS_SHELL_CONTENT_CAP)
        categories.append(CategoryScore(id=category, name=name, score=score, max=weight))
    return categories


def to_confidence(
    fetch_result: FetchResult,
    readable_chars: int,
    checks: List[CheckResult],
    json_ld_errors: int,
) -> str:
    """Base confidence before any JS-shell downgrade."""
    major_blocker = any(
        check.id in (ACCESS_FETCH.id, ACCESS_STATUS.id) and check.status == FAIL
        for check in checks
    )
    if (
        fetch_result.timed_out
        or fetch_result.blocked_status
        or readable_chars < MEANINGFUL_TEXT_CHARS
        or major_blocker
    ):
        return LOW

    metadata_gaps = sum(1 for c in checks if c.category == "metadata" and c.status != PASS)
    if metadata_gaps > 1 or json_ld_errors > 0:
        return MEDIUM

    return HIGH


def downgrade_confidence(confidence: str) -> str:
    if confidence == HIGH:
        return MEDIUM
    return LOW


def to_grade(score: int) -> str:
    if score <= 39:
        return "Needs work"
    if score <= 69:
        return "Fair"
    if score <= 84:
        return "Good"
    return "Great"


def apply_strict_cap(score: int, checks: List[CheckResult]) -> tuple:
    """Returns (score, reason) where reason is "fail", "warn" or None."""
    if any(c.status == FAIL for c in checks):
        if score > STRICT_FAIL_CAP:
            return STRICT_FAIL_CAP, "fail"
        return score, None
    if any(c.status == WARN for c in checks) and score > STRICT_WARN_CAP:
        return STRICT_WARN_CAP, "warn"
    return score, None


def apply_confidence_cap(score: int, confidence: str) -> tuple:
    """Returns (score, reason) where reason is the capping confidence level or None."""
    if confidence == LOW and score > LOW_CONFIDENCE_CAP:
        return LOW_CONFIDENCE_CAP, LOW
    if confidence == MEDIUM and score > MEDIUM_CONFIDENCE_CAP:
        return MEDIUM_CONFIDENCE_CAP, MEDIUM
    return score, None


def prioritized_checks(checks: List[CheckResult], limit: Optional[int] = None) -> List[CheckResult]:
    """Non-passing checks, zero-credit and high-stakes first."""
    ordered = sorted(
        (c for c in checks if c.status != PASS),
        key=lambda c: (c.points, -c.max_points),
    )
    return ordered[:limit] if limit is not None else ordered


def prioritized_fixes(checks: List[CheckResult], limit: int = MAX_TOP_FIXES) -> List[str]:
    fixes = []
    for check in prioritized_checks(checks):
        if check.fix not in fixes:
            fixes.append(check.fix)
    return fixes[:limit]


def score_checks(
    checks: List[CheckResult],
    fetch_result: FetchResult,
    signals: PageSignals,
) -> ScoreSummary:
    """
    Combine check results into the final score.

    Adjustments run in a fixed order: harsh meta description penalty,
    strict cap, then confidence cap on the already-capped value.
    """
    js_shell = signals.js_shell.flag
    categories = summarize_categories(checks, js_shell=js_shell)
    raw_score = clamp(sum(c.score for c in categories), 0, 100)

    confidence = to_confidence(
        fetch_result,
        readable_chars=len(signals.body_text),
        checks=checks,
        json_ld_errors=signals.json_ld.parse_errors,
    )
    if js_shell:
        confidence = downgrade_confidence(confidence)

    score = raw_score
    harsh_meta_penalty = signals.description_length > HARSH_META_DESCRIPTION_CHARS
    if harsh_meta_penalty:
        score = max(0, score - HARSH_META_PENALTY)

    score, strict_cap_reason = apply_strict_cap(score, checks)
    score, confidence_cap_reason = apply_confidence_cap(score, confidence)

    limitations = list(BASE_LIMITATIONS)
    if js_shell:
        limitations.append(
            f"{signals.js_shell.evidence} This page appears to rely heavily on client-side rendering; "
            "AI crawlers may see little content. Content score is capped until server-rendered "
            "content is available."
        )
    if confidence_cap_reason == LOW:
        limitations.append("Score capped due to Low confidence (fetch/parse limitations).")
    elif confidence_cap_reason == MEDIUM:
        limitations.append("Score capped due to Medium confidence (partial signals).")
    if harsh_meta_penalty:
        limitations.append(
            "Additional penalty applied: meta description is far above recommended length (>220 chars)."
        )
    if strict_cap_reason == "fail":
        limitations.append("Strict mode cap applied: one or more checks failed, so score is capped at 85.")
    elif strict_cap_reason == "warn":
        limitations.append("Strict mode cap applied: one or more checks are warnings, so score is capped at 95.")

    logger.debug(
        f"Scored raw={raw_score} final={score} confidence={confidence} "
        f"strict_cap={strict_cap_reason} confidence_cap={confidence_cap_reason}"
    )

    return ScoreSummary(
        score=score,
        raw_score=raw_score,
        grade=to_grade(score),
        confidence=confidence,
        categories=categories,
        top_fixes=prioritized_fixes(checks),
        limitations=limitations,
    )
