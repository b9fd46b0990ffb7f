"""
Tests for the scoring module.
"""

import pytest

from checkup.analyzer import (
    ACCESS_FETCH,
    ALL_CHECKS,
    CONTENT_DEPTH,
    FAIL,
    META_DESCRIPTION,
    META_TITLE,
    PASS,
    SD_PRESENCE,
    WARN,
    CheckResult,
    extract_signals,
)
from checkup.fetcher import FetchResult
from checkup.scoring import (
    HIGH,
    LOW,
    MEDIUM,
    apply_confidence_cap,
    apply_strict_cap,
    prioritized_fixes,
    round_half_up,
    score_checks,
    summarize_categories,
    to_confidence,
    to_grade,
)

URL = "https://example.com/"


def make_check(definition, status=PASS, points=None) -> CheckResult:
    return CheckResult(
        id=definition.id,
        name=definition.name,
        category=definition.category,
        max_points=definition.max_points,
        fix=definition.fix,
        status=status,
        points=definition.max_points if points is None else points,
        evidence="evidence",
    )


def all_passing():
    return [make_check(d) for d in ALL_CHECKS]


def with_override(checks, definition, status, points):
    return [make_check(definition, status, points) if c.id == definition.id else c for c in checks]


def ok_page(html="") -> FetchResult:
    return FetchResult(ok=True, status=200, final_url=URL, html=html)


class TestGrades:
    """Grade boundaries."""

    @pytest.mark.parametrize("score,grade", [
        (0, "Needs work"),
        (39, "Needs work"),
        (40, "Fair"),
        (69, "Fair"),
        (70, "Good"),
        (84, "Good"),
        (85, "Great"),
        (100, "Great"),
    ])
    def test_boundaries(self, score, grade):
        assert to_grade(score) == grade


class TestRounding:

    def test_half_rounds_up(self):
        assert round_half_up(2.5) == 3
        assert round_half_up(3.5) == 4
        assert round_half_up(2.49) == 2


class TestCategories:
    """Category rescaling."""

    def test_all_passing_fills_every_category(self):
        categories = summarize_categories(all_passing())
        assert [c.id for c in categories] == ["access", "metadata", "content", "structured-data"]
        assert [c.score for c in categories] == [25, 25, 25, 25]
        assert all(c.max == 25 for c in categories)

    def test_scores_are_integers_in_range(self):
        checks = with_override(all_passing(), ACCESS_FETCH, FAIL, 0)
        checks = with_override(checks, META_TITLE, WARN, 3)
        for category in summarize_categories(checks):
            assert isinstance(category.score, int)
            assert 0 <= category.score <= 25

    def test_partial_access_rescales(self):
        # access: 25 of 35 raw points -> 25/35*25 = 17.86 -> 18
        checks = with_override(all_passing(), ACCESS_FETCH, FAIL, 0)
        access = summarize_categories(checks)[0]
        assert access.score == 18

    def test_js_shell_caps_content(self):
        content = summarize_categories(all_passing(), js_shell=True)[2]
        assert content.score == 10


class TestCaps:
    """Strict and confidence caps."""

    def test_fail_caps_at_85(self):
        checks = with_override(all_passing(), SD_PRESENCE, FAIL, 0)
        assert apply_strict_cap(97, checks) == (85, "fail")

    def test_warn_caps_at_95(self):
        checks = with_override(all_passing(), META_TITLE, WARN, 3)
        assert apply_strict_cap(97, checks) == (95, "warn")

    def test_no_cap_when_everything_passes(self):
        assert apply_strict_cap(100, all_passing()) == (100, None)

    def test_strict_cap_is_idempotent(self):
        checks = with_override(all_passing(), SD_PRESENCE, FAIL, 0)
        once, _ = apply_strict_cap(100, checks)
        twice, reason = apply_strict_cap(once, checks)
        assert twice == once
        assert reason is None

    @pytest.mark.parametrize("confidence,expected", [(LOW, 60), (MEDIUM, 85), (HIGH, 90)])
    def test_confidence_cap(self, confidence, expected):
        assert apply_confidence_cap(90, confidence)[0] == expected

    def test_confidence_cap_is_idempotent(self):
        once, _ = apply_confidence_cap(90, LOW)
        assert apply_confidence_cap(once, LOW) == (once, None)


class TestConfidence:

    def test_high_when_everything_is_readable(self):
        assert to_confidence(ok_page(), 1000, all_passing(), 0) == HIGH

    def test_low_on_timeout(self):
        timed_out = FetchResult(ok=False, status=408, final_url=URL, timed_out=True)
        assert to_confidence(timed_out, 1000, all_passing(), 0) == LOW

    def test_low_on_thin_text(self):
        assert to_confidence(ok_page(), 100, all_passing(), 0) == LOW

    def test_medium_on_metadata_gaps(self):
        checks = with_override(all_passing(), META_TITLE, WARN, 3)
        checks = with_override(checks, META_DESCRIPTION, FAIL, 0)
        assert to_confidence(ok_page(), 1000, checks, 0) == MEDIUM

    def test_medium_on_json_ld_errors(self):
        assert to_confidence(ok_page(), 1000, all_passing(), 1) == MEDIUM


class TestPrioritizedFixes:

    def test_zero_credit_and_high_stakes_first(self):
        checks = with_override(all_passing(), META_TITLE, WARN, 3)
        checks = with_override(checks, CONTENT_DEPTH, FAIL, 0)
        checks = with_override(checks, SD_PRESENCE, FAIL, 0)
        fixes = prioritized_fixes(checks)
        assert fixes == [SD_PRESENCE.fix, CONTENT_DEPTH.fix, META_TITLE.fix]

    def test_limited_to_seven(self):
        checks = [make_check(d, FAIL, 0) for d in ALL_CHECKS]
        assert len(prioritized_fixes(checks)) == 7


class TestScoreChecks:
    """End-to-end scoring from checks and signals."""

    def test_perfect_page_scores_100(self, sample_html_complete):
        signals = extract_signals(sample_html_complete, URL)
        summary = score_checks(all_passing(), ok_page(sample_html_complete), signals)

        assert summary.score == 100
        assert summary.grade == "Great"
        assert summary.confidence == HIGH
        assert summary.top_fixes == []
        assert len(summary.limitations) == 3

    def test_failing_check_applies_strict_cap(self, sample_html_complete):
        signals = extract_signals(sample_html_complete, URL)
        checks = with_override(all_passing(), META_TITLE, FAIL, 0)
        summary = score_checks(checks, ok_page(sample_html_complete), signals)

        assert summary.raw_score == 93
        assert summary.score == 85
        assert any("Strict mode cap applied" in item for item in summary.limitations)

    def test_js_shell_downgrades_confidence(self, sample_html_js_shell):
        signals = extract_signals(sample_html_js_shell, URL)
        summary = score_checks(all_passing(), ok_page(sample_html_js_shell), signals)

        assert summary.categories[2].score <= 10
        assert summary.confidence == LOW
        assert summary.score <= 60
        assert any("Likely JS-rendered shell" in item for item in summary.limitations)

    def test_harsh_description_penalty(self, sample_html_complete):
        long_description = "x" * 230
        html = sample_html_complete.replace(
            "Desert Bloom designs water-wise landscapes for homes and businesses across Palm Desert "
            "and the Coachella Valley.",
            long_description,
        )
        signals = extract_signals(html, URL)
        summary = score_checks(all_passing(), ok_page(html), signals)

        assert summary.score == 97
        assert any("far above recommended length" in item for item in summary.limitations)

    def test_score_always_in_range(self, sample_html_js_shell):
        signals = extract_signals(sample_html_js_shell, URL)
        checks = [make_check(d, FAIL, 0) for d in ALL_CHECKS]
        failed = FetchResult(ok=False, status=520, final_url=URL, error="Target fetch failed.")
        summary = score_checks(checks, failed, signals)

        assert summary.score == 0
        assert summary.grade == "Needs work"
        assert summary.confidence == LOW
