#!/usr/bin/env python3
"""
Quick checkup runner for AI Visibility Checkup.
Analyzes one or more URLs and summarizes scores, or prints one export.
"""

import argparse
import sys
from collections import Counter
from pathlib import Path
from typing import List

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from checkup.analysis import analyze_with_isolation
from checkup.analyzer import PASS
from checkup.config import FetchConfig
from checkup.logging_setup import setup_logging


def normalize_list(values: List[str]) -> List[str]:
    return [v.strip() for v in values if v and v.strip()]


def main() -> int:
    parser = argparse.ArgumentParser(description="Run AI visibility checkups from the command line")
    parser.add_argument("urls", nargs="+", help="URLs or bare domains to analyze")
    parser.add_argument("--timeout", type=float, default=10.0, help="Page fetch timeout in seconds")
    parser.add_argument("--probe-timeout", type=float, default=4.0, help="robots.txt/sitemap.xml timeout")
    parser.add_argument(
        "--export",
        choices=["markdown", "json", "html"],
        help="Print this export for each URL instead of the summary",
    )
    parser.add_argument("--show-passing", action="store_true", help="List passing checks too")
    args = parser.parse_args()

    setup_logging()

    urls = normalize_list(args.urls)
    if not urls:
        print("No URLs provided.")
        return 1

    config = FetchConfig(
        page_timeout_seconds=args.timeout,
        probe_timeout_seconds=args.probe_timeout,
    )

    grades = Counter()
    failures = 0

    for raw_url in urls:
        payload, error = analyze_with_isolation(raw_url, config=config)
        if error:
            failures += 1
            print(f"ERROR: {raw_url}: {error}")
            continue

        grades[payload.grade] += 1

        if args.export:
            print(payload.exports[args.export])
            continue

        print(f"\n{payload.url}")
        print(f"- Score: {payload.score}/100 ({payload.grade}), confidence {payload.confidence}")
        for category in payload.categories:
            print(f"- {category.name}: {category.score}/{category.max}")

        print("Checks")
        for check in payload.checks:
            if check.status == PASS and not args.show_passing:
                continue
            print(f"- [{check.status}] {check.name} ({check.points}/{check.max_points}): {check.evidence}")

        print("Top fixes")
        for fix in payload.top_fixes:
            print(f"- {fix}")

    if not args.export and len(urls) > 1:
        print("\nGrade distribution")
        for grade, count in grades.most_common():
            print(f"- {grade}: {count}")
        print(f"- Errors: {failures}")

    return 0 if failures == 0 else 1


if __name__ == "__main__":
    raise SystemExit(main())
