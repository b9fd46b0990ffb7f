"""
Analysis pipeline for AI Visibility Checkup.

Orchestrates the full flow for one URL:
1. Fetch the page (SSRF-guarded, redirects followed by hand)
2. Probe robots.txt and sitemap.xml concurrently
3. Extract page signals and run the check battery
4. Score, then render exports

Results are cached by normalized URL through CheckupService.
"""

import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional, Tuple

import requests

from .analyzer import crawl_base, extract_signals, run_checks
from .config import CacheConfig, FetchConfig
from .errors import CheckupError
from .exports import build_exports
from .fetcher import (
    FetchResult,
    Resolver,
    fetch_following_redirects,
    fetch_with_isolation,
    resolve_url,
)
from .payload import AnalysisPayload
from .scoring import score_checks
from .stores import TTLStore
from .logging_setup import AnalysisContext, get_logger

logger = get_logger("analysis")


def format_timestamp(epoch_seconds: float) -> str:
    """ISO-8601 UTC with millisecond precision and a Z suffix."""
    moment = datetime.fromtimestamp(epoch_seconds, tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def probe_crawl_files(
    base: Optional[str],
    config: FetchConfig,
    session: requests.Session = None,
    resolver: Resolver = None,
) -> Tuple[Optional[FetchResult], Optional[FetchResult]]:
    """Fetch robots.txt and sitemap.xml in parallel. None means unevaluable."""
    if not base:
        return None, None

    with ThreadPoolExecutor(max_workers=2) as executor:
        robots_future = executor.submit(
            fetch_with_isolation,
            f"{base}/robots.txt",
            config.probe_timeout_seconds,
            config,
            session,
            resolver,
        )
        sitemap_future = executor.submit(
            fetch_with_isolation,
            f"{base}/sitemap.xml",
            config.probe_timeout_seconds,
            config,
            session,
            resolver,
        )
        return robots_future.result(), sitemap_future.result()


def run_analysis(
    url: str,
    config: FetchConfig = None,
    session: requests.Session = None,
    resolver: Resolver = None,
    now: float = None,
) -> AnalysisPayload:
    """
    Analyze an already normalized and guarded URL.

    Upstream failures never raise: they are scored as failing checks.
    """
    config = config or FetchConfig()

    with AnalysisContext(logger, url) as ctx:
        page = fetch_following_redirects(
            url,
            timeout_seconds=config.page_timeout_seconds,
            config=config,
            session=session,
            resolver=resolver,
        )
        ctx.record("redirects", page.redirect_count)
        ctx.record("page_status", page.status)

        robots, sitemap = probe_crawl_files(
            crawl_base(page.final_url, url), config, session, resolver
        )

        signals = extract_signals(page.html or "", page.final_url or url)
        checks = run_checks(url, page, robots, sitemap, signals)
        summary = score_checks(checks, page, signals)
        ctx.record("score", summary.score)
        ctx.record("confidence", summary.confidence)

        payload = AnalysisPayload(
            url=url,
            fetched_at=format_timestamp(time.time() if now is None else now),
            score=summary.score,
            grade=summary.grade,
            confidence=summary.confidence,
            categories=summary.categories,
            checks=checks,
            top_fixes=summary.top_fixes,
            limitations=summary.limitations,
        )
        exports = build_exports(
            payload,
            checks,
            title=signals.title,
            description=signals.meta_description,
            canonical=signals.canonical,
        )

    return replace(payload, exports=exports)


class CheckupService:
    """
    Entry point used by the API and CLI.

    Validates input, consults the per-URL cache, and runs the pipeline on a miss.
    """

    def __init__(
        self,
        fetch_config: FetchConfig = None,
        cache_config: CacheConfig = None,
        cache: TTLStore = None,
        session: requests.Session = None,
        resolver: Resolver = None,
    ):
        self.fetch_config = fetch_config or FetchConfig()
        self.cache_config = cache_config or CacheConfig()
        self.cache = cache if cache is not None else TTLStore(
            default_ttl_seconds=self.cache_config.ttl_seconds,
            max_entries=self.cache_config.max_entries,
        )
        self.session = session
        self.resolver = resolver

    def analyze(self, raw_url: str) -> Tuple[AnalysisPayload, bool]:
        """
        Returns (payload, cache_hit).

        Raises InputError or SecurityRejection before any network call.
        """
        url = resolve_url(raw_url, self.resolver)

        cached = self.cache.get(url)
        if cached is not None:
            logger.debug(f"Cache hit for {url}")
            return cached, True

        payload = run_analysis(
            url,
            config=self.fetch_config,
            session=self.session,
            resolver=self.resolver,
        )
        self.cache.set(url, payload)
        return payload, False


def analyze_with_isolation(
    raw_url: str,
    config: FetchConfig = None,
    session: requests.Session = None,
    resolver: Resolver = None,
) -> Tuple[Optional[AnalysisPayload], Optional[str]]:
    """
    Normalize, guard and analyze one URL. Never raises.

    Returns (payload, None) on success or (None, error message).
    """
    try:
        url = resolve_url(raw_url, resolver)
        return run_analysis(url, config=config, session=session, resolver=resolver), None
    except CheckupError as e:
        return None, e.message
    except Exception as e:
        logger.error(f"Analysis of {raw_url} failed unexpectedly: {e}")
        return None, f"Unexpected error: {e}"
