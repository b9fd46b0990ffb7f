"""
Page analyzer for AI Visibility Checkup.

Extracts signals from fetched HTML and runs the fixed battery of checks.
Every check is a pure function of fetch results and extracted signals.

Check philosophy:
- Access checks score whether a crawler can reach the page at all
- Metadata and content checks score what a crawler finds once it gets there
- Structured data checks score how well the page describes its entity
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urljoin, urlsplit

from bs4 import BeautifulSoup

from .fetcher import FetchResult
from .logging_setup import get_logger

logger = get_logger("analyzer")

PASS = "pass"
WARN = "warn"
FAIL = "fail"

# Display order of categories is the scoring order.
CATEGORY_NAMES = {
    "access": "Access",
    "metadata": "Metadata",
    "content": "Content clarity",
    "structured-data": "Structured data",
}

CATEGORY_WEIGHTS = {
    "access": 25,
    "metadata": 25,
    "content": 25,
    "structured-data": 25,
}

RECOMMENDED_SCHEMA_TYPES = ("Organization", "WebSite", "LocalBusiness")

# Readable-text thresholds (characters)
SHORT_BODY_CHARS = 200
MEANINGFUL_TEXT_CHARS = 220
DEEP_TEXT_CHARS = 600
MIN_ROBOTS_CHARS = 24


@dataclass(frozen=True)
class CheckDefinition:
    """Static definition of one scored heuristic."""
    id: str
    name: str
    category: str
    max_points: int
    fix: str


@dataclass(frozen=True)
class CheckResult:
    """One check's outcome for a single analysis run."""
    id: str
    name: str
    category: str
    max_points: int
    fix: str
    status: str
    points: int
    evidence: str
    snippet: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "name": self.name,
            "status": self.status,
            "points": self.points,
            "evidence": self.evidence,
            "fix": self.fix,
        }
        if self.snippet:
            data["snippet"] = self.snippet
        return data


ACCESS_FETCH = CheckDefinition(
    id="access-fetch",
    name="Page fetchability",
    category="access",
    max_points=10,
    fix="Ensure a normal browser-style GET request can fetch the page without blocking.",
)
ACCESS_STATUS = CheckDefinition(
    id="access-status",
    name="HTTP status",
    category="access",
    max_points=8,
    fix="Return a stable 200 response for the canonical page URL.",
)
ACCESS_REDIRECTS = CheckDefinition(
    id="access-redirects",
    name="Redirect/canonical sanity",
    category="access",
    max_points=7,
    fix="Reduce unnecessary redirect chains and keep canonical URL consistent.",
)
ACCESS_ROBOTS_TXT = CheckDefinition(
    id="access-robots-txt",
    name="robots.txt availability",
    category="access",
    max_points=5,
    fix="Publish a readable robots.txt at /robots.txt with crawl directives and sitemap reference.",
)
ACCESS_SITEMAP_XML = CheckDefinition(
    id="access-sitemap-xml",
    name="sitemap.xml availability",
    category="access",
    max_points=5,
    fix="Publish a valid sitemap.xml (urlset or sitemapindex) and keep it updated.",
)
META_TITLE = CheckDefinition(
    id="meta-title",
    name="Title tag quality",
    category="metadata",
    max_points=7,
    fix="Use a specific title that reflects the page topic and audience intent.",
)
META_DESCRIPTION = CheckDefinition(
    id="meta-description",
    name="Meta description quality",
    category="metadata",
    max_points=6,
    fix="Write a clear 70-160 char description summarizing value and context.",
)
META_ROBOTS = CheckDefinition(
    id="meta-robots",
    name="Indexing directives",
    category="metadata",
    max_points=6,
    fix="Avoid noindex/noarchive directives on pages intended for discovery.",
)
META_CANONICAL = CheckDefinition(
    id="meta-canonical",
    name="Canonical URL tag",
    category="metadata",
    max_points=6,
    fix="Add a canonical link and keep it aligned with your preferred URL.",
)
CONTENT_H1 = CheckDefinition(
    id="content-h1",
    name="H1 structure",
    category="content",
    max_points=8,
    fix="Use one clear H1 that matches the page purpose.",
)
CONTENT_HEADINGS = CheckDefinition(
    id="content-headings",
    name="Heading hierarchy",
    category="content",
    max_points=5,
    fix="Use H2/H3 sections to make content scannable for users and crawlers.",
)
CONTENT_DEPTH = CheckDefinition(
    id="content-depth",
    name="Meaningful body content",
    category="content",
    max_points=8,
    fix="Add clear descriptive content about services, audience, outcomes, and location context.",
)
CONTENT_TRUST = CheckDefinition(
    id="content-trust-signals",
    name="Contact/about trust signals",
    category="content",
    max_points=4,
    fix="Include obvious About and Contact paths in internal links or body text.",
)
SD_PRESENCE = CheckDefinition(
    id="sd-presence",
    name="JSON-LD presence",
    category="structured-data",
    max_points=10,
    fix="Add at least one JSON-LD block describing your organization or page entity.",
)
SD_VALIDITY = CheckDefinition(
    id="sd-validity",
    name="JSON-LD validity",
    category="structured-data",
    max_points=10,
    fix="Fix JSON-LD syntax errors and validate scripts with structured data tools.",
)
SD_RECOMMENDED_TYPES = CheckDefinition(
    id="sd-recommended-types",
    name="Recommended schema types",
    category="structured-data",
    max_points=5,
    fix="Prefer Organization/WebSite or LocalBusiness types where appropriate.",
)

ALL_CHECKS = [
    ACCESS_FETCH,
    ACCESS_STATUS,
    ACCESS_REDIRECTS,
    ACCESS_ROBOTS_TXT,
    ACCESS_SITEMAP_XML,
    META_TITLE,
    META_DESCRIPTION,
    META_ROBOTS,
    META_CANONICAL,
    CONTENT_H1,
    CONTENT_HEADINGS,
    CONTENT_DEPTH,
    CONTENT_TRUST,
    SD_PRESENCE,
    SD_VALIDITY,
    SD_RECOMMENDED_TYPES,
]

# Minimal entity set, decoded in this order.
_ENTITIES = [
    (r"&nbsp;", " "),
    (r"&amp;", "&"),
    (r"&quot;", '"'),
    (r"&#39;", "'"),
    (r"&lt;", "<"),
    (r"&gt;", ">"),
]

NOINDEX_PATTERN = re.compile(r"(^|\s|,)(noindex|none)(\s|,|$)", re.IGNORECASE)
TRUST_TEXT_PATTERN = re.compile(r"\babout\b|\bcontact\b", re.IGNORECASE)
SITEMAP_SHAPE_PATTERN = re.compile(r"<(urlset|sitemapindex)\b", re.IGNORECASE)


@dataclass
class JsonLdSummary:
    """What the page's application/ld+json blocks contain."""
    total: int = 0
    parse_errors: int = 0
    types: List[str] = field(default_factory=list)
    valid_scripts: List[str] = field(default_factory=list)


@dataclass
class JsShell:
    flag: bool
    evidence: str = ""


@dataclass
class PageSignals:
    """Everything the checks read from the page HTML."""
    title: str
    meta_description: str
    robots: str
    canonical: str
    body_text: str
    script_count: int
    h1_count: int
    heading_count: int
    json_ld: JsonLdSummary
    has_about_contact: bool
    js_shell: JsShell

    @property
    def description_length(self) -> int:
        return len(self.meta_description.strip())


def decode_entities(value: str) -> str:
    for pattern, replacement in _ENTITIES:
        value = re.sub(pattern, replacement, value, flags=re.IGNORECASE)
    return value


def strip_tags(value: str) -> str:
    return re.sub(r"<[^>]+>", " ", value)


def count_matches(value: str, pattern: str) -> int:
    return len(re.findall(pattern, value, re.IGNORECASE))


def extract_title(html: str) -> str:
    match = re.search(r"<title[^>]*>([\s\S]*?)</title>", html, re.IGNORECASE)
    if not match or not match.group(1):
        return ""
    return decode_entities(re.sub(r"\s+", " ", strip_tags(match.group(1))).strip())


def find_meta_tag(html: str, name: str) -> str:
    """Content of the first <meta name=...>, trying name-before-content order first."""
    esc = re.escape(name)
    forward = re.compile(
        rf"<meta[^>]+name=[\"']{esc}[\"'][^>]*content=[\"']([\s\S]*?)[\"'][^>]*>", re.IGNORECASE
    )
    reverse = re.compile(
        rf"<meta[^>]+content=[\"']([\s\S]*?)[\"'][^>]*name=[\"']{esc}[\"'][^>]*>", re.IGNORECASE
    )
    match = forward.search(html) or reverse.search(html)
    if not match or not match.group(1):
        return ""
    return decode_entities(match.group(1).strip())


def find_canonical(html: str) -> str:
    forward = re.search(
        r"<link[^>]+rel=[\"']canonical[\"'][^>]*href=[\"']([^\"']+)[\"'][^>]*>", html, re.IGNORECASE
    )
    if forward and forward.group(1).strip():
        return forward.group(1).strip()
    reverse = re.search(
        r"<link[^>]+href=[\"']([^\"']+)[\"'][^>]*rel=[\"']canonical[\"'][^>]*>", html, re.IGNORECASE
    )
    return reverse.group(1).strip() if reverse else ""


def extract_body_text(html: str) -> str:
    """Readable text: no script/style/noscript, body only when present, whitespace collapsed."""
    cleaned = re.sub(r"<script[\s\S]*?</script>", " ", html, flags=re.IGNORECASE)
    cleaned = re.sub(r"<style[\s\S]*?</style>", " ", cleaned, flags=re.IGNORECASE)
    cleaned = re.sub(r"<noscript[\s\S]*?</noscript>", " ", cleaned, flags=re.IGNORECASE)

    match = re.search(r"<body[^>]*>([\s\S]*?)</body>", cleaned, re.IGNORECASE)
    body = match.group(1) if match and match.group(1) else cleaned
    return decode_entities(re.sub(r"\s+", " ", strip_tags(body)).strip())


def collect_schema_types(value: Any, types: List[str]) -> None:
    """Collect every @type string from a parsed JSON-LD object graph."""
    if isinstance(value, list):
        for item in value:
            collect_schema_types(item, types)
        return
    if not isinstance(value, dict):
        return

    raw_type = value.get("@type")
    candidates = raw_type if isinstance(raw_type, list) else [raw_type]
    for candidate in candidates:
        if isinstance(candidate, str) and candidate not in types:
            types.append(candidate)

    for item in value.values():
        collect_schema_types(item, types)


def _is_json_ld_type(value: Optional[str]) -> bool:
    return bool(value) and value.strip().lower() == "application/ld+json"


def inspect_json_ld(soup: BeautifulSoup) -> JsonLdSummary:
    summary = JsonLdSummary()
    for script in soup.find_all("script", type=_is_json_ld_type):
        text = (script.string or script.get_text() or "").strip()
        if not text:
            continue
        summary.total += 1
        try:
            parsed = json.loads(text)
        except (json.JSONDecodeError, ValueError):
            summary.parse_errors += 1
            continue
        summary.valid_scripts.append(text)
        collect_schema_types(parsed, summary.types)
    return summary


def has_about_contact_links(soup: BeautifulSoup, base_url: str) -> bool:
    """True if any same-host link points at an about or contact path."""
    base_host = (urlsplit(base_url).hostname or "").lower()
    for link in soup.find_all("a", href=True):
        try:
            resolved = urlsplit(urljoin(base_url, link["href"].strip()))
        except ValueError:
            continue
        if (resolved.hostname or "").lower() != base_host:
            continue
        path = f"{resolved.path}{'?' + resolved.query if resolved.query else ''}".lower()
        if "/about" in path or "/contact" in path:
            return True
    return False


def detect_js_shell(readable_text: str, script_count: int) -> JsShell:
    """Flag pages that look like client-rendered shells with little server-side text."""
    readable_len = len(readable_text.strip())
    flagged = (readable_len < DEEP_TEXT_CHARS and script_count >= 10) or (
        readable_len < 300 and script_count >= 6
    )
    if not flagged:
        return JsShell(flag=False)
    return JsShell(
        flag=True,
        evidence=(
            f"Likely JS-rendered shell: readable text {readable_len} chars, scripts {script_count}. "
            "Server-render key content or add SSR/prerender."
        ),
    )


def extract_signals(html: str, url: str) -> PageSignals:
    """Parse the page once and pull out every signal the checks need."""
    soup = BeautifulSoup(html or "", "html.parser")
    body_text = extract_body_text(html or "")
    script_count = count_matches(html or "", r"<script\b")

    return PageSignals(
        title=extract_title(html or ""),
        meta_description=find_meta_tag(html or "", "description"),
        robots=find_meta_tag(html or "", "robots"),
        canonical=find_canonical(html or ""),
        body_text=body_text,
        script_count=script_count,
        h1_count=count_matches(html or "", r"<h1\b[^>]*>"),
        heading_count=count_matches(html or "", r"<h[2-3]\b[^>]*>"),
        json_ld=inspect_json_ld(soup),
        has_about_contact=bool(TRUST_TEXT_PATTERN.search(body_text.lower()))
        or has_about_contact_links(soup, url),
        js_shell=detect_js_shell(body_text, script_count),
    )


def url_host_and_path(value: str, base: str = None) -> Optional[Tuple[str, str]]:
    """(host, path) of an absolute URL, resolving against base when given."""
    if not value:
        return None
    try:
        parsed = urlsplit(urljoin(base, value) if base else value)
    except ValueError:
        return None
    if not parsed.scheme or not parsed.netloc:
        return None
    host = parsed.netloc.rpartition("@")[2].lower()
    return host, parsed.path or "/"


def crawl_base(final_url: str, url: str) -> Optional[str]:
    """Origin used for robots.txt and sitemap.xml probes."""
    for candidate in (final_url, url):
        if not candidate:
            continue
        parsed = urlsplit(candidate)
        if parsed.scheme and parsed.netloc:
            return f"{parsed.scheme}://{parsed.netloc}"
    return None


def _result(
    definition: CheckDefinition,
    status: str,
    points: int,
    evidence: str,
    snippet: Optional[str] = None,
) -> CheckResult:
    return CheckResult(
        id=definition.id,
        name=definition.name,
        category=definition.category,
        max_points=definition.max_points,
        fix=definition.fix,
        status=status,
        points=max(0, min(definition.max_points, points)),
        evidence=evidence,
        snippet=snippet,
    )


def check_fetchability(page: FetchResult) -> CheckResult:
    html = page.html or ""
    if page.ok and len(html) > SHORT_BODY_CHARS:
        return _result(ACCESS_FETCH, PASS, ACCESS_FETCH.max_points,
                       f"Fetched HTML successfully ({len(html):,} chars).")
    if page.ok:
        return _result(ACCESS_FETCH, WARN, 5, f"Fetched HTML successfully ({len(html):,} chars).")
    return _result(ACCESS_FETCH, FAIL, 0, page.error or f"Fetch failed ({page.status}).")


def check_http_status(page: FetchResult) -> CheckResult:
    passed = 200 <= page.status < 300
    return _result(
        ACCESS_STATUS,
        PASS if passed else FAIL,
        ACCESS_STATUS.max_points if passed else 0,
        f"Final status code: {page.status}.",
    )


def check_redirects(page: FetchResult, url: str, signals: PageSignals) -> CheckResult:
    hops = page.redirect_count
    if hops == 0:
        status, points = PASS, ACCESS_REDIRECTS.max_points
    elif hops <= 3:
        status, points = WARN, 4
    else:
        status, points = FAIL, 0
    evidence = [f"Redirect hops detected: {hops}. Final URL: {page.final_url}."]

    final = url_host_and_path(page.final_url)
    canonical = url_host_and_path(signals.canonical, page.final_url or url)
    if canonical and final and canonical[0] != final[0]:
        if status != FAIL:
            status, points = WARN, min(points, 3)
        evidence.append(f"Canonical host ({canonical[0]}) differs from final host ({final[0]}).")

    return _result(ACCESS_REDIRECTS, status, points, " ".join(evidence))


def check_robots_txt(robots: Optional[FetchResult]) -> CheckResult:
    if robots is None:
        return _result(ACCESS_ROBOTS_TXT, WARN, 2, "Could not evaluate robots.txt for this URL origin.")

    body = (robots.html or "").strip()
    if robots.ok and len(body) >= MIN_ROBOTS_CHARS:
        return _result(ACCESS_ROBOTS_TXT, PASS, ACCESS_ROBOTS_TXT.max_points,
                       f"robots.txt reachable ({len(body)} chars).")
    if robots.status == 404 or robots.ok:
        return _result(ACCESS_ROBOTS_TXT, WARN, 2,
                       f"robots.txt weak or missing (status {robots.status}, {len(body)} chars).")
    return _result(ACCESS_ROBOTS_TXT, FAIL, 0, f"robots.txt unavailable (status {robots.status}).")


def check_sitemap_xml(sitemap: Optional[FetchResult]) -> CheckResult:
    if sitemap is None:
        return _result(ACCESS_SITEMAP_XML, WARN, 2, "Could not evaluate sitemap.xml for this URL origin.")

    looks_valid = bool(SITEMAP_SHAPE_PATTERN.search(sitemap.html or ""))
    if sitemap.ok and looks_valid:
        return _result(ACCESS_SITEMAP_XML, PASS, ACCESS_SITEMAP_XML.max_points,
                       f"sitemap.xml reachable and valid (status {sitemap.status}).")
    if sitemap.status == 404 or sitemap.ok:
        return _result(ACCESS_SITEMAP_XML, WARN, 2,
                       f"sitemap.xml missing or not parseable as sitemap (status {sitemap.status}).")
    return _result(ACCESS_SITEMAP_XML, FAIL, 0, f"sitemap.xml unavailable (status {sitemap.status}).")


def check_title(signals: PageSignals) -> CheckResult:
    title = signals.title
    snippet = f"<title>{title}</title>" if title else None
    if len(title) >= 18:
        return _result(META_TITLE, PASS, META_TITLE.max_points, f"Title found ({len(title)} chars).", snippet)
    if title:
        return _result(META_TITLE, WARN, 3, f"Title found ({len(title)} chars).", snippet)
    return _result(META_TITLE, FAIL, 0, "No title tag found.")


def _description_evidence(length: int) -> str:
    if length == 0:
        return "Meta description length: 0 (missing; ideal 70-160)."
    if length < 50:
        return f"Meta description length: {length} (too short; ideal 70-160)."
    if length < 70:
        return f"Meta description length: {length} (slightly short; ideal 70-160)."
    if length <= 160:
        return f"Meta description length: {length} (ideal 70-160)."
    if length <= 200:
        return f"Meta description length: {length} (slightly long; ideal 70-160)."
    return f"Meta description length: {length} (too long; ideal 70-160)."


def check_meta_description(signals: PageSignals) -> CheckResult:
    length = signals.description_length
    if 70 <= length <= 160:
        status, points = PASS, META_DESCRIPTION.max_points
    elif 50 <= length < 70 or 160 < length <= 200:
        status, points = WARN, 3
    else:
        status, points = FAIL, 0
    snippet = (
        f'<meta name="description" content="{signals.meta_description}" />'
        if signals.meta_description else None
    )
    return _result(META_DESCRIPTION, status, points, _description_evidence(length), snippet)


def check_indexing_directives(signals: PageSignals) -> CheckResult:
    robots = signals.robots
    noindex = bool(NOINDEX_PATTERN.search(robots))
    return _result(
        META_ROBOTS,
        FAIL if noindex else PASS,
        0 if noindex else META_ROBOTS.max_points,
        f"Robots directive: {robots}." if robots else "No robots meta set (default crawl behavior).",
        f'<meta name="robots" content="{robots}" />' if robots else None,
    )


def check_canonical(page: FetchResult, url: str, signals: PageSignals) -> CheckResult:
    canonical = signals.canonical
    if not canonical:
        return _result(META_CANONICAL, FAIL, 0, "Canonical link missing.")

    snippet = f'<link rel="canonical" href="{canonical}" />'
    final = url_host_and_path(page.final_url)
    resolved = url_host_and_path(canonical, page.final_url or url)
    mismatch = bool(resolved and final and resolved != final)
    if mismatch:
        return _result(
            META_CANONICAL, WARN, 3,
            f"Canonical URL found ({canonical}) but differs from final URL path/host ({page.final_url}).",
            snippet,
        )
    return _result(META_CANONICAL, PASS, META_CANONICAL.max_points, f"Canonical URL found: {canonical}.", snippet)


def check_h1(signals: PageSignals) -> CheckResult:
    count = signals.h1_count
    if count == 1:
        return _result(CONTENT_H1, PASS, CONTENT_H1.max_points, f"H1 count: {count}.")
    if count > 1:
        return _result(CONTENT_H1, WARN, 4, f"H1 count: {count}.")
    return _result(CONTENT_H1, FAIL, 0, f"H1 count: {count}.")


def check_heading_hierarchy(signals: PageSignals) -> CheckResult:
    count = signals.heading_count
    evidence = f"H2/H3 heading count: {count}."
    if count >= 2:
        return _result(CONTENT_HEADINGS, PASS, CONTENT_HEADINGS.max_points, evidence)
    if count == 1:
        return _result(CONTENT_HEADINGS, WARN, 2, evidence)
    return _result(CONTENT_HEADINGS, FAIL, 0, evidence)


def check_body_depth(signals: PageSignals) -> CheckResult:
    length = len(signals.body_text)
    evidence = f"Detected {length:,} readable characters in body content."
    if length >= DEEP_TEXT_CHARS:
        return _result(CONTENT_DEPTH, PASS, CONTENT_DEPTH.max_points, evidence)
    if length >= MEANINGFUL_TEXT_CHARS:
        return _result(CONTENT_DEPTH, WARN, 4, evidence)
    return _result(CONTENT_DEPTH, FAIL, 0, evidence)


def check_trust_signals(signals: PageSignals) -> CheckResult:
    if signals.has_about_contact:
        return _result(CONTENT_TRUST, PASS, CONTENT_TRUST.max_points,
                       "About/contact trust signals detected in text or links.")
    return _result(CONTENT_TRUST, WARN, 1, "No strong about/contact trust signal detected.")


def check_json_ld_presence(signals: PageSignals) -> CheckResult:
    total = signals.json_ld.total
    if total > 0:
        return _result(SD_PRESENCE, PASS, SD_PRESENCE.max_points, f"JSON-LD blocks found: {total}.")
    return _result(SD_PRESENCE, FAIL, 0, "No JSON-LD blocks found.")


def check_json_ld_validity(signals: PageSignals) -> CheckResult:
    json_ld = signals.json_ld
    snippet = json_ld.valid_scripts[0] if json_ld.valid_scripts else None
    if json_ld.total == 0:
        return _result(SD_VALIDITY, WARN, 3, "No JSON-LD to validate yet.")
    if json_ld.parse_errors == 0:
        return _result(SD_VALIDITY, PASS, SD_VALIDITY.max_points, "JSON-LD syntax parsed successfully.", snippet)
    return _result(SD_VALIDITY, FAIL, 0, f"JSON-LD parse errors: {json_ld.parse_errors}.", snippet)


def check_recommended_types(signals: PageSignals) -> CheckResult:
    json_ld = signals.json_ld
    found = any(t in RECOMMENDED_SCHEMA_TYPES for t in json_ld.types)
    if json_ld.types:
        evidence = f"Detected JSON-LD @type values: {', '.join(json_ld.types)}."
    else:
        evidence = "No recommended Organization/WebSite/LocalBusiness type detected."

    if found:
        return _result(SD_RECOMMENDED_TYPES, PASS, SD_RECOMMENDED_TYPES.max_points, evidence)
    if json_ld.total > 0:
        return _result(SD_RECOMMENDED_TYPES, WARN, 2, evidence)
    return _result(SD_RECOMMENDED_TYPES, FAIL, 0, evidence)


def run_checks(
    url: str,
    page: FetchResult,
    robots: Optional[FetchResult],
    sitemap: Optional[FetchResult],
    signals: PageSignals,
) -> List[CheckResult]:
    """Run the full battery in its fixed order."""
    return [
        check_fetchability(page),
        check_http_status(page),
        check_redirects(page, url, signals),
        check_robots_txt(robots),
        check_sitemap_xml(sitemap),
        check_title(signals),
        check_meta_description(signals),
        check_indexing_directives(signals),
        check_canonical(page, url, signals),
        check_h1(signals),
        check_heading_hierarchy(signals),
        check_body_depth(signals),
        check_trust_signals(signals),
        check_json_ld_presence(signals),
        check_json_ld_validity(signals),
        check_recommended_types(signals),
    ]
