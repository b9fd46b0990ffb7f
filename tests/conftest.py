"""
Shared pytest fixtures for AI Visibility Checkup tests.
"""

from pathlib import Path
from typing import Callable, Dict, List

import pytest
from requests.structures import CaseInsensitiveDict

from checkup.config import (
    Config,
    FetchConfig,
    RateLimitConfig,
    CacheConfig,
    ShareConfig,
    SubmissionConfig,
    ServerConfig,
)

PUBLIC_IP = "93.184.216.34"


class FakeResponse:
    """Streaming response double for the fetcher."""

    def __init__(self, status_code: int = 200, body="", headers: Dict[str, str] = None, encoding="utf-8"):
        self.status_code = status_code
        self._body = body.encode("utf-8") if isinstance(body, str) else body
        self.headers = CaseInsensitiveDict(
            headers if headers is not None else {"content-type": "text/html; charset=utf-8"}
        )
        self.encoding = encoding
        self.closed = False

    def iter_content(self, chunk_size: int = 1):
        for i in range(0, len(self._body), chunk_size):
            yield self._body[i:i + chunk_size]

    def close(self):
        self.closed = True


class FakeSession:
    """Routes GETs by exact URL; unknown URLs get a 404."""

    def __init__(self, routes: Dict[str, object] = None):
        self.routes = dict(routes or {})
        self.calls: List[str] = []
        self.timeouts: Dict[str, object] = {}

    def get(self, url, **kwargs):
        self.calls.append(url)
        self.timeouts[url] = kwargs.get("timeout")
        route = self.routes.get(url)
        if route is None:
            return FakeResponse(404, "not found")
        if isinstance(route, Exception):
            raise route
        return route


def redirect(location: str, status: int = 301) -> FakeResponse:
    return FakeResponse(status, "", headers={"location": location})


@pytest.fixture
def make_response() -> Callable[..., FakeResponse]:
    return FakeResponse


@pytest.fixture
def make_session() -> Callable[..., FakeSession]:
    return FakeSession


@pytest.fixture
def make_redirect() -> Callable[..., FakeResponse]:
    return redirect


@pytest.fixture
def public_resolver() -> Callable[[str], List[str]]:
    """Resolver that maps every hostname to a public address."""
    return lambda host: [PUBLIC_IP]


@pytest.fixture
def fetch_config() -> FetchConfig:
    """Fetch configuration with short timeouts for tests."""
    return FetchConfig(page_timeout_seconds=2.0, probe_timeout_seconds=1.0)


@pytest.fixture
def briefs_path(tmp_path: Path) -> Path:
    return tmp_path / "briefs.json"


@pytest.fixture
def mock_config(fetch_config: FetchConfig, briefs_path: Path) -> Config:
    """Full configuration with every remote backend disabled."""
    return Config(
        fetch=fetch_config,
        rate_limit=RateLimitConfig(),
        cache=CacheConfig(),
        share=ShareConfig(kv_url="", kv_token=""),
        submission=SubmissionConfig(github_token=""),
        server=ServerConfig(dev_mode=False, briefs_file=briefs_path),
    )


@pytest.fixture
def sample_html_complete() -> str:
    """A page that satisfies every check."""
    paragraph = (
        "Desert Bloom designs and maintains water-wise landscapes for homes, "
        "resorts and small businesses across the Coachella Valley, from Palm Springs to Indio. "
    )
    return f"""
    <!DOCTYPE html>
    <html lang="en">
    <head>
        <meta charset="UTF-8">
        <title>Desert Bloom Landscaping | Palm Desert</title>
        <meta name="description" content="Desert Bloom designs water-wise landscapes for homes and businesses across Palm Desert and the Coachella Valley.">
        <link rel="canonical" href="https://example.com/">
        <script type="application/ld+json">
        {{"@context": "https://schema.org", "@type": "Organization", "name": "Desert Bloom", "url": "https://example.com/"}}
        </script>
    </head>
    <body>
        <nav><a href="/">Home</a> <a href="/services">Services</a> <a href="/contact">Contact</a></nav>
        <h1>Water-wise landscaping in Palm Desert</h1>
        <h2>Services</h2>
        <p>{paragraph * 3}</p>
        <h2>Service area</h2>
        <p>{paragraph * 3}</p>
    </body>
    </html>
    """


@pytest.fixture
def sample_robots_txt() -> str:
    return "User-agent: *\nAllow: /\nSitemap: https://example.com/sitemap.xml\n"


@pytest.fixture
def sample_sitemap_xml() -> str:
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">'
        "<url><loc>https://example.com/</loc></url></urlset>"
    )


@pytest.fixture
def complete_site(make_response, make_session, sample_html_complete, sample_robots_txt, sample_sitemap_xml):
    """Session serving a fully healthy site at https://example.com/."""
    return make_session({
        "https://example.com/": make_response(200, sample_html_complete),
        "https://example.com/robots.txt": make_response(200, sample_robots_txt, {"content-type": "text/plain"}),
        "https://example.com/sitemap.xml": make_response(200, sample_sitemap_xml, {"content-type": "application/xml"}),
    })


@pytest.fixture
def sample_html_js_shell() -> str:
    """Client-rendered shell: many scripts, almost no text."""
    scripts = "\n".join(f'<script src="/static/chunk-{i}.js"></script>' for i in range(12))
    return f"""
    <html>
    <head><title>App</title></head>
    <body><div id="root">Loading</div>{scripts}</body>
    </html>
    """
