"""
Configuration management for AI Visibility Checkup.
Loads from environment variables with sensible defaults.
"""

import os
from pathlib import Path
from dataclasses import dataclass, field
from typing import List, Optional

# Base paths
PROJECT_ROOT = Path(__file__).parent.parent.resolve()
DATA_DIR = PROJECT_ROOT / "data"
LOG_DIR = Path(os.environ.get("CHECKUP_LOG_DIR", str(PROJECT_ROOT / "logs")))


def _env_flag(name: str, default: str = "") -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class FetchConfig:
    """Safe fetcher limits."""
    page_timeout_seconds: float = 10.0
    probe_timeout_seconds: float = 4.0
    max_redirects: int = 5
    max_body_chars: int = 1_500_000
    user_agent: str = "AICV-AI-Visibility-Checkup/1.0"
    accept: str = "text/html,application/xhtml+xml"


@dataclass
class RateLimitConfig:
    """Token bucket and daily cap per client."""
    burst_tokens: int = 2
    burst_window_seconds: float = 60.0
    daily_limit: int = 30
    day_seconds: float = 24 * 60 * 60
    max_clients: int = 10_000


@dataclass
class CacheConfig:
    """Analysis result cache."""
    ttl_seconds: float = 10 * 60
    max_entries: int = 1_000


@dataclass
class ShareConfig:
    """Share store configuration (KV REST backend is optional)."""
    kv_url: str = field(default_factory=lambda: (
        os.environ.get("KV_REST_API_URL") or os.environ.get("UPSTASH_REDIS_REST_URL") or ""
    ))
    kv_token: str = field(default_factory=lambda: (
        os.environ.get("KV_REST_API_TOKEN") or os.environ.get("UPSTASH_REDIS_REST_TOKEN") or ""
    ))
    ttl_seconds: int = 30 * 24 * 60 * 60
    key_prefix: str = "aio:"
    request_timeout_seconds: float = 5.0
    share_path: str = "/tools/aio/r/share"
    memory_max_entries: int = 1_000

    @property
    def remote_enabled(self) -> bool:
        return bool(self.kv_url and self.kv_token)


@dataclass
class SubmissionConfig:
    """Brief submission endpoint configuration."""
    github_token: str = field(default_factory=lambda: os.environ.get("GITHUB_TOKEN", ""))
    repo_owner: str = field(default_factory=lambda: os.environ.get("GITHUB_REPO_OWNER", "SunshineFM"))
    repo_name: str = field(default_factory=lambda: os.environ.get("GITHUB_REPO_NAME", "aicoachellavalley-site"))
    api_base_url: str = "https://api.github.com"
    user_agent: str = "AICV-Submit-Brief/1.0"
    request_timeout_seconds: float = 10.0
    daily_limit: int = 10
    max_links_in_summary: int = 3
    labels: List[str] = field(default_factory=lambda: ["brief-submission", "needs-review"])


@dataclass
class ServerConfig:
    """HTTP server behaviour."""
    dev_mode: bool = field(default_factory=lambda: _env_flag("CHECKUP_DEV_MODE"))
    briefs_file: Optional[Path] = field(default_factory=lambda: (
        Path(os.environ["BRIEFS_FILE"]) if os.environ.get("BRIEFS_FILE") else DATA_DIR / "briefs.json"
    ))
    max_briefs: int = 100


@dataclass
class Config:
    """Main configuration container."""
    fetch: FetchConfig = field(default_factory=FetchConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    share: ShareConfig = field(default_factory=ShareConfig)
    submission: SubmissionConfig = field(default_factory=SubmissionConfig)
    server: ServerConfig = field(default_factory=ServerConfig)


def load_config() -> Config:
    """Load configuration from environment variables."""
    return Config()


def validate_config(config: Config) -> List[str]:
    """
    Validate configuration and return list of warnings.

    Every backend is optional; missing ones degrade to in-memory storage.
    """
    warnings = []

    if not config.share.remote_enabled:
        warnings.append("KV_REST_API_URL/KV_REST_API_TOKEN not set; share links are memory-only")
    if not config.submission.github_token:
        warnings.append("GITHUB_TOKEN not set; brief submissions are queued in memory")
    if config.rate_limit.burst_tokens < 1:
        warnings.append("Rate limit burst_tokens must be at least 1")
    if config.fetch.max_redirects < 0:
        warnings.append("Fetch max_redirects must not be negative")

    return warnings
