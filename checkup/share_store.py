"""
Share store for AI Visibility Checkup.

Publishes a sanitized subset of an analysis behind a short random id.
Writes go to a KV REST backend (Upstash / Vercel KV protocol) when
configured; any failure falls back to an in-process TTL map.
"""

import json
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests
from requests.exceptions import RequestException

from .config import ShareConfig
from .errors import StoreFailure
from .payload import AnalysisPayload
from .analyzer import PASS
from .stores import TTLStore
from .logging_setup import get_logger

logger = get_logger("share_store")

MAX_CATEGORIES = 4
MAX_FIXES = 7
MAX_TITLE_CHARS = 140
MAX_WHY_CHARS = 300
MAX_HOW_CHARS = 300
MAX_SNIPPET_CHARS = 400
SOURCE_SNIPPET_CHARS = 350


@dataclass
class ShareTopFix:
    title: str
    why: str
    how: str
    snippet: Optional[str] = None

    def to_dict(self) -> Dict[str, str]:
        data = {"title": self.title, "why": self.why, "how": self.how}
        if self.snippet:
            data["snippet"] = self.snippet
        return data


@dataclass
class SharePayload:
    """Public, size-capped subset of an AnalysisPayload."""
    url: str
    fetched_at: str
    rubric_version: str
    score: int
    grade: str
    confidence: str
    categories: List[Dict[str, Any]] = field(default_factory=list)
    top_fixes: List[ShareTopFix] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "fetchedAt": self.fetched_at,
            "rubricVersion": self.rubric_version,
            "score": self.score,
            "grade": self.grade,
            "confidence": self.confidence,
            "categories": [dict(c) for c in self.categories],
            "topFixes": [f.to_dict() for f in self.top_fixes],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SharePayload":
        return cls(
            url=str(data["url"]),
            fetched_at=str(data["fetchedAt"]),
            rubric_version=str(data["rubricVersion"]),
            score=int(data["score"]),
            grade=str(data["grade"]),
            confidence=str(data["confidence"]),
            categories=list(data.get("categories") or []),
            top_fixes=[
                ShareTopFix(
                    title=str(fix.get("title", "")),
                    why=str(fix.get("why", "")),
                    how=str(fix.get("how", "")),
                    snippet=fix.get("snippet"),
                )
                for fix in data.get("topFixes") or []
            ],
        )


@dataclass
class ShareRecord:
    id: str
    payload: SharePayload
    persistent: bool


def build_share_payload(analysis: AnalysisPayload) -> SharePayload:
    """Non-passing checks in battery order become the shared fixes."""
    fixes = [
        ShareTopFix(
            title=check.name,
            why=check.evidence,
            how=check.fix,
            snippet=check.snippet[:SOURCE_SNIPPET_CHARS] if check.snippet else None,
        )
        for check in analysis.checks
        if check.status != PASS
    ][:MAX_FIXES]

    return SharePayload(
        url=analysis.url,
        fetched_at=analysis.fetched_at,
        rubric_version=analysis.rubric_version,
        score=analysis.score,
        grade=analysis.grade,
        confidence=analysis.confidence,
        categories=[c.to_dict() for c in analysis.categories],
        top_fixes=fixes,
    )


def sanitize_share_payload(payload: SharePayload) -> SharePayload:
    """Cap list sizes and truncate free text."""
    return SharePayload(
        url=payload.url,
        fetched_at=payload.fetched_at,
        rubric_version=payload.rubric_version,
        score=payload.score,
        grade=payload.grade,
        confidence=payload.confidence,
        categories=[
            {
                "id": category.get("id"),
                "name": category.get("name"),
                "score": category.get("score"),
                "max": category.get("max"),
            }
            for category in payload.categories[:MAX_CATEGORIES]
        ],
        top_fixes=[
            ShareTopFix(
                title=fix.title[:MAX_TITLE_CHARS],
                why=fix.why[:MAX_WHY_CHARS],
                how=fix.how[:MAX_HOW_CHARS],
                snippet=fix.snippet[:MAX_SNIPPET_CHARS] if fix.snippet else None,
            )
            for fix in payload.top_fixes[:MAX_FIXES]
        ],
    )


class KVClient:
    """Minimal client for the Redis-over-REST command protocol."""

    def __init__(self, config: ShareConfig, session: requests.Session = None):
        self.config = config
        self.session = session or requests.Session()

    def command(self, *args: str) -> Any:
        if not self.config.remote_enabled:
            raise StoreFailure("KV config missing")

        encoded = "/".join(quote(str(arg), safe="") for arg in args)
        url = f"{self.config.kv_url.rstrip('/')}/{encoded}"
        try:
            response = self.session.get(
                url,
                headers={"Authorization": f"Bearer {self.config.kv_token}"},
                timeout=self.config.request_timeout_seconds,
            )
        except RequestException as e:
            raise StoreFailure(f"KV request failed: {e}")

        if not 200 <= response.status_code < 300:
            raise StoreFailure(f"KV command failed with {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise StoreFailure(f"KV returned invalid JSON: {e}")
        if not isinstance(data, dict):
            raise StoreFailure(f"KV returned unexpected body: {type(data).__name__}")
        return data.get("result")


class ShareStore:
    """Remote-first share records with an in-memory fallback."""

    def __init__(
        self,
        config: ShareConfig = None,
        memory: TTLStore = None,
        kv: KVClient = None,
    ):
        self.config = config or ShareConfig()
        self.memory = memory if memory is not None else TTLStore(
            max_entries=self.config.memory_max_entries
        )
        self.kv = kv or KVClient(self.config)

    def key_for(self, share_id: str) -> str:
        return f"{self.config.key_prefix}{share_id}"

    def create(self, payload: SharePayload, ttl_seconds: int = None) -> ShareRecord:
        ttl = ttl_seconds or self.config.ttl_seconds
        clean = sanitize_share_payload(payload)
        share_id = uuid.uuid4().hex[:12]
        key = self.key_for(share_id)

        try:
            self.kv.command("SET", key, json.dumps(clean.to_dict()), "EX", str(ttl))
            logger.info(f"Created share {share_id} in KV")
            return ShareRecord(id=share_id, payload=clean, persistent=True)
        except Exception as e:
            if self.config.remote_enabled:
                logger.warning(f"KV write failed for share {share_id}, using memory: {e}")
            self.memory.set(key, clean, ttl_seconds=ttl)
            return ShareRecord(id=share_id, payload=clean, persistent=False)

    def get(self, share_id: str) -> Optional[SharePayload]:
        key = self.key_for(share_id)

        try:
            raw = self.kv.command("GET", key)
            if isinstance(raw, str) and raw:
                return sanitize_share_payload(SharePayload.from_dict(json.loads(raw)))
        except StoreFailure as e:
            logger.debug(f"KV read unavailable for share {share_id}: {e}")
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning(f"Stored share {share_id} is malformed: {e}")

        return self.memory.get(key)
