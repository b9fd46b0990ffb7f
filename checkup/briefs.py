"""
Brief listing for AI Visibility Checkup.

Loads published brief entries from a JSON file and turns them into the
public /briefs.json listing.
"""

import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .analysis import format_timestamp
from .logging_setup import get_logger

logger = get_logger("briefs")

MAX_ITEMS = 100
SUMMARY_EXCERPT_CHARS = 160
NO_SUMMARY = "No summary available."

_MARKDOWN_PUNCTUATION = re.compile(r"[#>*_`\[\]()!-]")


@dataclass
class UrlSource:
    """Bare source link."""
    url: str
    kind: str = "url"


@dataclass
class DetailedSource:
    """Source link with optional type, label and notes."""
    url: str
    type: Optional[str] = None
    label: Optional[str] = None
    notes: Optional[str] = None
    kind: str = "detailed"


SourceEntry = Union[UrlSource, DetailedSource]


@dataclass
class BriefEntry:
    """One published brief as stored in the content file."""
    slug: str
    title: str
    date: datetime
    summary: str = ""
    description: str = ""
    body: str = ""
    city: str = ""
    sector: str = ""
    updated_at: Optional[str] = None
    sources: List[SourceEntry] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)


def normalize_meta(value: Optional[str]) -> str:
    """Slugify a city or sector name: "Palm Springs" -> "palm-springs"."""
    lowered = (value or "").lower().strip()
    return re.sub(r"[^a-z0-9]+", "-", lowered).strip("-")


def resolve_summary(summary: str = "", description: str = "", body: str = "") -> str:
    """Explicit summary, then description, then a body excerpt."""
    explicit = summary or description
    if explicit and explicit.strip():
        return explicit.strip()

    excerpt = _MARKDOWN_PUNCTUATION.sub(" ", body or "")
    excerpt = re.sub(r"\s+", " ", excerpt).strip()
    if excerpt:
        if len(excerpt) > SUMMARY_EXCERPT_CHARS:
            return f"{excerpt[:SUMMARY_EXCERPT_CHARS - 3]}..."
        return excerpt

    return NO_SUMMARY


def parse_source(raw: Any) -> SourceEntry:
    """A source is either a URL string or an object with at least a url."""
    if isinstance(raw, str):
        return UrlSource(url=raw)
    if isinstance(raw, dict) and isinstance(raw.get("url"), str):
        return DetailedSource(
            url=raw["url"],
            type=raw.get("type"),
            label=raw.get("label"),
            notes=raw.get("notes"),
        )
    raise ValueError(f"Unsupported source entry: {raw!r}")


def parse_date(value: Any) -> datetime:
    """Accepts YYYY-MM-DD or a full ISO timestamp; naive values are UTC."""
    if not isinstance(value, str) or not value.strip():
        raise ValueError("date is required")
    parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_entry(raw: Dict[str, Any]) -> BriefEntry:
    """Build a BriefEntry, raising ValueError/KeyError on malformed input."""
    if not raw.get("slug") or not raw.get("title"):
        raise ValueError("slug and title are required")

    updated_at = raw.get("updatedAt")
    return BriefEntry(
        slug=str(raw["slug"]),
        title=str(raw["title"]),
        date=parse_date(raw.get("date")),
        summary=raw.get("summary") or "",
        description=raw.get("description") or "",
        body=raw.get("body") or "",
        city=raw.get("city") or "",
        sector=raw.get("sector") or "",
        updated_at=updated_at if isinstance(updated_at, str) and updated_at else None,
        sources=[parse_source(s) for s in raw.get("sources") or []],
        tags=list(raw.get("tags") or []),
    )


def load_brief_entries(path: Path) -> List[BriefEntry]:
    """
    Load entries from a JSON array file.

    A missing or unreadable file yields an empty listing; malformed entries are skipped.
    """
    if path is None or not Path(path).exists():
        logger.warning(f"Briefs file not found: {path}")
        return []

    try:
        with open(path, encoding="utf-8") as f:
            raw_entries = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning(f"Briefs file {path} could not be read: {e}")
        return []

    if not isinstance(raw_entries, list):
        logger.warning(f"Briefs file {path} must hold a JSON array, got {type(raw_entries).__name__}")
        return []

    entries = []
    for i, raw in enumerate(raw_entries):
        try:
            entries.append(parse_entry(raw))
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning(f"Skipping malformed brief #{i} in {path}: {e}")
    return entries


def _meta_block(raw: str) -> Optional[Dict[str, str]]:
    value = (raw or "").strip()
    if not value:
        return None
    block = {"raw": value}
    slug = normalize_meta(value)
    if slug:
        block["slug"] = slug
    return block


def build_brief_listing(entries: List[BriefEntry], limit: int = MAX_ITEMS) -> List[Dict[str, Any]]:
    """Newest first, capped at limit."""
    ordered = sorted(entries, key=lambda e: e.date, reverse=True)[:limit]

    items = []
    for entry in ordered:
        item = {
            "title": entry.title,
            "date": format_timestamp(entry.date.timestamp()),
            "summary": resolve_summary(entry.summary, entry.description, entry.body),
            "city": _meta_block(entry.city),
            "sector": _meta_block(entry.sector),
            "url": f"/briefs/{entry.slug}",
        }
        if entry.updated_at:
            item["updatedAt"] = entry.updated_at
        items.append(item)
    return items
