"""
Fix pack exports for AI Visibility Checkup.
Renders one analysis into Markdown (Jinja2 template), JSON, and HTML snippets.
"""

import html
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List

from jinja2 import Environment, FileSystemLoader, TemplateNotFound

from .analyzer import CheckResult
from .payload import AnalysisPayload
from .scoring import MAX_TOP_FIXES, prioritized_checks
from .logging_setup import get_logger

logger = get_logger("exports")

TEMPLATES_DIR = Path(__file__).parent / "templates"

PLACEHOLDER_TITLE = "Business Name | Service + Location"
PLACEHOLDER_DESCRIPTION = "Concise summary of what you offer, where you operate, and who you serve."
WHY_IT_MATTERS = "Improves crawl understanding and retrieval quality."
PLACEMENT_NOTES = [
    "Paste headTags into <head>.",
    "Paste JSON-LD script in <head> or before </body>.",
]

_env = None


def _get_env() -> Environment:
    global _env
    if _env is None:
        _env = Environment(
            loader=FileSystemLoader(str(TEMPLATES_DIR)),
            trim_blocks=True,
            lstrip_blocks=True,
        )
    return _env


@dataclass
class RecommendedSnippets:
    """Copy-pasteable head tags and a JSON-LD starter."""
    head_tags: str
    json_ld_starter: str


def recommended_snippets(url: str, title: str, description: str, canonical: str) -> RecommendedSnippets:
    """Best-effort values from the page, falling back to placeholders."""
    safe_title = html.escape(title or PLACEHOLDER_TITLE)
    safe_description = html.escape(description or PLACEHOLDER_DESCRIPTION)
    safe_canonical = html.escape(canonical or url)

    json_ld_starter = json.dumps(
        {
            "@context": "https://schema.org",
            "@type": "Organization",
            "name": safe_title,
            "url": safe_canonical,
            "description": safe_description,
        },
        indent=2,
        ensure_ascii=False,
    )
    head_tags = "\n".join([
        f"<title>{safe_title}</title>",
        f'<meta name="description" content="{safe_description}" />',
        '<meta name="robots" content="index,follow" />',
        f'<link rel="canonical" href="{safe_canonical}" />',
    ])
    return RecommendedSnippets(head_tags=head_tags, json_ld_starter=json_ld_starter)


def build_markdown_export(payload: AnalysisPayload, checks: List[CheckResult], json_ld_starter: str) -> str:
    """Render the Markdown fix pack, or an empty string if the template is missing."""
    try:
        template = _get_env().get_template("fix_pack.md")
    except TemplateNotFound as e:
        logger.error(f"Template not found: {e}")
        return ""

    return template.render(
        payload=payload,
        prioritized=prioritized_checks(checks, limit=MAX_TOP_FIXES),
        why_it_matters=WHY_IT_MATTERS,
        json_ld_starter=json_ld_starter,
    )


def build_json_export(payload: AnalysisPayload, snippets: RecommendedSnippets) -> str:
    data = payload.to_dict(include_exports=False)
    data["snippets"] = {
        "headTags": snippets.head_tags,
        "jsonLdStarter": json.loads(snippets.json_ld_starter),
        "placementNotes": list(PLACEMENT_NOTES),
    }
    return json.dumps(data, indent=2, ensure_ascii=False)


def build_html_export(snippets: RecommendedSnippets) -> str:
    return "\n".join([
        "<!-- Paste into <head> -->",
        snippets.head_tags,
        "",
        "<!-- Paste into <head> or before </body> -->",
        '<script type="application/ld+json">',
        snippets.json_ld_starter,
        "</script>",
    ])


def build_exports(
    payload: AnalysisPayload,
    checks: List[CheckResult],
    title: str,
    description: str,
    canonical: str,
) -> Dict[str, str]:
    """All three export strings for one payload."""
    snippets = recommended_snippets(payload.url, title, description, canonical)
    return {
        "markdown": build_markdown_export(payload, checks, snippets.json_ld_starter),
        "json": build_json_export(payload, snippets),
        "html": build_html_export(snippets),
    }
