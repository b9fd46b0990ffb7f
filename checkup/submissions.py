"""
Brief submissions for AI Visibility Checkup.

Validates community brief submissions and files them as GitHub issues.
Without a token, or when GitHub fails, submissions are kept in an
in-memory queue for the lifetime of the process.
"""

import hashlib
import re
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

import requests
from requests.exceptions import RequestException

from .config import SubmissionConfig
from .errors import InputError
from .analysis import format_timestamp
from .fetcher import Resolver, assert_safe_target, normalize_url
from .logging_setup import get_logger

logger = get_logger("submissions")

THANKS_MESSAGE = "Thanks — queued for review."
MISSING_TOKEN_WARNING = "GITHUB_TOKEN is missing; this submission is only stored in memory for this runtime."
ISSUE_MARKER = "<!-- brief-submission-v1 -->"
MAX_ISSUE_TITLE_CHARS = 220

LINK_PATTERN = re.compile(r"https?://[^\s)]+", re.IGNORECASE)
DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


@dataclass
class Submission:
    """A validated brief submission."""
    title: str
    summary: str
    source_url: str
    city: str
    sector: str
    date: str
    submitter_name: str
    submitter_email: str
    notes: str
    submitted_at: str
    ip_hash: str
    user_agent: str


@dataclass
class SubmissionOutcome:
    """Where a submission ended up."""
    storage: str  # "github" or "memory"
    issue_url: Optional[str] = None
    warning: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"ok": True, "message": THANKS_MESSAGE, "storage": self.storage}
        if self.issue_url:
            data["issueUrl"] = self.issue_url
        if self.warning:
            data["warning"] = self.warning
        return data


class GitHubError(Exception):
    """GitHub API error."""
    pass


def _trimmed(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def count_links(value: str) -> int:
    return len(LINK_PATTERN.findall(value))


def hash_ip(ip: str) -> str:
    return hashlib.sha256(ip.encode("utf-8")).hexdigest()[:16]


def normalize_source_url(raw: str, resolver: Resolver = None) -> str:
    """Normalize and guard the source URL, with submission-specific messages."""
    if not raw:
        raise InputError("Source URL is required.")
    try:
        url = normalize_url(raw)
    except InputError as e:
        if e.message == "Only http(s) URLs are allowed.":
            raise InputError("Source URL must start with http or https.")
        raise InputError("Source URL must be a valid URL.")
    assert_safe_target(url, resolver)
    return url


def validate_submission(
    body: Mapping[str, Any],
    ip: str,
    user_agent: str = None,
    config: SubmissionConfig = None,
    resolver: Resolver = None,
    now: float = None,
) -> Submission:
    """
    Validate raw form fields into a Submission.

    Raises InputError (or SecurityRejection for the source URL) with a
    user-facing message on the first problem found.
    """
    config = config or SubmissionConfig()
    fields = {name: _trimmed(body.get(name)) for name in (
        "title", "summary", "sourceUrl", "city", "sector", "date",
        "submitterName", "submitterEmail", "notes", "company",
    )}

    # Honeypot: humans never see this field
    if fields["company"]:
        raise InputError("Submission rejected.")

    title = fields["title"]
    if not 10 <= len(title) <= 140:
        raise InputError("Title must be between 10 and 140 characters.")

    summary = fields["summary"]
    if not 30 <= len(summary) <= 600:
        raise InputError("Summary must be between 30 and 600 characters.")
    if count_links(summary) > config.max_links_in_summary:
        raise InputError(
            f"Summary contains too many links. Please keep it to {config.max_links_in_summary} or fewer."
        )

    if fields["date"] and not DATE_PATTERN.match(fields["date"]):
        raise InputError("Date must use YYYY-MM-DD format.")

    if fields["submitterEmail"] and not EMAIL_PATTERN.match(fields["submitterEmail"]):
        raise InputError("Submitter email format is invalid.")

    source_url = normalize_source_url(fields["sourceUrl"], resolver)

    return Submission(
        title=title,
        summary=summary,
        source_url=source_url,
        city=fields["city"],
        sector=fields["sector"],
        date=fields["date"],
        submitter_name=fields["submitterName"],
        submitter_email=fields["submitterEmail"],
        notes=fields["notes"],
        submitted_at=format_timestamp(time.time() if now is None else now),
        ip_hash=hash_ip(ip),
        user_agent=user_agent or "unknown",
    )


def issue_body(submission: Submission) -> str:
    """Machine-readable issue body; the marker line lets a publisher script find it."""
    return "\n".join([
        ISSUE_MARKER,
        f"Title: {submission.title}",
        f"Summary: {submission.summary}",
        f"Source URL: {submission.source_url}",
        f"City: {submission.city}",
        f"Sector: {submission.sector}",
        f"Date: {submission.date}",
        f"Submitter: {submission.submitter_name}",
        f"Email: {submission.submitter_email}",
        f"Notes: {submission.notes}",
        "",
        f"Timestamp: {submission.submitted_at}",
        f"IP Hash: {submission.ip_hash}",
        f"User Agent: {submission.user_agent}",
    ])


class GitHubIssueClient:
    """Files submissions as issues in the configured repository."""

    def __init__(self, config: SubmissionConfig, session: requests.Session = None):
        self.config = config
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {config.github_token}",
            "Accept": "application/vnd.github+json",
            "Content-Type": "application/json",
            "User-Agent": config.user_agent,
        })

    def create_issue(self, submission: Submission) -> str:
        """Create the issue and return its html_url."""
        url = f"{self.config.api_base_url}/repos/{self.config.repo_owner}/{self.config.repo_name}/issues"
        payload = {
            "title": f"Brief Submission: {submission.title}"[:MAX_ISSUE_TITLE_CHARS],
            "body": issue_body(submission),
            "labels": list(self.config.labels),
        }

        try:
            resp = self.session.post(url, json=payload, timeout=self.config.request_timeout_seconds)
        except RequestException as e:
            raise GitHubError(f"GitHub request failed: {e}")

        if not 200 <= resp.status_code < 300:
            raise GitHubError(f"GitHub API error {resp.status_code}: {resp.text[:500]}")

        try:
            return resp.json()["html_url"]
        except (ValueError, KeyError) as e:
            raise GitHubError(f"GitHub returned an unexpected response: {e}")


class SubmissionQueue:
    """Accepts validated submissions; GitHub first, memory otherwise."""

    def __init__(self, config: SubmissionConfig = None, client: GitHubIssueClient = None):
        self.config = config or SubmissionConfig()
        self.client = client
        if self.client is None and self.config.github_token:
            self.client = GitHubIssueClient(self.config)
        self._memory: List[Submission] = []
        self._lock = threading.Lock()

    @property
    def pending(self) -> List[Submission]:
        with self._lock:
            return list(self._memory)

    def _remember(self, submission: Submission) -> None:
        with self._lock:
            self._memory.append(submission)

    def submit(self, submission: Submission) -> SubmissionOutcome:
        """Store a submission. Never raises."""
        if self.client is None:
            self._remember(submission)
            logger.info(f"Queued submission in memory (no GitHub token): {submission.title!r}")
            return SubmissionOutcome(storage="memory", warning=MISSING_TOKEN_WARNING)

        try:
            issue_url = self.client.create_issue(submission)
            logger.info(f"Filed submission as {issue_url}")
            return SubmissionOutcome(storage="github", issue_url=issue_url)
        except Exception as e:
            logger.warning(f"GitHub issue creation failed, keeping submission in memory: {e}")
            self._remember(submission)
            return SubmissionOutcome(
                storage="memory",
                warning=f"GitHub issue creation failed; submission kept in memory queue. {e}".strip(),
            )
