"""
Error taxonomy for AI Visibility Checkup.

Upstream failures (timeouts, non-2xx, redirect exhaustion) are never raised;
they are folded into FetchResult values and scored.
"""


class CheckupError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InputError(CheckupError):
    """Malformed URL or missing/invalid request fields."""


class SecurityRejection(CheckupError):
    """Target resolves to a private, local or unresolvable address."""


class RateLimitExceeded(CheckupError):
    """Client exceeded the burst or daily allowance."""

    status_code = 429

    def __init__(self, message: str, retry_after_seconds: int):
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class StoreFailure(Exception):
    """Remote store unavailable or misconfigured. Callers degrade to memory."""
