"""
Per-client rate limiting: continuous token bucket plus a daily cap.

State is held in process memory and is not consistent across instances.
"""

import math
import time
from dataclasses import dataclass, replace
from typing import Callable, Mapping, Optional

from .config import RateLimitConfig
from .stores import TTLStore
from .logging_setup import get_logger

logger = get_logger("rate_limit")


@dataclass
class RateState:
    """Bucket and daily window for one client."""
    day_start: float
    day_count: int
    tokens: float
    last_refill: float


@dataclass
class RateDecision:
    """Outcome of a rate limit check."""
    allowed: bool
    retry_after_seconds: int
    burst_tokens: float
    daily_remaining: int

    @property
    def remaining(self) -> dict:
        return {"burstTokens": self.burst_tokens, "dailyRemaining": self.daily_remaining}


def client_id_from(client_host: Optional[str], headers: Mapping[str, str]) -> str:
    """
    Derive the client identifier.

    Connection address first, then the first X-Forwarded-For entry,
    then X-Real-IP.
    """
    if client_host:
        return client_host
    forwarded = headers.get("x-forwarded-for") or ""
    first = forwarded.split(",")[0].strip()
    if first:
        return first
    real_ip = (headers.get("x-real-ip") or "").strip()
    return real_ip or "unknown"


class RateLimiter:
    """Token bucket (capacity burst_tokens, refilled over burst_window) with a daily cap."""

    def __init__(
        self,
        config: RateLimitConfig = None,
        store: TTLStore = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or RateLimitConfig()
        # State outlives one day window so a reset can be observed.
        self.store = store if store is not None else TTLStore(
            default_ttl_seconds=self.config.day_seconds * 2,
            clock=clock,
            max_entries=self.config.max_clients,
        )
        self.clock = clock

    def consume(self, client_id: str, now: Optional[float] = None) -> RateDecision:
        """Check and, when allowed, consume one request for client_id."""
        now = self.clock() if now is None else now
        cfg = self.config
        decision = {}

        def apply(current: Optional[RateState]) -> RateState:
            state = replace(current) if current else RateState(
                day_start=now,
                day_count=0,
                tokens=float(cfg.burst_tokens),
                last_refill=now,
            )

            if now - state.day_start >= cfg.day_seconds:
                state.day_start = now
                state.day_count = 0

            elapsed = max(0.0, now - state.last_refill)
            refill = (elapsed / cfg.burst_window_seconds) * cfg.burst_tokens
            state.tokens = min(float(cfg.burst_tokens), state.tokens + refill)
            state.last_refill = now

            if state.day_count >= cfg.daily_limit:
                reset_in = state.day_start + cfg.day_seconds - now
                decision["result"] = RateDecision(
                    allowed=False,
                    retry_after_seconds=max(1, math.ceil(reset_in)),
                    burst_tokens=round(state.tokens, 2),
                    daily_remaining=0,
                )
                return state

            if state.tokens < 1:
                seconds_per_token = cfg.burst_window_seconds / cfg.burst_tokens
                decision["result"] = RateDecision(
                    allowed=False,
                    retry_after_seconds=max(1, math.ceil((1 - state.tokens) * seconds_per_token)),
                    burst_tokens=round(state.tokens, 2),
                    daily_remaining=max(0, cfg.daily_limit - state.day_count),
                )
                return state

            state.tokens -= 1
            state.day_count += 1
            decision["result"] = RateDecision(
                allowed=True,
                retry_after_seconds=0,
                burst_tokens=round(state.tokens, 2),
                daily_remaining=max(0, cfg.daily_limit - state.day_count),
            )
            return state

        self.store.update(client_id, apply)
        result = decision["result"]
        if not result.allowed:
            logger.info(f"Rate limited {client_id}: retry after {result.retry_after_seconds}s")
        return result
