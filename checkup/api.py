"""
HTTP API for AI Visibility Checkup.
FastAPI app that runs checkups, serves share links, accepts brief
submissions, and lists published briefs.
"""

import re
from dataclasses import replace
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from .analysis import CheckupService
from .briefs import build_brief_listing, load_brief_entries
from .config import Config, RateLimitConfig, load_config, validate_config
from .errors import CheckupError, InputError, RateLimitExceeded
from .fetcher import Resolver
from .healthcheck import run_all_checks
from .rate_limit import RateLimiter, client_id_from
from .share_store import ShareStore, build_share_payload
from .submissions import SubmissionQueue, validate_submission
from .logging_setup import get_logger, setup_logging

logger = get_logger("api")

CHECKUP_RATE_MESSAGE = "Rate limit reached. Try again shortly (2/min burst, 30/day)."
SUBMIT_RATE_MESSAGE = "Too many submissions from this IP. Please try again shortly."
INVALID_CHECKUP_BODY = "Invalid JSON body. Expected { url: string }."
SHARE_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{6,40}$")


def _client_id(request: Request) -> str:
    host = request.client.host if request.client else None
    return client_id_from(host, request.headers)


async def _json_body(request: Request, message: str) -> dict:
    try:
        body = await request.json()
    except ValueError:
        raise InputError(message)
    if not isinstance(body, dict):
        raise InputError(message)
    return body


def create_app(
    config: Config = None,
    service: CheckupService = None,
    limiter: RateLimiter = None,
    share_store: ShareStore = None,
    submission_queue: SubmissionQueue = None,
    submission_limiter: RateLimiter = None,
    resolver: Resolver = None,
) -> FastAPI:
    """
    Build the application with its process-wide stores.

    Every collaborator can be injected; defaults are in-memory.
    """
    config = config or load_config()

    app = FastAPI(title="AI Visibility Checkup", docs_url=None, redoc_url=None)
    app.state.config = config
    app.state.resolver = resolver
    app.state.service = service or CheckupService(
        fetch_config=config.fetch,
        cache_config=config.cache,
        resolver=resolver,
    )
    app.state.limiter = limiter or RateLimiter(config.rate_limit)
    app.state.share_store = share_store or ShareStore(config.share)
    app.state.submission_queue = submission_queue or SubmissionQueue(config.submission)
    app.state.submission_limiter = submission_limiter or RateLimiter(
        replace(RateLimitConfig(), daily_limit=config.submission.daily_limit)
    )

    @app.exception_handler(CheckupError)
    async def handle_checkup_error(request: Request, exc: CheckupError):
        body = {"message": exc.message}
        headers = {"Cache-Control": "no-store"}
        if isinstance(exc, RateLimitExceeded):
            body["retryAfterSeconds"] = exc.retry_after_seconds
            headers["Retry-After"] = str(exc.retry_after_seconds)
        debug = getattr(request.state, "debug", None)
        if debug:
            body["debug"] = debug
        return JSONResponse(body, status_code=exc.status_code, headers=headers)

    @app.post("/api/ai-visibility-checkup.json")
    async def run_checkup(request: Request):
        state = request.app.state
        decision = state.limiter.consume(_client_id(request))
        if state.config.server.dev_mode:
            request.state.debug = {"cacheHit": False, "remainingRateLimit": decision.remaining}
        if not decision.allowed:
            raise RateLimitExceeded(CHECKUP_RATE_MESSAGE, decision.retry_after_seconds)

        body = await _json_body(request, INVALID_CHECKUP_BODY)
        raw_url = body.get("url")
        if not isinstance(raw_url, str) or not raw_url.strip():
            raise InputError("Please provide a URL.")

        payload, cache_hit = await run_in_threadpool(state.service.analyze, raw_url)
        data = payload.to_dict()

        if body.get("createShare") is True:
            record = await run_in_threadpool(state.share_store.create, build_share_payload(payload))
            origin = str(request.base_url).rstrip("/")
            data["shareUrl"] = f"{origin}{state.config.share.share_path}?sid={record.id}"

        if state.config.server.dev_mode:
            data["debug"] = {"cacheHit": cache_hit, "remainingRateLimit": decision.remaining}

        return JSONResponse(
            data,
            headers={"Cache-Control": "no-store", "X-Cache": "HIT" if cache_hit else "MISS"},
        )

    @app.get("/api/ai-visibility-share.json")
    async def get_share(request: Request, sid: str = ""):
        sid = sid.strip()
        if not SHARE_ID_PATTERN.match(sid):
            return JSONResponse({"message": "Invalid share id."}, status_code=400)

        payload = await run_in_threadpool(request.app.state.share_store.get, sid)
        if payload is None:
            return JSONResponse({"message": "Share not found or expired."}, status_code=404)

        return JSONResponse(payload.to_dict(), headers={"Cache-Control": "public, max-age=120"})

    @app.post("/api/submit-brief.json")
    async def submit_brief(request: Request):
        state = request.app.state
        client_id = _client_id(request)
        decision = state.submission_limiter.consume(client_id)
        if not decision.allowed:
            raise RateLimitExceeded(SUBMIT_RATE_MESSAGE, decision.retry_after_seconds)

        body = await _json_body(request, "Invalid JSON body.")
        submission = await run_in_threadpool(
            validate_submission,
            body,
            client_id,
            request.headers.get("user-agent"),
            state.config.submission,
            state.resolver,
        )
        outcome = await run_in_threadpool(state.submission_queue.submit, submission)
        return JSONResponse(outcome.to_dict())

    @app.get("/briefs.json")
    async def list_briefs(request: Request):
        server = request.app.state.config.server
        entries = load_brief_entries(server.briefs_file)
        return JSONResponse(
            build_brief_listing(entries, limit=server.max_briefs),
            headers={"Cache-Control": "public, max-age=300"},
        )

    @app.get("/health")
    async def health(request: Request):
        all_healthy, results = run_all_checks(request.app.state.config)
        return JSONResponse(
            {
                "status": "ok" if all_healthy else "degraded",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "checks": {r.name: r.to_dict() for r in results},
            },
            status_code=200 if all_healthy else 503,
        )

    return app


app = create_app()


def main():
    """Serve the API with uvicorn."""
    import argparse

    import uvicorn

    parser = argparse.ArgumentParser(description="AI Visibility Checkup API server")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    args = parser.parse_args()

    setup_logging()
    for warning in validate_config(app.state.config):
        logger.warning(warning)
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
