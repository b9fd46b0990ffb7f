#!/usr/bin/env python3
"""
Health check module for AI Visibility Checkup.

Provides health status for the /health endpoint and container orchestration.
Can be run as a standalone script or imported for programmatic use.
"""

import sys
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

from .config import Config, LOG_DIR, load_config, validate_config


@dataclass
class HealthCheckResult:
    """Result of a health check."""
    name: str
    healthy: bool
    message: str
    details: Dict[str, Any] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"healthy": self.healthy, "message": self.message}
        if self.details:
            data["details"] = self.details
        return data


def check_log_directory() -> HealthCheckResult:
    """Check the log directory exists and is writable."""
    if not LOG_DIR.exists():
        try:
            LOG_DIR.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            return HealthCheckResult(
                name="logs",
                healthy=False,
                message=f"Log directory cannot be created ({e})",
            )

    test_file = LOG_DIR / ".write_test"
    try:
        test_file.touch()
        test_file.unlink()
    except OSError as e:
        return HealthCheckResult(
            name="logs",
            healthy=False,
            message=f"Log directory not writable ({e})",
        )

    return HealthCheckResult(name="logs", healthy=True, message="Log directory OK and writable")


def check_config(config: Config) -> HealthCheckResult:
    """
    Check configuration (without exposing secrets).

    Missing optional backends are reported but do not make the service unhealthy.
    """
    warnings = validate_config(config)
    fatal = [w for w in warnings if "must" in w]

    return HealthCheckResult(
        name="config",
        healthy=not fatal,
        message=f"Config errors: {len(fatal)} issues" if fatal else "Configuration valid",
        details={"warnings": warnings} if warnings else None,
    )


def check_share_backend(config: Config) -> HealthCheckResult:
    """Report which backend share links are written to."""
    if config.share.remote_enabled:
        return HealthCheckResult(
            name="share_store",
            healthy=True,
            message="KV REST backend configured",
        )
    return HealthCheckResult(
        name="share_store",
        healthy=True,
        message="In-memory share store (links do not survive restarts)",
    )


def check_briefs_file(config: Config) -> HealthCheckResult:
    path = config.server.briefs_file
    if path is None or not path.exists():
        return HealthCheckResult(
            name="briefs",
            healthy=True,
            message="Briefs file not found; listing is empty",
            details={"path": str(path)},
        )
    return HealthCheckResult(name="briefs", healthy=True, message="Briefs file present")


def run_all_checks(config: Config = None) -> Tuple[bool, List[HealthCheckResult]]:
    """
    Run all health checks.

    Returns:
        (all_healthy, results)
    """
    config = config or load_config()
    checks = [
        check_log_directory,
        lambda: check_config(config),
        lambda: check_share_backend(config),
        lambda: check_briefs_file(config),
    ]

    results = []
    for check_fn in checks:
        try:
            results.append(check_fn())
        except Exception as e:
            results.append(HealthCheckResult(
                name=getattr(check_fn, "__name__", "check").replace("check_", ""),
                healthy=False,
                message=f"Check failed: {e}",
            ))

    all_healthy = all(r.healthy for r in results)
    return all_healthy, results


def main():
    """CLI entry point for health checks."""
    all_healthy, results = run_all_checks()

    for result in results:
        status = "OK" if result.healthy else "FAIL"
        print(f"[{status}] {result.name}: {result.message}")

    if all_healthy:
        print("\nOverall: Healthy")
        sys.exit(0)
    else:
        print("\nOverall: Unhealthy")
        sys.exit(1)


if __name__ == "__main__":
    main()
