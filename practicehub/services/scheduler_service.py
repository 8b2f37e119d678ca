"""
PracticeHub Core
Scheduler Service.

Job registry plus a runner that executes registered jobs inside a Flask
app context. Triggering (cron, a worker, or a manual call) is left to the
deployment; this module only knows how to run a job by name and what
happened the last time it ran.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Callable

from flask import Flask

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job Registry
# ═══════════════════════════════════════════════════════════════════════════

_job_registry: dict[str, Callable] = {}


def register_job(name: str):
    """Decorator to register a job function.

    Usage:
        @register_job("dormancy_scan")
        def scan_dormant_customers(app):
            ...
    """
    def decorator(fn: Callable) -> Callable:
        _job_registry[name] = fn
        return fn
    return decorator


def get_registered_jobs() -> dict[str, Callable]:
    """Return all registered job functions."""
    return dict(_job_registry)


class SchedulerService:
    """
    Lightweight scheduler service.

    Jobs are executed within the Flask app context. The last result per job
    is kept in memory for the health endpoint and for tests.
    """

    _app: Flask | None = None
    _last_runs: dict[str, dict] = {}

    @classmethod
    def init_app(cls, app: Flask) -> None:
        cls._app = app
        cls._last_runs = {}
        app.extensions["scheduler"] = cls
        logger.info("SchedulerService initialized with %d registered jobs",
                    len(_job_registry))

    @classmethod
    def run_job(cls, job_name: str) -> dict:
        """
        Execute a single job by name.

        Returns:
            Dict with job_name, status, duration_ms, result and error.
        """
        fn = _job_registry.get(job_name)
        if not fn:
            return {"job_name": job_name, "status": "error", "error": f"Unknown job: {job_name}"}

        if not cls._app:
            return {"job_name": job_name, "status": "error", "error": "Scheduler not initialized"}

        start = time.monotonic()
        result = None
        error = None
        status = "success"

        try:
            with cls._app.app_context():
                result = fn(cls._app)
        except Exception as exc:
            # One failing job must not take the runner down with it
            status = "failed"
            error = str(exc)
            logger.exception("Job %s failed", job_name, extra={"job_name": job_name})

        duration_ms = int((time.monotonic() - start) * 1000)
        run = {
            "job_name": job_name,
            "status": status,
            "duration_ms": duration_ms,
            "result": result,
            "error": error,
            "finished_at": datetime.now(timezone.utc).isoformat(),
        }
        cls._last_runs[job_name] = run
        return run

    @classmethod
    def list_jobs(cls) -> list[dict]:
        """List all registered jobs with their last run, if any."""
        return [
            {
                "job_name": name,
                "description": (fn.__doc__ or "").strip().splitlines()[0] if fn.__doc__ else "",
                "last_run": cls._last_runs.get(name),
            }
            for name, fn in sorted(_job_registry.items())
        ]
