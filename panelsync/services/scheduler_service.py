"""
Panelsync
Scheduler Service.

Lightweight interval scheduler: job functions register themselves by
name, each job has a persisted ScheduledJob row holding its interval and
run history, and a daemon thread ticks every SCHEDULER_TICK_SECONDS to run
whatever is due.

Architecture:
    - SchedulerService: Manages job registration and execution
    - Jobs are stored in ScheduledJob model for persistence
    - Manual trigger via `flask run-job <name>`
    - Pluggable job functions registered via decorator
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from flask import Flask

from panelsync.models import db
from panelsync.models.scheduling import ScheduledJob

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job Registry
# ═══════════════════════════════════════════════════════════════════════════

_job_registry: dict[str, Callable] = {}


def register_job(name: str):
    """Decorator to register a job function.

    Usage:
        @register_job("completion_sweep")
        def daily_sweep(app):
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

    Manages job registration, persistence, and execution.
    Jobs are executed within Flask app context.
    """

    _app: Flask | None = None
    _running: bool = False
    _thread: threading.Thread | None = None
    _stop_event: threading.Event | None = None

    @classmethod
    def init_app(cls, app: Flask) -> None:
        """Initialize scheduler with Flask app context."""
        cls._app = app
        app.extensions["scheduler"] = cls
        logger.info("SchedulerService initialized with %d registered jobs",
                    len(_job_registry))

    @classmethod
    def ensure_jobs_registered(cls) -> list[ScheduledJob]:
        """
        Ensure all registered jobs have a corresponding DB record.
        Creates missing records with the default interval.
        """
        if not cls._app:
            return []

        created = []
        with cls._app.app_context():
            for name, fn in _job_registry.items():
                existing = ScheduledJob.query.filter_by(job_name=name).first()
                if not existing:
                    job = ScheduledJob(
                        job_name=name,
                        description=(fn.__doc__ or f"Scheduled job: {name}").strip().splitlines()[0],
                        interval_seconds=_get_default_interval(name, cls._app),
                        status="active",
                        is_enabled=True,
                    )
                    db.session.add(job)
                    created.append(job)
            if created:
                db.session.commit()
                logger.info("Created %d scheduled job records", len(created))
        return created

    @classmethod
    def run_job(cls, job_name: str) -> dict:
        """
        Execute a single job by name.

        A job that returns ``{"status": "failed", ...}`` is recorded as a
        failed run without raising.

        Returns:
            Dict with status, duration_ms, result or error.
        """
        fn = _job_registry.get(job_name)
        if not fn:
            return {"status": "error", "error": f"Unknown job: {job_name}"}

        if not cls._app:
            return {"status": "error", "error": "Scheduler not initialized"}

        start = time.monotonic()
        result = None
        error = None
        status = "success"

        try:
            with cls._app.app_context():
                result = fn(cls._app)
        except Exception as exc:
            status = "failed"
            error = str(exc)
            logger.exception("Job %s failed: %s", job_name, exc, extra={"job_name": job_name})

        if isinstance(result, dict) and result.get("status") == "failed":
            status = "failed"
            error = result.get("error")

        duration_ms = int((time.monotonic() - start) * 1000)

        try:
            with cls._app.app_context():
                job_record = ScheduledJob.query.filter_by(job_name=job_name).first()
                if job_record:
                    job_record.record_run(
                        status=status,
                        duration_ms=duration_ms,
                        result=result if isinstance(result, dict) else {"output": str(result)},
                        error=error,
                    )
                    db.session.commit()
        except Exception:
            logger.exception("Failed to update job record for %s", job_name)

        logger.info("Job %s finished: %s", job_name, status,
                    extra={"job_name": job_name, "duration_ms": duration_ms})
        return {
            "job_name": job_name,
            "status": status,
            "duration_ms": duration_ms,
            "result": result,
            "error": error,
        }

    @classmethod
    def run_due_jobs(cls, now=None) -> list[dict]:
        """Run every enabled job whose interval has elapsed."""
        if not cls._app:
            return []
        cls.ensure_jobs_registered()
        with cls._app.app_context():
            due = [
                job.job_name
                for job in ScheduledJob.query.order_by(ScheduledJob.id).all()
                if job.job_name in _job_registry and job.is_due(now)
            ]
        return [cls.run_job(name) for name in due]

    # ── Background loop ───────────────────────────────────────────────────

    @classmethod
    def start(cls, tick_seconds: int | None = None) -> bool:
        """Start the tick loop in a daemon thread. Returns False if already running."""
        if cls._running or not cls._app:
            return False
        tick = tick_seconds or cls._app.config.get("SCHEDULER_TICK_SECONDS", 60)
        cls._stop_event = threading.Event()
        cls._thread = threading.Thread(
            target=cls._loop, args=(tick,), name="panelsync-scheduler", daemon=True,
        )
        cls._running = True
        cls._thread.start()
        logger.info("Scheduler started, tick=%ss", tick)
        return True

    @classmethod
    def stop(cls, timeout: float = 5.0) -> None:
        if not cls._running:
            return
        cls._stop_event.set()
        if cls._thread is not None:
            cls._thread.join(timeout)
        cls._running = False
        cls._thread = None
        logger.info("Scheduler stopped")

    @classmethod
    def is_running(cls) -> bool:
        return cls._running

    @classmethod
    def _loop(cls, tick: int) -> None:
        while not cls._stop_event.is_set():
            try:
                cls.run_due_jobs()
            except Exception:
                logger.exception("Scheduler tick failed")
            cls._stop_event.wait(tick)


def _get_default_interval(job_name: str, app: Flask) -> int:
    """Return the default interval in seconds for known jobs."""
    cfg = app.config
    defaults = {
        "completion_sweep": int(cfg.get("COMPLETION_SWEEP_INTERVAL_HOURS", 24)) * 3600,
        "completion_check_queue": max(int(cfg.get("SCHEDULER_TICK_SECONDS", 60)), 60) * 5,
    }
    return defaults.get(job_name, 86400)
