"""
Panelsync
Scheduled Jobs.

Concrete job implementations that run on a schedule.

Jobs:
    - completion_sweep: reconcile every active test against Prolific
    - completion_check_queue: drain due on-demand completion checks
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from panelsync.models import db
from panelsync.models.status import TestStatus
from panelsync.services.completion_reconciler import reconcile_test
from panelsync.services.record_store import record_store
from panelsync.services.scheduler_service import register_job

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job 1: Completion Sweep
# ═══════════════════════════════════════════════════════════════════════════

def _reconcile_in_context(app, test_id: str) -> dict:
    """Worker entry point: one test, one app context, one DB session."""
    with app.app_context():
        return _reconcile_contained(test_id)


def _reconcile_contained(test_id: str) -> dict:
    try:
        return reconcile_test(test_id).to_dict()
    except Exception as e:
        db.session.rollback()
        logger.error("Reconciliation failed for test %s: %s", test_id, e,
                     extra={"test_id": test_id})
        return {"test_id": test_id, "failed": True, "error": str(e)}


@register_job("completion_sweep")
def daily_sweep(app=None) -> dict[str, Any]:
    """Reconcile every active test with its Prolific studies."""
    app = app or current_app._get_current_object()
    results = {
        "status": "success",
        "tests_checked": 0,
        "tests_skipped": 0,
        "transitions": 0,
        "tests_completed": 0,
        "reminders_sent": 0,
        "errors": {},
    }

    try:
        active = record_store.find_many("tests", {"status": TestStatus.ACTIVE}, order_by="created_at")
        test_ids = []
        for test in active:
            if not test.variations:
                results["tests_skipped"] += 1
                continue
            test_ids.append(test.id)
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error("Completion sweep could not list active tests: %s", e,
                     extra={"job_name": "completion_sweep"})
        results["status"] = "failed"
        results["error"] = str(e)
        return results

    workers = max(int(app.config.get("SWEEP_MAX_WORKERS", 1)), 1)
    if workers == 1 or len(test_ids) < 2:
        outcomes = [_reconcile_contained(test_id) for test_id in test_ids]
    else:
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="sweep") as pool:
            outcomes = list(pool.map(lambda tid: _reconcile_in_context(app, tid), test_ids))

    for outcome in outcomes:
        test_id = outcome["test_id"]
        if outcome.get("failed"):
            results["errors"][test_id] = outcome["error"]
            continue
        if outcome["skipped"]:
            results["tests_skipped"] += 1
            continue
        results["tests_checked"] += 1
        results["transitions"] += len(outcome["transitions"])
        if outcome["finalize"] and outcome["finalize"]["completed"]:
            results["tests_completed"] += 1
        if outcome["reminder_sent"]:
            results["reminders_sent"] += 1
        if outcome["errors"]:
            results["errors"][test_id] = outcome["errors"]

    logger.info("Completion sweep: %s", results, extra={"job_name": "completion_sweep"})
    return results


# ═══════════════════════════════════════════════════════════════════════════
#  Job 2: Completion Check Queue
# ═══════════════════════════════════════════════════════════════════════════

@register_job("completion_check_queue")
def run_completion_checks(app=None) -> dict[str, Any]:
    """Process on-demand completion checks whose delay has elapsed."""
    from panelsync.services.completion_queue import process_due_checks

    return process_due_checks()
