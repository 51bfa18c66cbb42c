"""
Panelsync
Completion Check Queue.

On-demand single-variation completion checks, queued when a variation's
study is dispatched:
    queued → (run_after reached) → processed → row deleted
                                 ↘ error → failed (kept, never retried)

A check that finds the study still running sends a reminder and is done;
it is not put back on the queue. The periodic completion sweep keeps
covering the variation.

Usage:
    from panelsync.services.completion_queue import enqueue_completion_check
    enqueue_completion_check(study_id, test_id, "a")
"""

import logging
from datetime import datetime, timedelta, timezone

from flask import current_app

from panelsync.models import db
from panelsync.models.scheduling import CompletionCheck
from panelsync.services.completion_reconciler import reconcile_one_variation

logger = logging.getLogger(__name__)


def enqueue_completion_check(study_id, test_id, variation_type, *, delay_hours=None, now=None):
    """
    Schedule a completion check for one dispatched study.

    No-op when COMPLETION_CHECK_QUEUE_ENABLED is off. Enqueueing the same
    study twice keeps the existing check.

    Returns:
        The CompletionCheck row, or None when the queue is disabled.
    """
    if not current_app.config.get("COMPLETION_CHECK_QUEUE_ENABLED", False):
        logger.debug("Completion check queue disabled, not enqueueing study %s", study_id)
        return None

    existing = CompletionCheck.query.filter_by(study_id=study_id).first()
    if existing:
        return existing

    if delay_hours is None:
        delay_hours = current_app.config.get("COMPLETION_CHECK_DELAY_HOURS", 72)
    now = now or datetime.now(timezone.utc)

    check = CompletionCheck(
        study_id=study_id,
        test_id=test_id,
        variation_type=variation_type,
        run_after=now + timedelta(hours=delay_hours),
        status="queued",
    )
    db.session.add(check)
    db.session.commit()
    logger.info(
        "Queued completion check for study %s at %s", study_id, check.run_after.isoformat(),
        extra={"test_id": test_id, "variation_type": variation_type, "study_id": study_id},
    )
    return check


def due_checks(now=None, limit=None):
    """Queued checks whose run_after has passed, oldest first."""
    now = now or datetime.now(timezone.utc)
    q = CompletionCheck.query.filter(
        CompletionCheck.status == "queued",
        CompletionCheck.run_after <= now,
    ).order_by(CompletionCheck.run_after, CompletionCheck.id)
    if limit:
        q = q.limit(limit)
    return q.all()


def process_due_checks(now=None, limit=None) -> dict:
    """
    Run every due check once.

    Returns:
        Counts of processed, transitioned, reminded and failed checks.
    """
    results = {"processed": 0, "transitioned": 0, "reminders": 0, "failed": 0}

    for check in due_checks(now=now, limit=limit):
        check_id = check.id
        study_id = check.study_id
        test_id = check.test_id
        results["processed"] += 1
        try:
            outcome = reconcile_one_variation(study_id, test_id, check.variation_type)
        except Exception as e:
            db.session.rollback()
            results["failed"] += 1
            logger.error(
                "Completion check for study %s failed: %s", study_id, e,
                extra={"test_id": test_id, "study_id": study_id},
            )
            failed = db.session.get(CompletionCheck, check_id)
            if failed is not None:
                failed.status = "failed"
                failed.attempts = (failed.attempts or 0) + 1
                failed.last_error = str(e)[:1000]
                db.session.commit()
            continue

        if outcome.updated:
            results["transitioned"] += 1
        if outcome.reminder_sent:
            results["reminders"] += 1
        CompletionCheck.query.filter_by(id=check_id).delete()
        db.session.commit()

    logger.info("Completion check queue: %s", results)
    return results
