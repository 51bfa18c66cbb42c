"""
Panelsync
Completion Reconciler.

Drives the variation/test state machine from Prolific study state.

Operations:
    - reconcile_test: poll every dispatched, unfinished variation of one test
    - finalize_if_complete: derive and persist test-level completion
    - reconcile_one_variation: the same sequence for a single variation

Rules:
    - variation status only moves forward (see models.status.can_transition)
    - a test is complete iff every dispatched variation is complete
    - the block flag is re-read before every write
    - one variation's failure never aborts its siblings
    - finalize is serialized per test_id; no lock is held across provider calls

Every operation returns a result object so callers and tests can assert on
outcomes without reading logs.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field

from flask import current_app

from panelsync.core.exceptions import NotFoundError, ProviderError
from panelsync.models import db
from panelsync.models.status import TestStatus, VariationStatus, can_transition
from panelsync.services.notification import NotificationService
from panelsync.services.prolific_service import ProlificService
from panelsync.services.record_store import NOT_NULL, record_store

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Results
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class FinalizeResult:
    """Outcome of one finalize check."""
    completed: bool
    status: str

    def to_dict(self) -> dict:
        return {"completed": self.completed, "status": self.status}


@dataclass
class ReconcileResult:
    """Outcome of reconciling one test."""
    test_id: str
    skipped: bool = False
    reason: str | None = None
    transitions: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)
    reminder_sent: bool = False
    finalize: FinalizeResult | None = None

    @property
    def completed(self) -> bool:
        return bool(self.finalize and self.finalize.completed)

    def to_dict(self) -> dict:
        return {
            "test_id": self.test_id,
            "skipped": self.skipped,
            "reason": self.reason,
            "transitions": list(self.transitions),
            "errors": dict(self.errors),
            "reminder_sent": self.reminder_sent,
            "finalize": self.finalize.to_dict() if self.finalize else None,
        }


@dataclass
class VariationCheckResult:
    """Outcome of an on-demand single-variation check."""
    study_id: str
    test_id: str
    variation_type: str
    updated: bool = False
    reason: str | None = None
    reminder_sent: bool = False
    finalize: FinalizeResult | None = None

    def to_dict(self) -> dict:
        return {
            "study_id": self.study_id,
            "test_id": self.test_id,
            "variation_type": self.variation_type,
            "updated": self.updated,
            "reason": self.reason,
            "reminder_sent": self.reminder_sent,
            "finalize": self.finalize.to_dict() if self.finalize else None,
        }


# ═══════════════════════════════════════════════════════════════════════════
#  Per-test finalize locks
# ═══════════════════════════════════════════════════════════════════════════

_finalize_locks: dict[str, threading.Lock] = {}
_registry_lock = threading.Lock()


def _finalize_lock(test_id: str) -> threading.Lock:
    with _registry_lock:
        lock = _finalize_locks.get(test_id)
        if lock is None:
            lock = _finalize_locks[test_id] = threading.Lock()
        return lock


def _release_finalize_lock(test_id: str) -> None:
    """Forget a completed test's lock; completion is terminal."""
    with _registry_lock:
        _finalize_locks.pop(test_id, None)


# ═══════════════════════════════════════════════════════════════════════════
#  Store helpers
# ═══════════════════════════════════════════════════════════════════════════

def _test_id_of(test) -> str:
    return getattr(test, "id", test)


def _is_blocked(test_id: str) -> bool:
    return bool(record_store.get_by_id("tests", test_id).block)


def _dispatched_variations(test_id: str) -> list:
    return record_store.find_many(
        "test_variations",
        {"test_id": test_id, "prolific_test_id": NOT_NULL},
        order_by="variation_type",
    )


def _mark_variation_complete(test_id: str, variation_type: str) -> None:
    record_store.upsert(
        "test_variations",
        [{
            "test_id": test_id,
            "variation_type": variation_type,
            "prolific_status": VariationStatus.COMPLETE.value,
        }],
        conflict_keys=("test_id", "variation_type"),
    )
    logger.info(
        "Variation %s of test %s marked complete", variation_type, test_id,
        extra={"test_id": test_id, "variation_type": variation_type},
    )


def _after_finalize(test) -> None:
    """Side effects of a test becoming complete. Runs once per transition."""
    try:
        NotificationService.notify_test_completed(test)
    except Exception as e:
        logger.error("Completion notice failed for test %s: %s", test.id, e,
                     extra={"test_id": test.id})

    if not current_app.config.get("GENERATE_INSIGHTS_ON_COMPLETE", True):
        return
    from panelsync.services.insights_service import generate_summary_for_test
    try:
        generate_summary_for_test(test.id)
    except Exception as e:
        logger.error("Insights generation failed for test %s: %s", test.id, e,
                     extra={"test_id": test.id})


# ═══════════════════════════════════════════════════════════════════════════
#  Operations
# ═══════════════════════════════════════════════════════════════════════════

def finalize_if_complete(test) -> FinalizeResult:
    """
    Persist status=complete when every dispatched variation is complete.

    Always reloads the test and its variations. Safe to call repeatedly:
    only the call that actually flips the status emits side effects.
    """
    test_id = _test_id_of(test)

    with _finalize_lock(test_id):
        current = record_store.get_by_id("tests", test_id)
        variations = _dispatched_variations(test_id)
        all_complete = bool(variations) and all(
            v.local_status is VariationStatus.COMPLETE for v in variations
        )

        changed = 0
        if all_complete and not current.block and current.status != TestStatus.COMPLETE.value:
            changed = record_store.update(
                "tests",
                {"status": TestStatus.COMPLETE.value},
                {
                    "id": test_id,
                    "status": [TestStatus.DRAFT, TestStatus.ACTIVE],
                    "block": False,
                },
            )
            current = record_store.get_by_id("tests", test_id)

    if current.status == TestStatus.COMPLETE.value:
        _release_finalize_lock(test_id)
    if not changed:
        return FinalizeResult(completed=False, status=current.status)

    logger.info("Test %s finalized as complete", test_id, extra={"test_id": test_id})
    _after_finalize(current)
    return FinalizeResult(completed=True, status=TestStatus.COMPLETE.value)


def reconcile_test(test, variations=None) -> ReconcileResult:
    """
    Reconcile one test's variations against Prolific.

    Args:
        test: Test instance or test id.
        variations: optional preloaded variations; defaults to every
            dispatched variation of the test.
    """
    test_id = _test_id_of(test)
    result = ReconcileResult(test_id=test_id)

    if _is_blocked(test_id):
        logger.info("Test %s is blocked, skipping", test_id, extra={"test_id": test_id})
        result.skipped = True
        result.reason = "blocked"
        return result

    if variations is None:
        variations = _dispatched_variations(test_id)
    pending = [v for v in variations if v.is_dispatched and not v.local_status.is_terminal]
    reminder_candidate = None

    for variation in pending:
        study_id = variation.prolific_test_id
        vtype = variation.variation_type
        try:
            study_status = ProlificService.get_study_status(study_id)
        except ProviderError as e:
            logger.error(
                "Study %s status check failed: %s", study_id, e,
                extra={"test_id": test_id, "variation_type": vtype, "study_id": study_id},
            )
            result.errors[vtype] = str(e)
            continue

        if study_status is not VariationStatus.COMPLETE:
            if reminder_candidate is None:
                reminder_candidate = (variation, study_status)
            continue

        if not can_transition(variation.local_status, study_status):
            continue

        try:
            blocked = _is_blocked(test_id)
            if not blocked:
                _mark_variation_complete(test_id, vtype)
        except Exception as e:
            db.session.rollback()
            logger.error(
                "Variation %s of test %s could not be updated: %s", vtype, test_id, e,
                extra={"test_id": test_id, "variation_type": vtype, "study_id": study_id},
            )
            result.errors[vtype] = str(e)
            continue

        if blocked:
            logger.info("Test %s was blocked mid-sweep", test_id, extra={"test_id": test_id})
            result.skipped = True
            result.reason = "blocked"
            return result

        result.transitions.append(vtype)

    if result.transitions or (variations and not pending):
        result.finalize = finalize_if_complete(test_id)

    if reminder_candidate is not None and not result.completed:
        variation, study_status = reminder_candidate
        result.reminder_sent = NotificationService.send_completion_reminder(
            variation.prolific_test_id,
            test_id,
            variation_type=variation.variation_type,
            study_status=study_status.value,
        )

    return result


def reconcile_one_variation(study_id: str, test_id: str, variation_type: str) -> VariationCheckResult:
    """
    On-demand check of a single dispatched variation.

    Does not re-enqueue itself when the study is still running; it sends a
    reminder and leaves further coverage to the periodic sweep.

    Raises:
        NotFoundError: the test or the variation does not exist.
        ProviderError: the Prolific call failed.
    """
    result = VariationCheckResult(study_id=study_id, test_id=test_id, variation_type=variation_type)

    test = record_store.get_by_id("tests", test_id)
    variation = record_store.find_one(
        "test_variations", {"test_id": test_id, "variation_type": variation_type},
    )
    if variation is None:
        raise NotFoundError(resource="TestVariation", resource_id=f"{test_id}:{variation_type}")

    if test.block:
        result.reason = "blocked"
        return result

    if variation.local_status.is_terminal:
        result.reason = "already_complete"
        result.finalize = finalize_if_complete(test_id)
        return result

    study_status = ProlificService.get_study_status(study_id)

    if study_status is not VariationStatus.COMPLETE:
        result.reason = "not_complete"
        result.reminder_sent = NotificationService.send_completion_reminder(
            study_id, test_id, variation_type=variation_type, study_status=study_status.value,
        )
        return result

    if _is_blocked(test_id):
        result.reason = "blocked"
        return result

    _mark_variation_complete(test_id, variation_type)
    result.updated = True
    result.reason = "transitioned"
    result.finalize = finalize_if_complete(test_id)
    return result
