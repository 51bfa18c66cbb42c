"""Unit tests for panelsync.services.completion_reconciler.

Test strategy
-------------
Prolific is mocked via patch.object on the module-level `prolific_gateway`
singleton. `_study_statuses` builds a get_study side effect from a
study_id -> provider status map; mapping a study to None makes its call
fail with HTTP 503.

Coverage
--------
    1. variation status only moves forward
    2. one failing variation (provider or store) does not stop its siblings
    3. finalize completes a test only when every dispatched variation is complete
    4. finalize side effects run exactly once
    5. block flag short-circuits every write
    6. at most one reminder per test per sweep
    7. on-demand single-variation checks
"""

from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

import panelsync.integrations.prolific_gateway as gw_module
from panelsync.core.exceptions import NotFoundError, ProviderError
from panelsync.integrations.prolific_gateway import GatewayResult
from panelsync.models import db
from panelsync.models.notification import Notification
from panelsync.models.scheduling import EmailLog
from panelsync.models.testing import Test, TestVariation
from panelsync.services import completion_reconciler
from panelsync.services.completion_reconciler import (
    _finalize_lock,
    finalize_if_complete,
    reconcile_one_variation,
    reconcile_test,
)
from panelsync.services.record_store import record_store


# ── Helper factories ─────────────────────────────────────────────────────────


def _make_test(status="active", block=False, name="Reconcile Test"):
    test = Test(name=name, status=status, block=block)
    db.session.add(test)
    db.session.commit()
    return test


def _make_variation(test, variation_type, *, dispatched=True, prolific_status=None):
    variation = TestVariation(
        test_id=test.id,
        variation_type=variation_type,
        prolific_test_id=f"study-{variation_type}" if dispatched else None,
        prolific_status=prolific_status,
    )
    db.session.add(variation)
    db.session.commit()
    return variation


def _study_statuses(mapping):
    def _get_study(study_id):
        status = mapping[study_id]
        if status is None:
            return GatewayResult(ok=False, status_code=503, data=None,
                                 error="HTTP 503: unavailable", duration_ms=5)
        return GatewayResult(ok=True, status_code=200, data={"id": study_id, "status": status},
                             error=None, duration_ms=5)
    return _get_study


def _status_of(test_id):
    return record_store.get_by_id("tests", test_id).status


def _variation_status(test_id, variation_type):
    return record_store.find_one(
        "test_variations", {"test_id": test_id, "variation_type": variation_type},
    ).prolific_status


def _notifications(category):
    return Notification.query.filter_by(category=category).count()


# ── Tests ────────────────────────────────────────────────────────────────────


class TestReconcileTest:
    def test_partial_completion_keeps_test_active(self):
        """
        Given variation a is COMPLETED and b is ACTIVE on Prolific
        When the test is reconciled
        Then a is complete, b untouched, the test stays active and one reminder goes out
        """
        test = _make_test()
        _make_variation(test, "a")
        _make_variation(test, "b")

        with patch.object(gw_module.prolific_gateway, "get_study",
                          side_effect=_study_statuses({"study-a": "COMPLETED", "study-b": "ACTIVE"})):
            result = reconcile_test(test)

        assert result.transitions == ["a"]
        assert result.finalize.to_dict() == {"completed": False, "status": "active"}
        assert result.reminder_sent is True
        assert _variation_status(test.id, "a") == "complete"
        assert _variation_status(test.id, "b") is None
        assert _status_of(test.id) == "active"
        assert _notifications("reminder") == 1
        assert EmailLog.query.filter_by(template_name="completion_reminder").count() == 1

    def test_all_complete_finalizes_once(self):
        """
        Given every dispatched variation is COMPLETED on Prolific
        When the test is reconciled twice
        Then the test is complete and the completion notice exists exactly once
        """
        test = _make_test()
        _make_variation(test, "a")
        _make_variation(test, "b")
        statuses = _study_statuses({"study-a": "COMPLETED", "study-b": "COMPLETED"})

        with patch.object(gw_module.prolific_gateway, "get_study", side_effect=statuses) as mock_get:
            first = reconcile_test(test.id)
            second = reconcile_test(test.id)

        assert first.completed is True
        assert first.reminder_sent is False
        assert _status_of(test.id) == "complete"
        assert second.completed is False
        assert second.transitions == []
        # terminal variations are never polled again
        assert mock_get.call_count == 2
        assert _notifications("test") == 1

    def test_status_never_moves_backwards(self):
        test = _make_test()
        _make_variation(test, "a", prolific_status="needs review")

        with patch.object(gw_module.prolific_gateway, "get_study",
                          side_effect=_study_statuses({"study-a": "ACTIVE"})):
            result = reconcile_test(test)

        assert result.transitions == []
        assert _variation_status(test.id, "a") == "needs review"

    def test_provider_failure_is_contained_per_variation(self):
        """
        Given variations a, b, c where b's provider call fails
        When the test is reconciled
        Then a and c are still processed and b is reported in errors
        """
        test = _make_test()
        for vtype in ("a", "b", "c"):
            _make_variation(test, vtype)

        with patch.object(gw_module.prolific_gateway, "get_study",
                          side_effect=_study_statuses({
                              "study-a": "COMPLETED", "study-b": None, "study-c": "COMPLETED",
                          })):
            result = reconcile_test(test)

        assert result.transitions == ["a", "c"]
        assert list(result.errors) == ["b"]
        assert result.completed is False
        assert _variation_status(test.id, "b") is None
        assert _status_of(test.id) == "active"

    def test_store_failure_is_contained_per_variation(self):
        """
        Given variations a, b, c all COMPLETED on Prolific and a's write fails
        When the test is reconciled
        Then b and c are still marked complete and a is reported in errors
        """
        test = _make_test()
        for vtype in ("a", "b", "c"):
            _make_variation(test, vtype)
        test_id = test.id
        real_mark = completion_reconciler._mark_variation_complete

        def _mark(tid, variation_type):
            if variation_type == "a":
                raise OperationalError("UPDATE", {}, Exception("database is locked"))
            real_mark(tid, variation_type)

        with patch.object(completion_reconciler, "_mark_variation_complete", side_effect=_mark), \
                patch.object(gw_module.prolific_gateway, "get_study",
                             side_effect=_study_statuses({
                                 "study-a": "COMPLETED", "study-b": "COMPLETED", "study-c": "COMPLETED",
                             })):
            result = reconcile_test(test_id)

        assert result.transitions == ["b", "c"]
        assert list(result.errors) == ["a"]
        assert "database is locked" in result.errors["a"]
        assert _variation_status(test_id, "a") is None
        assert _variation_status(test_id, "b") == "complete"
        assert _variation_status(test_id, "c") == "complete"
        assert _status_of(test_id) == "active"

    def test_blocked_test_is_skipped(self):
        test = _make_test(block=True)
        _make_variation(test, "a")

        with patch.object(gw_module.prolific_gateway, "get_study") as mock_get:
            result = reconcile_test(test)

        assert result.skipped is True
        assert result.reason == "blocked"
        mock_get.assert_not_called()
        assert _variation_status(test.id, "a") is None

    def test_block_set_mid_sweep_stops_writes(self):
        test = _make_test()
        _make_variation(test, "a")

        def _block_then_complete(study_id):
            record_store.update("tests", {"block": True}, {"id": test.id})
            return GatewayResult(ok=True, status_code=200, data={"status": "COMPLETED"},
                                 error=None, duration_ms=5)

        with patch.object(gw_module.prolific_gateway, "get_study", side_effect=_block_then_complete):
            result = reconcile_test(test.id)

        assert result.skipped is True
        assert _variation_status(test.id, "a") is None
        assert _status_of(test.id) == "active"

    def test_one_reminder_per_sweep(self):
        test = _make_test()
        for vtype in ("a", "b", "c"):
            _make_variation(test, vtype)

        with patch.object(gw_module.prolific_gateway, "get_study",
                          side_effect=_study_statuses({
                              "study-a": "ACTIVE", "study-b": "AWAITING REVIEW", "study-c": "ACTIVE",
                          })):
            result = reconcile_test(test)

        assert result.reminder_sent is True
        assert _notifications("reminder") == 1

    def test_undispatched_variations_are_ignored(self):
        test = _make_test()
        _make_variation(test, "a")
        _make_variation(test, "b", dispatched=False)

        with patch.object(gw_module.prolific_gateway, "get_study",
                          side_effect=_study_statuses({"study-a": "COMPLETED"})):
            result = reconcile_test(test)

        assert result.completed is True

    def test_repairs_missed_finalize(self):
        """A test whose variations all completed earlier is finalized on the next sweep."""
        test = _make_test()
        _make_variation(test, "a", prolific_status="complete")
        _make_variation(test, "b", prolific_status="complete")

        with patch.object(gw_module.prolific_gateway, "get_study") as mock_get:
            result = reconcile_test(test)

        mock_get.assert_not_called()
        assert result.completed is True
        assert _status_of(test.id) == "complete"

    def test_reminder_failure_does_not_fail_reconcile(self):
        test = _make_test()
        _make_variation(test, "a")

        with patch.object(gw_module.prolific_gateway, "get_study",
                          side_effect=_study_statuses({"study-a": "ACTIVE"})), \
                patch("panelsync.services.notification.EmailService.send_from_template",
                      side_effect=RuntimeError("smtp down")):
            result = reconcile_test(test)

        assert result.reminder_sent is False
        assert result.errors == {}


class TestFinalizeIfComplete:
    def test_not_all_complete(self):
        test = _make_test()
        _make_variation(test, "a", prolific_status="complete")
        _make_variation(test, "b", prolific_status="active")

        assert finalize_if_complete(test).to_dict() == {"completed": False, "status": "active"}

    def test_no_dispatched_variations(self):
        test = _make_test()
        _make_variation(test, "a", dispatched=False)

        assert finalize_if_complete(test).completed is False
        assert _status_of(test.id) == "active"

    def test_completes_and_is_idempotent(self):
        test = _make_test()
        _make_variation(test, "a", prolific_status="complete")
        _make_variation(test, "b", prolific_status="complete")

        first = finalize_if_complete(test)
        second = finalize_if_complete(test)
        third = finalize_if_complete(test.id)

        assert first.completed is True
        assert second.to_dict() == {"completed": False, "status": "complete"}
        assert third.completed is False
        assert _notifications("test") == 1

    def test_blocked_test_not_finalized(self):
        test = _make_test(block=True)
        _make_variation(test, "a", prolific_status="complete")

        assert finalize_if_complete(test).completed is False
        assert _status_of(test.id) == "active"

    def test_side_effect_failure_is_swallowed(self, app, monkeypatch):
        monkeypatch.setitem(app.config, "GENERATE_INSIGHTS_ON_COMPLETE", True)
        test = _make_test()
        _make_variation(test, "a", prolific_status="complete")

        with patch("panelsync.services.insights_service.generate_summary_for_test",
                   side_effect=RuntimeError("aggregation broke")) as mock_generate:
            result = finalize_if_complete(test)

        assert result.completed is True
        mock_generate.assert_called_once_with(test.id)
        assert _status_of(test.id) == "complete"

    def test_lock_is_shared_per_test(self):
        assert _finalize_lock("t-1") is _finalize_lock("t-1")
        assert _finalize_lock("t-1") is not _finalize_lock("t-2")

    def test_lock_released_once_test_is_complete(self):
        test = _make_test()
        _make_variation(test, "a", prolific_status="complete")
        _make_variation(test, "b")

        assert finalize_if_complete(test.id).completed is False
        assert test.id in completion_reconciler._finalize_locks

        record_store.update("test_variations", {"prolific_status": "complete"},
                            {"test_id": test.id, "variation_type": "b"})
        assert finalize_if_complete(test.id).completed is True
        assert test.id not in completion_reconciler._finalize_locks

        assert finalize_if_complete(test.id).completed is False
        assert test.id not in completion_reconciler._finalize_locks


class TestReconcileOneVariation:
    def test_transition_and_finalize(self):
        test = _make_test()
        _make_variation(test, "a")

        with patch.object(gw_module.prolific_gateway, "get_study",
                          side_effect=_study_statuses({"study-a": "COMPLETED"})):
            result = reconcile_one_variation("study-a", test.id, "a")

        assert result.updated is True
        assert result.reason == "transitioned"
        assert result.finalize.completed is True

    def test_second_call_is_a_noop(self):
        test = _make_test()
        _make_variation(test, "a")

        with patch.object(gw_module.prolific_gateway, "get_study",
                          side_effect=_study_statuses({"study-a": "COMPLETED"})) as mock_get:
            reconcile_one_variation("study-a", test.id, "a")
            again = reconcile_one_variation("study-a", test.id, "a")

        assert again.updated is False
        assert again.reason == "already_complete"
        assert mock_get.call_count == 1
        assert _notifications("test") == 1

    def test_not_complete_sends_reminder(self):
        test = _make_test()
        _make_variation(test, "a")

        with patch.object(gw_module.prolific_gateway, "get_study",
                          side_effect=_study_statuses({"study-a": "ACTIVE"})):
            result = reconcile_one_variation("study-a", test.id, "a")

        assert result.reason == "not_complete"
        assert result.reminder_sent is True
        assert _variation_status(test.id, "a") is None

    def test_blocked(self):
        test = _make_test(block=True)
        _make_variation(test, "a")

        with patch.object(gw_module.prolific_gateway, "get_study") as mock_get:
            result = reconcile_one_variation("study-a", test.id, "a")

        assert result.reason == "blocked"
        mock_get.assert_not_called()

    def test_missing_variation(self):
        test = _make_test()
        with pytest.raises(NotFoundError):
            reconcile_one_variation("study-z", test.id, "z")

    def test_missing_test(self):
        with pytest.raises(NotFoundError):
            reconcile_one_variation("study-a", "no-such-test", "a")

    def test_provider_error_propagates(self):
        test = _make_test()
        _make_variation(test, "a")

        with patch.object(gw_module.prolific_gateway, "get_study",
                          side_effect=_study_statuses({"study-a": None})):
            with pytest.raises(ProviderError):
                reconcile_one_variation("study-a", test.id, "a")
