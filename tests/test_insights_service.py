"""Unit tests for panelsync.services.insights_service.

Test strategy
-------------
`_seed` builds one test with variant a (product "Hero Mug") and two
competitors. Two sessions are completed; a third never ended and must be
ignored everywhere. Prolific is mocked via patch.object on the
module-level `prolific_gateway` singleton.

Cohort of variant a:
    s1 (completed): survey for the variant product, one click on it
    s2 (completed): comparison picking competitor 1, clicks on the variant and competitor 1
    s3 (unfinished): one click on the variant
"""

from datetime import datetime, timezone
from unittest.mock import patch

import pytest

import panelsync.integrations.prolific_gateway as gw_module
from panelsync.core.exceptions import NotFoundError, ValidationError
from panelsync.integrations.prolific_gateway import GatewayResult
from panelsync.models import db
from panelsync.models.insights import CompetitiveInsight, InsightStatus, PurchaseDriver, TestSummary
from panelsync.models.responses import ClickEvent, ComparisonResponse, SurveyResponse, TesterSession
from panelsync.models.testing import Product, Test, TestCompetitor, TestDemographics, TestVariation
from panelsync.services.insights_service import (
    build_insights_report,
    build_variant_report,
    compute_variant_summary,
    generate_study_insights,
    generate_summary_for_test,
    parse_internal_name,
)


# ── Helper factories ─────────────────────────────────────────────────────────


def _ok(data):
    return GatewayResult(ok=True, status_code=200, data=data, error=None, duration_ms=5)


def _seed():
    hero = Product(title="Hero Mug", price=19.99)
    rival_1 = Product(title="Rival One", price=17.5)
    rival_2 = Product(title="Rival Two", price=22.0)
    db.session.add_all([hero, rival_1, rival_2])
    db.session.commit()

    test = Test(name="Mug test", status="active", objective="price_sensitivity", search_term="mug")
    db.session.add(test)
    db.session.commit()

    db.session.add_all([
        TestVariation(test_id=test.id, variation_type="a", product_id=hero.id, prolific_test_id="study-a"),
        TestVariation(test_id=test.id, variation_type="b", prolific_test_id="study-b"),
        TestCompetitor(test_id=test.id, product_id=rival_1.id),
        TestCompetitor(test_id=test.id, product_id=rival_2.id),
        TestDemographics(test_id=test.id, age_ranges=["25-34"], genders=["female"],
                         locations=["US"], tester_count=50),
    ])
    db.session.commit()

    ended = datetime.now(timezone.utc)
    s1 = TesterSession(test_id=test.id, prolific_pid="pid-1", variation_type="a", ended_at=ended)
    s2 = TesterSession(test_id=test.id, prolific_pid="pid-2", variation_type="a", ended_at=ended)
    s3 = TesterSession(test_id=test.id, prolific_pid="pid-3", variation_type="a")
    db.session.add_all([s1, s2, s3])
    db.session.commit()

    db.session.add_all([
        SurveyResponse(test_id=test.id, tester_id=s1.id, product_id=hero.id,
                       appearance=5, confidence=4, value=4, convenience=3, brand=4),
        ComparisonResponse(test_id=test.id, tester_id=s2.id, product_id=hero.id,
                           competitor_id=rival_1.id,
                           appearance=4, confidence=3, value=5, convenience=4, brand=2),
        ClickEvent(test_id=test.id, tester_id=s1.id, product_id=hero.id),
        ClickEvent(test_id=test.id, tester_id=s2.id, product_id=hero.id),
        ClickEvent(test_id=test.id, tester_id=s2.id, product_id=rival_1.id),
        ClickEvent(test_id=test.id, tester_id=s3.id, product_id=hero.id),
    ])
    db.session.commit()
    return test, hero, rival_1, rival_2


def _variation(test_id, variation_type="a"):
    return TestVariation.query.filter_by(test_id=test_id, variation_type=variation_type).one()


# ── Tests ────────────────────────────────────────────────────────────────────


class TestParseInternalName:
    def test_uuid_and_variant(self):
        assert parse_internal_name("3f2a-11ee-b962-a") == ("3f2a-11ee-b962", "a")

    def test_variant_is_lowercased(self):
        assert parse_internal_name("abc-B") == ("abc", "b")

    @pytest.mark.parametrize("name", [None, "", "no_variant", "-a"])
    def test_invalid(self, name):
        assert parse_internal_name(name) == (None, None)


class TestComputeVariantSummary:
    def test_shares_use_completed_cohort_only(self):
        test, hero, _, _ = _seed()

        summary = compute_variant_summary(test, _variation(test.id))

        assert summary.share_of_buy == 33.3
        assert summary.share_of_click == 66.7
        assert summary.value_score == 4.0
        assert summary.win is False

    def test_rerun_does_not_duplicate_and_keeps_win(self):
        test, _, _, _ = _seed()
        variation = _variation(test.id)
        summary = compute_variant_summary(test, variation)
        summary.win = True
        db.session.commit()

        compute_variant_summary(test, variation)

        rows = TestSummary.query.filter_by(test_id=test.id).all()
        assert len(rows) == 1
        assert rows[0].win is True

    def test_product_change_keeps_one_row_per_variant(self):
        test, _, _, _ = _seed()
        variation = _variation(test.id)
        compute_variant_summary(test, variation)
        replacement = Product(title="Hero Mug v2", price=21.0)
        db.session.add(replacement)
        db.session.commit()
        variation.product_id = replacement.id
        db.session.commit()

        compute_variant_summary(test, _variation(test.id))

        rows = TestSummary.query.filter_by(test_id=test.id, variant_type="a").all()
        assert len(rows) == 1
        assert rows[0].product_id == replacement.id

    def test_no_clicks_gives_zero_shares(self):
        test, _, _, _ = _seed()
        ClickEvent.query.delete()
        db.session.commit()

        summary = compute_variant_summary(test, _variation(test.id))

        assert summary.share_of_buy == 0.0
        assert summary.share_of_click == 0.0


class TestGenerateSummaryForTest:
    def test_generates_every_variant_with_a_product(self):
        test, _, rival_1, rival_2 = _seed()

        result = generate_summary_for_test(test.id)

        assert result == {"test_id": test.id, "generated": ["a"], "failed": {}}
        insights = {c.competitor_product_id: c for c in CompetitiveInsight.query.all()}
        assert insights[rival_1.id].share_of_buy == 100.0
        assert insights[rival_1.id].count == 1
        assert insights[rival_1.id].aesthetics == 4.0
        assert insights[rival_2.id].count == 0
        driver = PurchaseDriver.query.one()
        assert driver.appearance == 5.0
        assert driver.count == 1
        assert InsightStatus.query.filter_by(test_id=test.id, variant_type="a").count() == 1

    def test_regenerating_is_idempotent(self):
        test, _, _, _ = _seed()

        generate_summary_for_test(test.id)
        generate_summary_for_test(test.id)

        assert TestSummary.query.count() == 1
        assert CompetitiveInsight.query.count() == 2
        assert PurchaseDriver.query.count() == 1

    def test_drivers_fall_back_to_comparisons(self):
        test, _, _, _ = _seed()
        SurveyResponse.query.delete()
        db.session.commit()

        generate_summary_for_test(test.id)

        driver = PurchaseDriver.query.one()
        assert driver.value == 5.0
        assert driver.brand == 2.0

    def test_one_variant_failure_is_reported(self):
        test, _, _, _ = _seed()

        with patch("panelsync.services.insights_service.compute_variant_summary",
                   side_effect=RuntimeError("bad row")):
            result = generate_summary_for_test(test.id)

        assert result["generated"] == []
        assert result["failed"] == {"a": "bad row"}

    def test_missing_test(self):
        with pytest.raises(NotFoundError):
            generate_summary_for_test("nope")


class TestGenerateStudyInsights:
    def test_cleans_invalid_sessions_and_mirrors_status(self):
        test, hero, _, _ = _seed()
        study = {"id": "study-a", "status": "COMPLETED", "internal_name": f"{test.id}-a"}
        submissions = {"results": [
            {"participant_id": "pid-1", "status": "APPROVED"},
            {"participant_id": "pid-2", "status": "REJECTED"},
        ]}

        with patch.object(gw_module.prolific_gateway, "get_study", return_value=_ok(study)), \
                patch.object(gw_module.prolific_gateway, "get_study_submissions",
                             return_value=_ok(submissions)):
            result = generate_study_insights("study-a")

        assert TesterSession.query.filter_by(prolific_pid="pid-2").count() == 0
        assert _variation(test.id).prolific_status == "complete"
        # only s1 remains in the cohort: one survey, one click
        assert result["summary"]["share_of_buy"] == 100.0
        assert result["summary"]["share_of_click"] == 100.0
        assert result["competitive_insights"] == []

    def test_blocked_test_status_not_mirrored(self):
        test, _, _, _ = _seed()
        test.block = True
        db.session.commit()
        study = {"status": "COMPLETED", "internal_name": f"{test.id}-a"}

        with patch.object(gw_module.prolific_gateway, "get_study", return_value=_ok(study)), \
                patch.object(gw_module.prolific_gateway, "get_study_submissions",
                             return_value=_ok({"results": []})):
            generate_study_insights("study-a")

        assert _variation(test.id).prolific_status is None

    def test_bad_internal_name(self):
        with patch.object(gw_module.prolific_gateway, "get_study",
                          return_value=_ok({"status": "ACTIVE", "internal_name": "garbage"})):
            with pytest.raises(ValidationError):
                generate_study_insights("study-x")

    def test_empty_study_id(self):
        with pytest.raises(ValidationError):
            generate_study_insights("")


class TestReports:
    def test_insights_report_shape(self):
        test, _, rival_1, _ = _seed()
        generate_summary_for_test(test.id)

        report = build_insights_report(test.id)

        assert report["test_metadata"]["test_type"] == "Variant-Based"
        assert report["test_metadata"]["sample_size"] == 50
        assert report["audience"]["demographics"]["gender"] == ["female"]
        assert report["variants"] == [{
            "id": "a",
            "title": "Hero Mug",
            "price": 19.99,
            "click_share": 66.7,
            "buy_share": 33.3,
            "value_score": 4.0,
        }]
        rival = next(c for c in report["competitors_detailed"] if c["name"] == "Rival One")
        assert rival["results_by_variant"]["a"]["share_of_buy"] == 100.0

    def test_variant_report_focuses_on_one_variant(self):
        test, _, _, _ = _seed()
        generate_summary_for_test(test.id)

        report = build_variant_report(test.id, "a")

        assert report["test_metadata"]["current_variant"] == "A"
        assert "Variant A" in report["test_metadata"]["analysis_note"]
        assert report["current_variant"]["title"] == "Hero Mug"
        assert [v["is_current_variant"] for v in report["all_variants"]] == [True]
        assert all("current_variant_performance" in c for c in report["competitors_detailed"])

    def test_variant_report_unknown_variant(self):
        test, _, _, _ = _seed()
        with pytest.raises(NotFoundError):
            build_variant_report(test.id, "z")

    def test_report_without_insights(self):
        test, _, _, _ = _seed()

        report = build_insights_report(test.id)

        assert report["variants"][0]["buy_share"] is None
        assert report["competitors_detailed"] == []
