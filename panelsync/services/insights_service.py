"""
Panelsync
Insights Service.

Turns raw tester activity into per-variant insight rows and read-only
reports.

Only completed sessions count (Prolific participant id set and ended_at
set). Responses and click events reach a variant through their session.
All writes are upserts on natural keys, so regenerating never duplicates
rows.

Usage:
    from panelsync.services.insights_service import generate_summary_for_test
    generate_summary_for_test(test_id)
    report = build_insights_report(test_id)
"""

from __future__ import annotations

import logging
import re

from panelsync.core.exceptions import NotFoundError, ValidationError
from panelsync.models import db
from panelsync.models.status import can_transition, translate_study_status
from panelsync.services import insights_metrics
from panelsync.services.prolific_service import ProlificService
from panelsync.services.record_store import NOT_NULL, record_store

logger = logging.getLogger(__name__)

_INTERNAL_NAME_RE = re.compile(r"^(?P<test_id>.+)-(?P<variation_type>\w)$")
TEST_TYPE = "Variant-Based"


# ═════════════════════════════════════════════════════════════════════════════
# Record gathering
# ═════════════════════════════════════════════════════════════════════════════

def _completed_session_ids(test_id: str, variation_type: str | None = None) -> list[int]:
    filters = {"test_id": test_id, "prolific_pid": NOT_NULL, "ended_at": NOT_NULL}
    if variation_type:
        filters["variation_type"] = variation_type
    return [s.id for s in record_store.find_many("testers_session", filters)]


def _cohort_rows(table: str, test_id: str, session_ids: list[int], **filters) -> list:
    if not session_ids:
        return []
    return record_store.find_many(table, {"test_id": test_id, "tester_id": session_ids, **filters})


def _variation(test_id: str, variation_type: str):
    variation = record_store.find_one(
        "test_variations", {"test_id": test_id, "variation_type": variation_type},
    )
    if variation is None:
        raise NotFoundError(resource="TestVariation", resource_id=f"{test_id}:{variation_type}")
    return variation


def parse_internal_name(internal_name: str | None) -> tuple[str | None, str | None]:
    """Split a study internal name ``<test_id>-<variant>``."""
    match = _INTERNAL_NAME_RE.match(internal_name or "")
    if not match:
        return None, None
    return match.group("test_id"), match.group("variation_type").lower()


# ═════════════════════════════════════════════════════════════════════════════
# Per-variant insights
# ═════════════════════════════════════════════════════════════════════════════

def compute_variant_summary(test, variation):
    """
    Compute and persist the TestSummary row for one variant.

    chosen_times_amount is the number of surveys for the variant product
    from the variant's completed cohort; the denominator is every click
    event recorded by that cohort.

    Returns:
        The upserted TestSummary. ``win`` is False on first insert and
        left untouched afterwards.
    """
    test_id = getattr(test, "id", test)
    session_ids = _completed_session_ids(test_id, variation.variation_type)

    surveys = _cohort_rows("responses_surveys", test_id, session_ids, product_id=variation.product_id)
    clicks = _cohort_rows("events", test_id, session_ids)
    choice_events = sum(1 for c in clicks if c.product_id == variation.product_id)

    metrics = insights_metrics.compute_variant_summary(
        chosen_times_amount=len(surveys),
        total_clicks_per_variant=len(clicks),
        total_choice_events=choice_events,
        surveys=surveys,
    )
    if not clicks:
        logger.warning(
            "No click events for variant %s of test %s, shares set to 0",
            variation.variation_type, test_id,
            extra={"test_id": test_id, "variation_type": variation.variation_type},
        )

    summary, = record_store.upsert(
        "summary",
        [{
            "test_id": test_id,
            "variant_type": variation.variation_type,
            "product_id": variation.product_id,
            "win": False,
            **metrics.to_dict(),
        }],
        conflict_keys=("test_id", "variant_type"),
        insert_only=("win",),
    )
    return summary


def competitive_insights(test, variation) -> list:
    """Upsert one CompetitiveInsight per competitor listed in the test."""
    test_id = getattr(test, "id", test)
    competitors = record_store.find_many("test_competitors", {"test_id": test_id})
    if not competitors:
        logger.warning("Test %s has no competitors, skipping competitive insights", test_id,
                       extra={"test_id": test_id})
        return []

    session_ids = _completed_session_ids(test_id, variation.variation_type)
    comparisons = _cohort_rows("responses_comparisons", test_id, session_ids)
    if not comparisons:
        logger.warning(
            "No comparison responses for variant %s of test %s", variation.variation_type, test_id,
            extra={"test_id": test_id, "variation_type": variation.variation_type},
        )
        return []

    results = insights_metrics.competitor_metrics([c.product_id for c in competitors], comparisons)
    rows = [
        {"test_id": test_id, "variant_type": variation.variation_type, **result}
        for result in results
    ]
    return record_store.upsert(
        "competitive_insights", rows,
        conflict_keys=("test_id", "variant_type", "competitor_product_id"),
    )


def purchase_drivers(test, variation):
    """
    Upsert the PurchaseDriver row for the variant product.

    Falls back to comparison responses rating the variant product when no
    survey picked it. Returns None when neither exists.
    """
    test_id = getattr(test, "id", test)
    session_ids = _completed_session_ids(test_id, variation.variation_type)
    responses = _cohort_rows("responses_surveys", test_id, session_ids, product_id=variation.product_id)
    if not responses:
        responses = _cohort_rows("responses_comparisons", test_id, session_ids,
                                 product_id=variation.product_id)
    if not responses:
        logger.warning(
            "No responses for purchase drivers, variant %s of test %s",
            variation.variation_type, test_id,
            extra={"test_id": test_id, "variation_type": variation.variation_type},
        )
        return None

    driver, = record_store.upsert(
        "purchase_drivers",
        [{
            "test_id": test_id,
            "variant_type": variation.variation_type,
            "product_id": variation.product_id,
            **insights_metrics.purchase_driver_averages(responses),
        }],
        conflict_keys=("test_id", "variant_type", "product_id"),
    )
    return driver


def generate_variant_insights(test, variation) -> dict:
    """Summary, competitive insights and purchase drivers for one variant."""
    test_id = getattr(test, "id", test)
    summary = compute_variant_summary(test_id, variation)
    competitive = competitive_insights(test_id, variation)
    driver = purchase_drivers(test_id, variation)
    record_store.upsert(
        "insight_status",
        [{"test_id": test_id, "variant_type": variation.variation_type, "insight_data": "summary"}],
        conflict_keys=("test_id", "variant_type", "insight_data"),
    )
    logger.info(
        "Insights generated for variant %s of test %s", variation.variation_type, test_id,
        extra={"test_id": test_id, "variation_type": variation.variation_type},
    )
    return {
        "test_id": test_id,
        "variation_type": variation.variation_type,
        "summary": summary.to_dict(),
        "competitive_insights": [c.to_dict() for c in competitive],
        "purchase_drivers": driver.to_dict() if driver else None,
    }


def generate_summary_for_test(test_id: str) -> dict:
    """
    Generate insights for every variation of a test.

    A failure in one variant is logged and reported; the others still run.
    """
    test = record_store.get_by_id("tests", test_id)
    results = {"test_id": test_id, "generated": [], "failed": {}}

    for variation in record_store.find_many("test_variations", {"test_id": test_id},
                                            order_by="variation_type"):
        if not variation.product_id:
            continue
        vtype = variation.variation_type
        try:
            generate_variant_insights(test, variation)
            results["generated"].append(vtype)
        except Exception as e:
            db.session.rollback()
            results["failed"][vtype] = str(e)
            logger.error("Insights failed for variant %s of test %s: %s", vtype, test_id, e,
                         extra={"test_id": test_id, "variation_type": vtype})

    return results


def generate_study_insights(study_id: str) -> dict:
    """
    Regenerate insights for the variant behind one Prolific study.

    Sessions of participants whose submission was not approved are removed
    first, and the study status is mirrored onto the variation (forward
    moves only).

    Raises:
        ValidationError: the study's internal name is not ``<test_id>-<variant>``.
        NotFoundError: the test or variation does not exist.
        ProviderError: a Prolific call failed.
    """
    if not study_id:
        raise ValidationError("Study ID is required")

    study = ProlificService.get_study(study_id)
    test_id, variation_type = parse_internal_name(study.get("internal_name"))
    if not test_id or not variation_type:
        raise ValidationError(
            "Invalid study format - missing variation or test ID",
            details={"study_id": study_id, "internal_name": study.get("internal_name")},
        )

    test = record_store.get_by_id("tests", test_id)
    variation = _variation(test_id, variation_type)

    invalid = ProlificService.invalid_participant_ids(study_id)
    if invalid:
        removed = record_store.delete(
            "testers_session", {"test_id": test_id, "prolific_pid": sorted(invalid)},
        )
        logger.info("Removed %d invalid sessions for study %s", removed, study_id,
                    extra={"test_id": test_id, "study_id": study_id})

    new_status = translate_study_status(study.get("status"))
    if not test.block and can_transition(variation.local_status, new_status):
        record_store.upsert(
            "test_variations",
            [{"test_id": test_id, "variation_type": variation_type, "prolific_status": new_status.value}],
            conflict_keys=("test_id", "variation_type"),
        )
        variation = _variation(test_id, variation_type)

    return generate_variant_insights(test, variation)


# ═════════════════════════════════════════════════════════════════════════════
# Reports (read-only)
# ═════════════════════════════════════════════════════════════════════════════

def _competitors_by_product(test_id: str) -> dict[str, dict]:
    grouped: dict[str, dict] = {}
    for row in record_store.rpc("get_competitive_insights_by_competitor", test_id=test_id):
        entry = grouped.setdefault(row["competitor_product_id"], {
            "title": row["title"],
            "price": row["price"],
            "variants": {},
        })
        entry["variants"][row["variant_type"]] = {
            "share_of_buy": row["share_of_buy"],
            "value": row["value"],
            "aesthetics": row["aesthetics"],
            "utility": row["utility"],
            "trust": row["trust"],
            "convenience": row["convenience"],
            "count": row["count"],
        }
    return grouped


def _report_context(test_id: str):
    test = record_store.get_by_id("tests", test_id)
    demographics = record_store.find_one("test_demographics", {"test_id": test_id})
    demo = demographics.to_dict() if demographics else {}
    summaries = {s.variant_type: s for s in record_store.find_many("summary", {"test_id": test_id})}
    variations = record_store.find_many("test_variations", {"test_id": test_id}, order_by="variation_type")
    return test, demo, summaries, variations


def _test_metadata(test, demo: dict) -> dict:
    return {
        "test_id": test.id,
        "objective": test.objective,
        "test_type": TEST_TYPE,
        "sample_size": demo.get("tester_count", 0),
        "created_date": test.created_at.isoformat() if test.created_at else None,
        "search_term": test.search_term,
    }


def _audience(demo: dict) -> dict:
    return {
        "demographics": {
            "age_ranges": demo.get("age_ranges", []),
            "gender": demo.get("genders", []),
            "location": demo.get("locations", []),
        },
    }


def _variant_entry(variation, summary) -> dict:
    product = variation.product
    return {
        "id": variation.variation_type,
        "title": product.title if product else None,
        "price": product.price if product else None,
        "click_share": summary.share_of_click if summary else None,
        "buy_share": summary.share_of_buy if summary else None,
        "value_score": summary.value_score if summary else None,
    }


def build_insights_report(test_id: str) -> dict:
    """
    Read-only projection of a test's insights.

    Returns:
        {test_metadata, audience, variants, competitors_detailed}
    """
    test, demo, summaries, variations = _report_context(test_id)
    return {
        "test_metadata": _test_metadata(test, demo),
        "audience": _audience(demo),
        "variants": [
            _variant_entry(v, summaries.get(v.variation_type))
            for v in variations if v.product_id
        ],
        "competitors_detailed": [
            {
                "name": c["title"],
                "price": c["price"],
                "results_by_variant": c["variants"],
            }
            for c in _competitors_by_product(test_id).values()
        ],
    }


def build_variant_report(test_id: str, variant_type: str) -> dict:
    """Same projection focused on one variant; other variants are context only."""
    test, demo, summaries, variations = _report_context(test_id)
    current = next((v for v in variations if v.variation_type == variant_type and v.product_id), None)
    if current is None:
        raise NotFoundError(resource="TestVariation", resource_id=f"{test_id}:{variant_type}")

    current_entry = _variant_entry(current, summaries.get(variant_type))
    metadata = _test_metadata(test, demo)
    metadata["current_variant"] = variant_type.upper()
    metadata["analysis_note"] = (
        f"This analysis focuses exclusively on Variant {variant_type.upper()} "
        f"({current_entry['title']} at ${current_entry['price']}). Do not compare to other variants."
    )

    return {
        "test_metadata": metadata,
        "audience": _audience(demo),
        "current_variant": current_entry,
        "all_variants": [
            {
                **_variant_entry(v, summaries.get(v.variation_type)),
                "is_current_variant": v.variation_type == variant_type,
            }
            for v in variations if v.product_id
        ],
        "competitors_detailed": [
            {
                "name": c["title"],
                "price": c["price"],
                "current_variant_performance": c["variants"].get(variant_type),
            }
            for c in _competitors_by_product(test_id).values()
        ],
    }
