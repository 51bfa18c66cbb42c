"""
Insights Metrics — pure arithmetic behind the per-variant insights.

No database access here; insights_service gathers the counts and rows and
passes them in. Every function returns a defined zero instead of dividing
by zero or propagating NaN.

Usage:
    from panelsync.services.insights_metrics import compute_variant_summary
    metrics = compute_variant_summary(10, 40, 12, surveys)
    metrics.share_of_buy  # 25.0
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from numbers import Real
from typing import Any, Iterable, Mapping

from panelsync.models.responses import SCORE_FIELDS

# Comparison scores are stored under the names shown to report readers
COMPARISON_SCORE_NAMES = {
    "appearance": "aesthetics",
    "confidence": "utility",
    "convenience": "convenience",
    "brand": "trust",
    "value": "value",
}


# ═════════════════════════════════════════════════════════════════════════════
# Helpers
# ═════════════════════════════════════════════════════════════════════════════

def _round(value: float, places: int) -> float:
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def round1(value: float) -> float:
    """Round half-up to one decimal."""
    return _round(value, 1)


def round2(value: float) -> float:
    return _round(value, 2)


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, Real):
        return False
    return not math.isnan(value)


def percentage(part: float, whole: float) -> float:
    """Zero-safe percentage, capped at 100."""
    if not whole or whole <= 0:
        return 0.0
    return min(part / whole * 100, 100.0)


def average_score(values: Iterable[Any]) -> float:
    """Mean of the numeric entries; non-numeric and NaN are ignored, empty is 0."""
    numbers = [float(v) for v in values if _is_number(v)]
    if not numbers:
        return 0.0
    return sum(numbers) / len(numbers)


def _score_of(response: Any, field: str):
    if isinstance(response, Mapping):
        return response.get(field)
    return getattr(response, field, None)


def survey_average(survey: Any) -> float:
    """Mean of one survey's five sub-scores."""
    return average_score(_score_of(survey, f) for f in SCORE_FIELDS)


def value_score(surveys: Iterable[Any]) -> float:
    """Mean of per-survey means, one decimal; 0 when there are no surveys."""
    per_survey = [survey_average(s) for s in surveys]
    return round1(average_score(per_survey))


# ═════════════════════════════════════════════════════════════════════════════
# Variant summary
# ═════════════════════════════════════════════════════════════════════════════

@dataclass
class VariantMetrics:
    """Headline numbers for one variant."""
    share_of_buy: float
    share_of_click: float
    value_score: float

    def to_dict(self) -> dict:
        return {
            "share_of_buy": self.share_of_buy,
            "share_of_click": self.share_of_click,
            "value_score": self.value_score,
        }


def compute_variant_summary(
    chosen_times_amount: int,
    total_clicks_per_variant: int,
    total_choice_events: int,
    surveys: Iterable[Any],
) -> VariantMetrics:
    """
    share_of_buy   = chosen_times_amount / total_clicks_per_variant * 100
    share_of_click = total_choice_events / total_clicks_per_variant * 100

    Both are 0.0 when the variant has no click events.
    """
    return VariantMetrics(
        share_of_buy=round1(percentage(chosen_times_amount, total_clicks_per_variant)),
        share_of_click=round1(percentage(total_choice_events, total_clicks_per_variant)),
        value_score=value_score(surveys),
    )


# ═════════════════════════════════════════════════════════════════════════════
# Competitors & purchase drivers
# ═════════════════════════════════════════════════════════════════════════════

def competitor_metrics(competitor_ids: Iterable[str], comparisons: Iterable[Any]) -> list[dict]:
    """
    Per-competitor results for one variant.

    share_of_buy is this competitor's share of all comparison choices made
    by the variant's cohort (two decimals). The comparison scores keep the
    1-5 scale and are 0 for a competitor nobody picked.
    """
    grouped: dict[str, list] = {}
    for response in comparisons:
        competitor_id = _score_of(response, "competitor_id")
        if competitor_id:
            grouped.setdefault(competitor_id, []).append(response)
    total = sum(len(rows) for rows in grouped.values())

    results = []
    for competitor_id in competitor_ids:
        rows = grouped.get(competitor_id, [])
        entry = {
            "competitor_product_id": competitor_id,
            "count": len(rows),
            "share_of_buy": round2(percentage(len(rows), total)),
        }
        for field, name in COMPARISON_SCORE_NAMES.items():
            entry[name] = round2(average_score(_score_of(r, field) for r in rows))
        results.append(entry)
    return results


def purchase_driver_averages(surveys: Iterable[Any]) -> dict:
    """Per-field one-decimal averages of the variant's surveys, plus the count."""
    surveys = list(surveys)
    averages = {
        field: round1(average_score(_score_of(s, field) for s in surveys))
        for field in SCORE_FIELDS
    }
    averages["count"] = len(surveys)
    return averages
