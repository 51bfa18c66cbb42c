"""
Record store gateway.

Thin table-oriented facade over the SQLAlchemy session. Services address
records by table name and filter dicts instead of building queries, so the
reconciler and the insights aggregator read like the record operations
they perform.

Filter values:
    - scalar          -> column == value
    - list/tuple/set  -> column IN (...)
    - None            -> column IS NULL
    - NOT_NULL        -> column IS NOT NULL

Usage:
    from panelsync.services.record_store import record_store, NOT_NULL

    active = record_store.find_many("tests", {"status": "active"})
    record_store.upsert(
        "test_variations",
        [{"test_id": tid, "variation_type": "a", "prolific_status": "complete"}],
        conflict_keys=("test_id", "variation_type"),
    )
    rows = record_store.rpc("get_competitive_insights_by_competitor", test_id=tid)
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, Iterable

from sqlalchemy import delete as sa_delete
from sqlalchemy import func, select
from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError

from panelsync.core.exceptions import NotFoundError, ValidationError
from panelsync.models import db
from panelsync.models.insights import (
    CompetitiveInsight,
    InsightStatus,
    PurchaseDriver,
    TestSummary,
)
from panelsync.models.responses import (
    ClickEvent,
    ComparisonResponse,
    SurveyResponse,
    TesterSession,
)
from panelsync.models.scheduling import CompletionCheck
from panelsync.models.testing import (
    Product,
    Test,
    TestCompetitor,
    TestDemographics,
    TestVariation,
)

logger = logging.getLogger(__name__)


TABLES = {
    "tests": Test,
    "test_variations": TestVariation,
    "products": Product,
    "test_competitors": TestCompetitor,
    "test_demographics": TestDemographics,
    "testers_session": TesterSession,
    "responses_surveys": SurveyResponse,
    "responses_comparisons": ComparisonResponse,
    "events": ClickEvent,
    "summary": TestSummary,
    "competitive_insights": CompetitiveInsight,
    "purchase_drivers": PurchaseDriver,
    "insight_status": InsightStatus,
    "completion_checks": CompletionCheck,
}


class _NotNull:
    def __repr__(self):
        return "NOT_NULL"


NOT_NULL = _NotNull()


# ═══════════════════════════════════════════════════════════════════════════
#  Stored procedures
# ═══════════════════════════════════════════════════════════════════════════

_procedures: dict[str, Callable] = {}


def register_procedure(name: str):
    """Decorator to expose a function through ``RecordStore.rpc``."""
    def decorator(fn: Callable) -> Callable:
        _procedures[name] = fn
        return fn
    return decorator


def _plain(value):
    if isinstance(value, Enum):
        return value.value
    return value


class RecordStore:
    """
    Table-name addressed CRUD over the shared SQLAlchemy session.

    Every write commits on its own; callers never hold a transaction
    across a provider call.
    """

    def __init__(self, session=None) -> None:
        self._session = session

    @property
    def session(self):
        return self._session if self._session is not None else db.session

    # ── Helpers ──────────────────────────────────────────────────────────────

    @staticmethod
    def model_for(table: str):
        model = TABLES.get(table)
        if model is None:
            raise ValidationError(f"Unknown table: {table}", details={"table": table})
        return model

    @staticmethod
    def _conditions(model, filters: dict | None) -> list:
        conditions = []
        for field, value in (filters or {}).items():
            column = getattr(model, field, None)
            if column is None:
                raise ValidationError(
                    f"{model.__tablename__} has no column {field}",
                    details={"table": model.__tablename__, "column": field},
                )
            if value is None:
                conditions.append(column.is_(None))
            elif value is NOT_NULL:
                conditions.append(column.isnot(None))
            elif isinstance(value, (list, tuple, set, frozenset)):
                conditions.append(column.in_([_plain(v) for v in value]))
            else:
                conditions.append(column == _plain(value))
        return conditions

    # ── Reads ────────────────────────────────────────────────────────────────

    def find_many(self, table: str, filters: dict | None = None, *,
                  order_by: str | None = None, limit: int | None = None) -> list:
        model = self.model_for(table)
        stmt = select(model).where(*self._conditions(model, filters))
        if order_by:
            stmt = stmt.order_by(getattr(model, order_by))
        if limit:
            stmt = stmt.limit(limit)
        return list(self.session.execute(stmt).scalars().all())

    def find_one(self, table: str, filters: dict):
        model = self.model_for(table)
        stmt = select(model).where(*self._conditions(model, filters)).limit(1)
        return self.session.execute(stmt).scalars().first()

    def count(self, table: str, filters: dict | None = None) -> int:
        model = self.model_for(table)
        stmt = select(func.count()).select_from(model).where(*self._conditions(model, filters))
        return self.session.execute(stmt).scalar_one()

    def get_by_id(self, table: str, pk):
        """Fetch one row by primary key or raise NotFoundError."""
        model = self.model_for(table)
        record = self.session.get(model, pk, populate_existing=True)
        if record is None:
            raise NotFoundError(resource=model.__name__, resource_id=pk)
        return record

    # ── Writes ───────────────────────────────────────────────────────────────

    def insert(self, table: str, row: dict):
        model = self.model_for(table)
        record = model(**{k: _plain(v) for k, v in row.items()})
        self.session.add(record)
        self.session.commit()
        return record

    def upsert(self, table: str, rows: Iterable[dict], conflict_keys: tuple[str, ...], *,
               insert_only: tuple[str, ...] = ()) -> list:
        """Insert or update each row matched on ``conflict_keys``.

        Columns named in ``insert_only`` are written on insert and left
        untouched on update. Re-running with the same rows leaves exactly
        one row per conflict key.
        """
        model = self.model_for(table)
        written = []
        for row in rows:
            row = {k: _plain(v) for k, v in row.items()}
            missing = [k for k in conflict_keys if k not in row]
            if missing:
                raise ValidationError(
                    f"Upsert into {table} is missing conflict keys {missing}",
                    details={"table": table, "missing": missing},
                )
            key = {k: row[k] for k in conflict_keys}
            try:
                record = self._upsert_one(model, row, key, insert_only)
            except IntegrityError:
                # A concurrent writer inserted the same key first
                self.session.rollback()
                logger.info("Upsert race on %s %s, retrying as update", table, key)
                record = self._upsert_one(model, row, key, insert_only)
            written.append(record)
        return written

    def _upsert_one(self, model, row: dict, key: dict, insert_only: tuple[str, ...]):
        stmt = select(model).where(*self._conditions(model, key)).limit(1)
        record = self.session.execute(stmt).scalars().first()
        if record is None:
            record = model(**row)
            self.session.add(record)
        else:
            for field, value in row.items():
                if field in key or field in insert_only:
                    continue
                setattr(record, field, value)
        self.session.commit()
        return record

    def update(self, table: str, patch: dict, filters: dict) -> int:
        """Filtered update; returns the number of rows changed."""
        if not filters:
            raise ValidationError(f"Refusing unfiltered update of {table}")
        model = self.model_for(table)
        stmt = (
            sa_update(model)
            .where(*self._conditions(model, filters))
            .values(**{k: _plain(v) for k, v in patch.items()})
            .execution_options(synchronize_session="fetch")
        )
        result = self.session.execute(stmt)
        self.session.commit()
        return result.rowcount or 0

    def delete(self, table: str, filters: dict) -> int:
        if not filters:
            raise ValidationError(f"Refusing unfiltered delete from {table}")
        model = self.model_for(table)
        stmt = (
            sa_delete(model)
            .where(*self._conditions(model, filters))
            .execution_options(synchronize_session="fetch")
        )
        result = self.session.execute(stmt)
        self.session.commit()
        return result.rowcount or 0

    # ── Procedures ───────────────────────────────────────────────────────────

    def rpc(self, name: str, **args) -> Any:
        fn = _procedures.get(name)
        if fn is None:
            raise NotFoundError(resource="Procedure", resource_id=name)
        return fn(self.session, **args)


@register_procedure("get_competitive_insights_by_competitor")
def _competitive_insights_by_competitor(session, *, test_id: str) -> list[dict]:
    """Competitive insight rows joined with the competitor product, one per variant."""
    stmt = (
        select(CompetitiveInsight, Product)
        .outerjoin(Product, Product.id == CompetitiveInsight.competitor_product_id)
        .where(CompetitiveInsight.test_id == test_id)
        .order_by(CompetitiveInsight.competitor_product_id, CompetitiveInsight.variant_type)
    )
    rows = []
    for insight, product in session.execute(stmt).all():
        rows.append({
            "competitor_product_id": insight.competitor_product_id,
            "title": product.title if product else None,
            "price": product.price if product else None,
            "image_url": product.image_url if product else None,
            "variant_type": insight.variant_type,
            "count": insight.count,
            **insight.scores(),
        })
    return rows


# Module-level singleton; import this instance in services.
record_store = RecordStore()
