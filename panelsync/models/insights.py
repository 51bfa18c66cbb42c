"""
Panelsync
Insights models — derived per-variant metrics.

Models:
    - TestSummary: share of buy / share of click / value score per variant
    - CompetitiveInsight: variant vs one competitor product
    - PurchaseDriver: averaged perception sub-scores per variant
    - InsightStatus: which insight payloads were generated per variant

All rows are written by upsert on their natural keys, so regenerating
insights never duplicates rows.
"""

from datetime import datetime, timezone

from panelsync.models import db


def _now():
    return datetime.now(timezone.utc)


class TestSummary(db.Model):
    """
    Per-variant headline metrics.

    ``win`` is owned by a separate comparison pass; insight generation
    inserts it as False and never overwrites it afterwards.
    """

    __tablename__ = "summary"
    __test__ = False
    __table_args__ = (
        db.UniqueConstraint("test_id", "variant_type", name="uq_summary_variant"),
    )

    id = db.Column(db.Integer, primary_key=True)
    test_id = db.Column(db.String(36), db.ForeignKey("tests.id", ondelete="CASCADE"),
                        nullable=False, index=True)
    variant_type = db.Column(db.String(1), nullable=False)
    product_id = db.Column(db.String(36), nullable=True)
    share_of_buy = db.Column(db.Float, nullable=False, default=0.0, comment="0-100, one decimal")
    share_of_click = db.Column(db.Float, nullable=False, default=0.0, comment="0-100, one decimal")
    value_score = db.Column(db.Float, nullable=False, default=0.0, comment="1-5, one decimal")
    win = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), default=_now)

    def to_dict(self):
        return {
            "id": self.id,
            "test_id": self.test_id,
            "variant_type": self.variant_type,
            "product_id": self.product_id,
            "share_of_buy": self.share_of_buy,
            "share_of_click": self.share_of_click,
            "value_score": self.value_score,
            "win": self.win,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<TestSummary {self.test_id}:{self.variant_type} buy={self.share_of_buy}>"


class CompetitiveInsight(db.Model):
    """How one variant fared against one specific competitor product."""

    __tablename__ = "competitive_insights"
    __table_args__ = (
        db.UniqueConstraint("test_id", "variant_type", "competitor_product_id",
                            name="uq_competitive_insight"),
    )

    id = db.Column(db.Integer, primary_key=True)
    test_id = db.Column(db.String(36), db.ForeignKey("tests.id", ondelete="CASCADE"),
                        nullable=False, index=True)
    variant_type = db.Column(db.String(1), nullable=False)
    competitor_product_id = db.Column(db.String(36), nullable=False)
    share_of_buy = db.Column(db.Float, default=0.0)
    value = db.Column(db.Float, default=0.0)
    aesthetics = db.Column(db.Float, default=0.0)
    utility = db.Column(db.Float, default=0.0)
    trust = db.Column(db.Float, default=0.0)
    convenience = db.Column(db.Float, default=0.0)
    count = db.Column(db.Integer, default=0)

    def scores(self) -> dict:
        return {
            "share_of_buy": self.share_of_buy,
            "value": self.value,
            "aesthetics": self.aesthetics,
            "utility": self.utility,
            "trust": self.trust,
            "convenience": self.convenience,
        }

    def to_dict(self):
        return {
            "id": self.id,
            "test_id": self.test_id,
            "variant_type": self.variant_type,
            "competitor_product_id": self.competitor_product_id,
            "count": self.count,
            **self.scores(),
        }


class PurchaseDriver(db.Model):
    """Averaged perception sub-scores for the variant product."""

    __tablename__ = "purchase_drivers"
    __table_args__ = (
        db.UniqueConstraint("test_id", "variant_type", "product_id", name="uq_purchase_driver"),
    )

    id = db.Column(db.Integer, primary_key=True)
    test_id = db.Column(db.String(36), db.ForeignKey("tests.id", ondelete="CASCADE"),
                        nullable=False, index=True)
    variant_type = db.Column(db.String(1), nullable=False)
    product_id = db.Column(db.String(36), nullable=True)
    appearance = db.Column(db.Float, default=0.0)
    confidence = db.Column(db.Float, default=0.0)
    convenience = db.Column(db.Float, default=0.0)
    brand = db.Column(db.Float, default=0.0)
    value = db.Column(db.Float, default=0.0)
    count = db.Column(db.Integer, default=0)

    def to_dict(self):
        return {
            "test_id": self.test_id,
            "variant_type": self.variant_type,
            "product_id": self.product_id,
            "appearance": self.appearance,
            "confidence": self.confidence,
            "convenience": self.convenience,
            "brand": self.brand,
            "value": self.value,
            "count": self.count,
        }


class InsightStatus(db.Model):
    """Marks which insight payload has been generated for a variant."""

    __tablename__ = "insight_status"
    __table_args__ = (
        db.UniqueConstraint("test_id", "variant_type", "insight_data", name="uq_insight_status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    test_id = db.Column(db.String(36), db.ForeignKey("tests.id", ondelete="CASCADE"),
                        nullable=False, index=True)
    variant_type = db.Column(db.String(1), nullable=False)
    insight_data = db.Column(db.String(30), nullable=False, default="summary")

    created_at = db.Column(db.DateTime(timezone=True), default=_now)
    updated_at = db.Column(db.DateTime(timezone=True), default=_now, onupdate=_now)

    def to_dict(self):
        return {
            "test_id": self.test_id,
            "variant_type": self.variant_type,
            "insight_data": self.insight_data,
        }
