"""
Panelsync
Test domain models.

Models:
    - Test: one A/B test; status and block flag drive reconciliation
    - TestVariation: one treatment (a/b/c) mirrored to one external study
    - Product: catalog item shown to testers (variant or competitor)
    - TestCompetitor: competitor products listed alongside the variants
    - TestDemographics: audience definition for the test
"""

import uuid
from datetime import datetime, timezone

from panelsync.models import db
from panelsync.models.status import TestStatus, VariationStatus


def _uuid():
    return str(uuid.uuid4())


def _now():
    return datetime.now(timezone.utc)


class Test(db.Model):
    """
    A/B test entity.

    Reconciliation writes ``status`` only. ``block`` is a manual escape
    hatch: while set, no reconciliation-driven transition touches the test.
    """

    __tablename__ = "tests"
    __test__ = False  # not a pytest class

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(255), nullable=False)
    objective = db.Column(db.String(100), nullable=True)
    status = db.Column(db.String(20), nullable=False, default=TestStatus.DRAFT.value, index=True,
                       comment="draft, active, complete")
    search_term = db.Column(db.String(255), nullable=True)
    block = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), default=_now)
    updated_at = db.Column(db.DateTime(timezone=True), default=_now, onupdate=_now)

    variations = db.relationship(
        "TestVariation", backref="test", lazy="select",
        order_by="TestVariation.variation_type", cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "objective": self.objective,
            "status": self.status,
            "search_term": self.search_term,
            "block": self.block,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Test {self.id} [{self.status}]>"


class TestVariation(db.Model):
    """
    One treatment of a test, dispatched as one external study.

    ``prolific_status`` holds the local vocabulary (see models.status);
    NULL means the study has not reported yet.
    """

    __tablename__ = "test_variations"
    __test__ = False
    __table_args__ = (
        db.UniqueConstraint("test_id", "variation_type", name="uq_variation_test_type"),
    )

    id = db.Column(db.Integer, primary_key=True)
    test_id = db.Column(db.String(36), db.ForeignKey("tests.id", ondelete="CASCADE"),
                        nullable=False, index=True)
    product_id = db.Column(db.String(36), db.ForeignKey("products.id", ondelete="SET NULL"),
                           nullable=True)
    variation_type = db.Column(db.String(1), nullable=False, comment="a, b or c")
    prolific_test_id = db.Column(db.String(64), nullable=True, index=True,
                                 comment="External study id, NULL until dispatched")
    prolific_status = db.Column(db.String(20), nullable=True,
                                comment="NULL/pending, active, needs review, complete")

    created_at = db.Column(db.DateTime(timezone=True), default=_now)
    updated_at = db.Column(db.DateTime(timezone=True), default=_now, onupdate=_now)

    product = db.relationship("Product", lazy="joined")

    @property
    def local_status(self) -> VariationStatus:
        return VariationStatus.from_stored(self.prolific_status)

    @property
    def is_dispatched(self) -> bool:
        return bool(self.prolific_test_id)

    def to_dict(self):
        return {
            "id": self.id,
            "test_id": self.test_id,
            "product_id": self.product_id,
            "variation_type": self.variation_type,
            "prolific_test_id": self.prolific_test_id,
            "prolific_status": self.prolific_status,
        }

    def __repr__(self):
        return f"<TestVariation {self.test_id}:{self.variation_type} [{self.prolific_status}]>"


class Product(db.Model):
    """Catalog product shown to testers."""

    __tablename__ = "products"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    title = db.Column(db.String(500), nullable=False)
    price = db.Column(db.Float, nullable=True)
    image_url = db.Column(db.String(1000), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_now)

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "price": self.price,
            "image_url": self.image_url,
        }

    def __repr__(self):
        return f"<Product {self.id}: {self.title[:40]}>"


class TestCompetitor(db.Model):
    """Competitor product listed next to the variants in a test."""

    __tablename__ = "test_competitors"
    __test__ = False
    __table_args__ = (
        db.UniqueConstraint("test_id", "product_id", name="uq_competitor_test_product"),
    )

    id = db.Column(db.Integer, primary_key=True)
    test_id = db.Column(db.String(36), db.ForeignKey("tests.id", ondelete="CASCADE"),
                        nullable=False, index=True)
    product_id = db.Column(db.String(36), db.ForeignKey("products.id", ondelete="CASCADE"),
                           nullable=False)
    product_type = db.Column(db.String(30), default="amazon_product")

    product = db.relationship("Product", lazy="joined")

    def to_dict(self):
        return {
            "id": self.id,
            "test_id": self.test_id,
            "product_id": self.product_id,
            "product_type": self.product_type,
        }


class TestDemographics(db.Model):
    """Audience definition for a test."""

    __tablename__ = "test_demographics"
    __test__ = False

    id = db.Column(db.Integer, primary_key=True)
    test_id = db.Column(db.String(36), db.ForeignKey("tests.id", ondelete="CASCADE"),
                        nullable=False, unique=True)
    age_ranges = db.Column(db.JSON, default=list)
    genders = db.Column(db.JSON, default=list)
    locations = db.Column(db.JSON, default=list)
    interests = db.Column(db.JSON, default=list)
    tester_count = db.Column(db.Integer, default=0)

    def to_dict(self):
        return {
            "test_id": self.test_id,
            "age_ranges": self.age_ranges or [],
            "genders": self.genders or [],
            "locations": self.locations or [],
            "interests": self.interests or [],
            "tester_count": self.tester_count or 0,
        }
