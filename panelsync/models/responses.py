"""
Panelsync
Raw tester activity models.

Written by the test-taking flow and never mutated here. Every record
reaches its variation_type through the tester's session.

Models:
    - TesterSession: one panel participant taking one variant of a test
    - SurveyResponse: tester chose the variant product and rated it
    - ComparisonResponse: tester chose a competitor and rated it against the variant
    - ClickEvent: raw product interaction event
"""

from datetime import datetime, timezone

from panelsync.models import db

SCORE_FIELDS = ("appearance", "confidence", "value", "convenience", "brand")


def _now():
    return datetime.now(timezone.utc)


class TesterSession(db.Model):
    """
    One participant's session in a test.

    Only sessions with a Prolific participant id and an end timestamp count
    as completed for metrics.
    """

    __tablename__ = "testers_session"
    __test__ = False

    id = db.Column(db.Integer, primary_key=True)
    test_id = db.Column(db.String(36), db.ForeignKey("tests.id", ondelete="CASCADE"),
                        nullable=False, index=True)
    prolific_pid = db.Column(db.String(64), nullable=True, index=True)
    variation_type = db.Column(db.String(1), nullable=False)
    product_id = db.Column(db.String(36), nullable=True)
    competitor_id = db.Column(db.String(36), nullable=True)
    status = db.Column(db.String(20), default="started")
    ended_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_now)

    @property
    def is_completed(self) -> bool:
        return bool(self.prolific_pid) and self.ended_at is not None

    def to_dict(self):
        return {
            "id": self.id,
            "test_id": self.test_id,
            "prolific_pid": self.prolific_pid,
            "variation_type": self.variation_type,
            "product_id": self.product_id,
            "competitor_id": self.competitor_id,
            "status": self.status,
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
        }

    def __repr__(self):
        return f"<TesterSession {self.id} {self.test_id}:{self.variation_type}>"


class _ResponseColumns:
    """Columns shared by survey and comparison rows."""

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.String(36), nullable=True, index=True)

    appearance = db.Column(db.Float, nullable=True)
    confidence = db.Column(db.Float, nullable=True)
    value = db.Column(db.Float, nullable=True)
    convenience = db.Column(db.Float, nullable=True)
    brand = db.Column(db.Float, nullable=True)

    likes_most = db.Column(db.Text, nullable=True)
    improve_suggestions = db.Column(db.Text, nullable=True)
    choose_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_now)

    def scores(self) -> dict:
        return {field: getattr(self, field) for field in SCORE_FIELDS}


class SurveyResponse(_ResponseColumns, db.Model):
    """Survey answered after choosing the variant product."""

    __tablename__ = "responses_surveys"

    test_id = db.Column(db.String(36), db.ForeignKey("tests.id", ondelete="CASCADE"),
                        nullable=False, index=True)
    tester_id = db.Column(db.Integer, db.ForeignKey("testers_session.id", ondelete="CASCADE"),
                          nullable=False, index=True)

    def to_dict(self):
        return {
            "id": self.id,
            "test_id": self.test_id,
            "tester_id": self.tester_id,
            "product_id": self.product_id,
            **self.scores(),
            "likes_most": self.likes_most,
            "improve_suggestions": self.improve_suggestions,
        }


class ComparisonResponse(_ResponseColumns, db.Model):
    """Comparison answered after choosing a competitor over the variant."""

    __tablename__ = "responses_comparisons"

    test_id = db.Column(db.String(36), db.ForeignKey("tests.id", ondelete="CASCADE"),
                        nullable=False, index=True)
    tester_id = db.Column(db.Integer, db.ForeignKey("testers_session.id", ondelete="CASCADE"),
                          nullable=False, index=True)
    competitor_id = db.Column(db.String(36), nullable=False, index=True,
                              comment="Competitor product the tester picked")

    def to_dict(self):
        return {
            "id": self.id,
            "test_id": self.test_id,
            "tester_id": self.tester_id,
            "product_id": self.product_id,
            "competitor_id": self.competitor_id,
            **self.scores(),
            "choose_reason": self.choose_reason,
        }


class ClickEvent(db.Model):
    """Raw product interaction event recorded during a session."""

    __tablename__ = "events"

    id = db.Column(db.Integer, primary_key=True)
    test_id = db.Column(db.String(36), db.ForeignKey("tests.id", ondelete="CASCADE"),
                        nullable=False, index=True)
    tester_id = db.Column(db.Integer, db.ForeignKey("testers_session.id", ondelete="CASCADE"),
                          nullable=True, index=True)
    product_id = db.Column(db.String(36), nullable=True)
    event_type = db.Column(db.String(30), default="click")

    created_at = db.Column(db.DateTime(timezone=True), default=_now)

    def to_dict(self):
        return {
            "id": self.id,
            "test_id": self.test_id,
            "tester_id": self.tester_id,
            "product_id": self.product_id,
            "event_type": self.event_type,
        }
