"""
Panelsync
Scheduling models.

Models:
    - ScheduledJob: Persisted schedule registry (run history + config)
    - CompletionCheck: On-demand single-variation completion check queue
    - EmailLog: Outbound email audit trail
"""

from datetime import datetime, timezone

from panelsync.models import db


# ── Constants ────────────────────────────────────────────────────────────────

JOB_STATUSES = {"active", "paused"}
CHECK_STATUSES = {"queued", "failed"}
EMAIL_STATUSES = {"queued", "sent", "failed"}


class ScheduledJob(db.Model):
    """
    Registry of scheduled background jobs.

    Tracks job configuration, last run time, and run history.
    """

    __tablename__ = "scheduled_jobs"

    id = db.Column(db.Integer, primary_key=True)
    job_name = db.Column(db.String(100), unique=True, nullable=False,
                         comment="Unique job identifier: completion_sweep, completion_check_queue")
    description = db.Column(db.String(500), default="")
    interval_seconds = db.Column(db.Integer, nullable=False, default=86400)
    status = db.Column(db.String(20), default="active",
                       comment="active, paused")
    is_enabled = db.Column(db.Boolean, default=True)

    # Execution tracking
    last_run_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_run_status = db.Column(db.String(20), nullable=True,
                                comment="success, failed")
    last_run_duration_ms = db.Column(db.Integer, nullable=True)
    last_run_result = db.Column(db.JSON, nullable=True,
                                comment="Summary of last execution")
    run_count = db.Column(db.Integer, default=0)
    error_count = db.Column(db.Integer, default=0)
    last_error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def record_run(self, *, status="success", duration_ms=0, result=None, error=None):
        """Record a job execution."""
        self.last_run_at = datetime.now(timezone.utc)
        self.last_run_status = status
        self.last_run_duration_ms = duration_ms
        self.last_run_result = result
        self.run_count = (self.run_count or 0) + 1
        if status == "failed":
            self.error_count = (self.error_count or 0) + 1
            self.last_error = str(error) if error else None

    def is_due(self, now=None) -> bool:
        """True when enabled and the interval has elapsed since the last run."""
        if not self.is_enabled or self.status != "active":
            return False
        if self.last_run_at is None:
            return True
        now = now or datetime.now(timezone.utc)
        last = self.last_run_at
        if last.tzinfo is None:
            # SQLite drops tzinfo on read
            last = last.replace(tzinfo=timezone.utc)
        return (now - last).total_seconds() >= self.interval_seconds

    def to_dict(self):
        return {
            "id": self.id,
            "job_name": self.job_name,
            "description": self.description,
            "interval_seconds": self.interval_seconds,
            "status": self.status,
            "is_enabled": self.is_enabled,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_run_status": self.last_run_status,
            "last_run_duration_ms": self.last_run_duration_ms,
            "last_run_result": self.last_run_result,
            "run_count": self.run_count,
            "error_count": self.error_count,
            "last_error": self.last_error,
        }

    def __repr__(self):
        return f"<ScheduledJob {self.job_name} [{self.status}]>"


class CompletionCheck(db.Model):
    """
    One queued completion check for a dispatched variation study.

    Rows are deleted once processed successfully. A failed check stays
    with status='failed' for inspection and is not retried; the periodic
    sweep still covers the variation.
    """

    __tablename__ = "completion_checks"

    id = db.Column(db.Integer, primary_key=True)
    study_id = db.Column(db.String(64), nullable=False, unique=True)
    test_id = db.Column(db.String(36), nullable=False, index=True)
    variation_type = db.Column(db.String(1), nullable=False)
    run_after = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    status = db.Column(db.String(20), nullable=False, default="queued",
                       comment="queued, failed")
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "study_id": self.study_id,
            "test_id": self.test_id,
            "variation_type": self.variation_type,
            "run_after": self.run_after.isoformat() if self.run_after else None,
            "status": self.status,
            "attempts": self.attempts,
            "last_error": self.last_error,
        }

    def __repr__(self):
        return f"<CompletionCheck {self.study_id} [{self.status}]>"


class EmailLog(db.Model):
    """
    Outbound email audit log.

    Every email sent through the platform is logged here for audit/debug.
    """

    __tablename__ = "email_logs"

    id = db.Column(db.Integer, primary_key=True)
    recipient_email = db.Column(db.String(255), nullable=False, index=True)
    subject = db.Column(db.String(500), nullable=False)
    template_name = db.Column(db.String(100), nullable=True,
                              comment="Email template used")
    category = db.Column(db.String(30), default="system")
    status = db.Column(db.String(20), default="queued",
                       comment="queued, sent, failed")
    error_message = db.Column(db.Text, nullable=True)

    test_id = db.Column(db.String(36), nullable=True, index=True)

    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "recipient_email": self.recipient_email,
            "subject": self.subject,
            "template_name": self.template_name,
            "category": self.category,
            "status": self.status,
            "error_message": self.error_message,
            "test_id": self.test_id,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<EmailLog {self.id}: {self.subject[:40]} → {self.recipient_email}>"
