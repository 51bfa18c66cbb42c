"""initial_schema

Tests, variations, tester activity, insights, scheduling and notification
tables.

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def _created_at():
    return sa.Column("created_at", sa.DateTime(timezone=True), nullable=True)


def _score_columns():
    return [
        sa.Column("appearance", sa.Float(), nullable=True),
        sa.Column("confidence", sa.Float(), nullable=True),
        sa.Column("value", sa.Float(), nullable=True),
        sa.Column("convenience", sa.Float(), nullable=True),
        sa.Column("brand", sa.Float(), nullable=True),
        sa.Column("likes_most", sa.Text(), nullable=True),
        sa.Column("improve_suggestions", sa.Text(), nullable=True),
        sa.Column("choose_reason", sa.Text(), nullable=True),
    ]


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    if "products" not in existing_tables:
        op.create_table(
            "products",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("title", sa.String(length=500), nullable=False),
            sa.Column("price", sa.Float(), nullable=True),
            sa.Column("image_url", sa.String(length=1000), nullable=True),
            _created_at(),
            sa.PrimaryKeyConstraint("id"),
        )

    if "tests" not in existing_tables:
        op.create_table(
            "tests",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("objective", sa.String(length=100), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="draft"),
            sa.Column("search_term", sa.String(length=255), nullable=True),
            sa.Column("block", sa.Boolean(), nullable=False, server_default=sa.false()),
            _created_at(),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_tests_status", "tests", ["status"])

    if "test_variations" not in existing_tables:
        op.create_table(
            "test_variations",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("test_id", sa.String(length=36), nullable=False),
            sa.Column("product_id", sa.String(length=36), nullable=True),
            sa.Column("variation_type", sa.String(length=1), nullable=False),
            sa.Column("prolific_test_id", sa.String(length=64), nullable=True),
            sa.Column("prolific_status", sa.String(length=20), nullable=True),
            _created_at(),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["test_id"], ["tests.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["product_id"], ["products.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("test_id", "variation_type", name="uq_variation_test_type"),
        )
        op.create_index("ix_test_variations_test_id", "test_variations", ["test_id"])
        op.create_index("ix_test_variations_prolific_test_id", "test_variations", ["prolific_test_id"])

    if "test_competitors" not in existing_tables:
        op.create_table(
            "test_competitors",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("test_id", sa.String(length=36), nullable=False),
            sa.Column("product_id", sa.String(length=36), nullable=False),
            sa.Column("product_type", sa.String(length=30), nullable=True),
            sa.ForeignKeyConstraint(["test_id"], ["tests.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["product_id"], ["products.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("test_id", "product_id", name="uq_competitor_test_product"),
        )
        op.create_index("ix_test_competitors_test_id", "test_competitors", ["test_id"])

    if "test_demographics" not in existing_tables:
        op.create_table(
            "test_demographics",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("test_id", sa.String(length=36), nullable=False),
            sa.Column("age_ranges", sa.JSON(), nullable=True),
            sa.Column("genders", sa.JSON(), nullable=True),
            sa.Column("locations", sa.JSON(), nullable=True),
            sa.Column("interests", sa.JSON(), nullable=True),
            sa.Column("tester_count", sa.Integer(), nullable=True),
            sa.ForeignKeyConstraint(["test_id"], ["tests.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("test_id"),
        )

    if "testers_session" not in existing_tables:
        op.create_table(
            "testers_session",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("test_id", sa.String(length=36), nullable=False),
            sa.Column("prolific_pid", sa.String(length=64), nullable=True),
            sa.Column("variation_type", sa.String(length=1), nullable=False),
            sa.Column("product_id", sa.String(length=36), nullable=True),
            sa.Column("competitor_id", sa.String(length=36), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=True),
            sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
            _created_at(),
            sa.ForeignKeyConstraint(["test_id"], ["tests.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_testers_session_test_id", "testers_session", ["test_id"])
        op.create_index("ix_testers_session_prolific_pid", "testers_session", ["prolific_pid"])

    if "responses_surveys" not in existing_tables:
        op.create_table(
            "responses_surveys",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("test_id", sa.String(length=36), nullable=False),
            sa.Column("tester_id", sa.Integer(), nullable=False),
            sa.Column("product_id", sa.String(length=36), nullable=True),
            *_score_columns(),
            _created_at(),
            sa.ForeignKeyConstraint(["test_id"], ["tests.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["tester_id"], ["testers_session.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_responses_surveys_test_id", "responses_surveys", ["test_id"])
        op.create_index("ix_responses_surveys_tester_id", "responses_surveys", ["tester_id"])
        op.create_index("ix_responses_surveys_product_id", "responses_surveys", ["product_id"])

    if "responses_comparisons" not in existing_tables:
        op.create_table(
            "responses_comparisons",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("test_id", sa.String(length=36), nullable=False),
            sa.Column("tester_id", sa.Integer(), nullable=False),
            sa.Column("product_id", sa.String(length=36), nullable=True),
            sa.Column("competitor_id", sa.String(length=36), nullable=False),
            *_score_columns(),
            _created_at(),
            sa.ForeignKeyConstraint(["test_id"], ["tests.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["tester_id"], ["testers_session.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_responses_comparisons_test_id", "responses_comparisons", ["test_id"])
        op.create_index("ix_responses_comparisons_tester_id", "responses_comparisons", ["tester_id"])
        op.create_index("ix_responses_comparisons_product_id", "responses_comparisons", ["product_id"])
        op.create_index("ix_responses_comparisons_competitor_id", "responses_comparisons", ["competitor_id"])

    if "events" not in existing_tables:
        op.create_table(
            "events",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("test_id", sa.String(length=36), nullable=False),
            sa.Column("tester_id", sa.Integer(), nullable=True),
            sa.Column("product_id", sa.String(length=36), nullable=True),
            sa.Column("event_type", sa.String(length=30), nullable=True),
            _created_at(),
            sa.ForeignKeyConstraint(["test_id"], ["tests.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["tester_id"], ["testers_session.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_events_test_id", "events", ["test_id"])
        op.create_index("ix_events_tester_id", "events", ["tester_id"])

    if "summary" not in existing_tables:
        op.create_table(
            "summary",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("test_id", sa.String(length=36), nullable=False),
            sa.Column("variant_type", sa.String(length=1), nullable=False),
            sa.Column("product_id", sa.String(length=36), nullable=True),
            sa.Column("share_of_buy", sa.Float(), nullable=False, server_default="0"),
            sa.Column("share_of_click", sa.Float(), nullable=False, server_default="0"),
            sa.Column("value_score", sa.Float(), nullable=False, server_default="0"),
            sa.Column("win", sa.Boolean(), nullable=False, server_default=sa.false()),
            _created_at(),
            sa.ForeignKeyConstraint(["test_id"], ["tests.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("test_id", "variant_type", name="uq_summary_variant"),
        )
        op.create_index("ix_summary_test_id", "summary", ["test_id"])

    if "competitive_insights" not in existing_tables:
        op.create_table(
            "competitive_insights",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("test_id", sa.String(length=36), nullable=False),
            sa.Column("variant_type", sa.String(length=1), nullable=False),
            sa.Column("competitor_product_id", sa.String(length=36), nullable=False),
            sa.Column("share_of_buy", sa.Float(), nullable=True),
            sa.Column("value", sa.Float(), nullable=True),
            sa.Column("aesthetics", sa.Float(), nullable=True),
            sa.Column("utility", sa.Float(), nullable=True),
            sa.Column("trust", sa.Float(), nullable=True),
            sa.Column("convenience", sa.Float(), nullable=True),
            sa.Column("count", sa.Integer(), nullable=True),
            sa.ForeignKeyConstraint(["test_id"], ["tests.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("test_id", "variant_type", "competitor_product_id",
                                name="uq_competitive_insight"),
        )
        op.create_index("ix_competitive_insights_test_id", "competitive_insights", ["test_id"])

    if "purchase_drivers" not in existing_tables:
        op.create_table(
            "purchase_drivers",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("test_id", sa.String(length=36), nullable=False),
            sa.Column("variant_type", sa.String(length=1), nullable=False),
            sa.Column("product_id", sa.String(length=36), nullable=True),
            sa.Column("appearance", sa.Float(), nullable=True),
            sa.Column("confidence", sa.Float(), nullable=True),
            sa.Column("convenience", sa.Float(), nullable=True),
            sa.Column("brand", sa.Float(), nullable=True),
            sa.Column("value", sa.Float(), nullable=True),
            sa.Column("count", sa.Integer(), nullable=True),
            sa.ForeignKeyConstraint(["test_id"], ["tests.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("test_id", "variant_type", "product_id", name="uq_purchase_driver"),
        )
        op.create_index("ix_purchase_drivers_test_id", "purchase_drivers", ["test_id"])

    if "insight_status" not in existing_tables:
        op.create_table(
            "insight_status",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("test_id", sa.String(length=36), nullable=False),
            sa.Column("variant_type", sa.String(length=1), nullable=False),
            sa.Column("insight_data", sa.String(length=30), nullable=False, server_default="summary"),
            _created_at(),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["test_id"], ["tests.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("test_id", "variant_type", "insight_data", name="uq_insight_status"),
        )
        op.create_index("ix_insight_status_test_id", "insight_status", ["test_id"])

    if "completion_checks" not in existing_tables:
        op.create_table(
            "completion_checks",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("study_id", sa.String(length=64), nullable=False),
            sa.Column("test_id", sa.String(length=36), nullable=False),
            sa.Column("variation_type", sa.String(length=1), nullable=False),
            sa.Column("run_after", sa.DateTime(timezone=True), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="queued"),
            sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("last_error", sa.Text(), nullable=True),
            _created_at(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("study_id"),
        )
        op.create_index("ix_completion_checks_test_id", "completion_checks", ["test_id"])
        op.create_index("ix_completion_checks_run_after", "completion_checks", ["run_after"])

    if "scheduled_jobs" not in existing_tables:
        op.create_table(
            "scheduled_jobs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("job_name", sa.String(length=100), nullable=False),
            sa.Column("description", sa.String(length=500), nullable=True),
            sa.Column("interval_seconds", sa.Integer(), nullable=False, server_default="86400"),
            sa.Column("status", sa.String(length=20), nullable=True),
            sa.Column("is_enabled", sa.Boolean(), nullable=True),
            sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("last_run_status", sa.String(length=20), nullable=True),
            sa.Column("last_run_duration_ms", sa.Integer(), nullable=True),
            sa.Column("last_run_result", sa.JSON(), nullable=True),
            sa.Column("run_count", sa.Integer(), nullable=True),
            sa.Column("error_count", sa.Integer(), nullable=True),
            sa.Column("last_error", sa.Text(), nullable=True),
            _created_at(),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("job_name"),
        )

    if "email_logs" not in existing_tables:
        op.create_table(
            "email_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("recipient_email", sa.String(length=255), nullable=False),
            sa.Column("subject", sa.String(length=500), nullable=False),
            sa.Column("template_name", sa.String(length=100), nullable=True),
            sa.Column("category", sa.String(length=30), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=True),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.Column("test_id", sa.String(length=36), nullable=True),
            sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
            _created_at(),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_email_logs_recipient_email", "email_logs", ["recipient_email"])
        op.create_index("ix_email_logs_test_id", "email_logs", ["test_id"])

    if "notifications" not in existing_tables:
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("recipient", sa.String(length=150), nullable=True),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("category", sa.String(length=30), nullable=True),
            sa.Column("severity", sa.String(length=20), nullable=True),
            sa.Column("entity_type", sa.String(length=30), nullable=True),
            sa.Column("entity_id", sa.String(length=64), nullable=True),
            _created_at(),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_notifications_recipient", "notifications", ["recipient"])


def downgrade():
    for table in (
        "notifications",
        "email_logs",
        "scheduled_jobs",
        "completion_checks",
        "insight_status",
        "purchase_drivers",
        "competitive_insights",
        "summary",
        "events",
        "responses_comparisons",
        "responses_surveys",
        "testers_session",
        "test_demographics",
        "test_competitors",
        "test_variations",
        "tests",
        "products",
    ):
        op.drop_table(table)
