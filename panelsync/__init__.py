"""
Panelsync
Flask Application Factory.

Usage:
    from panelsync import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import json
import logging
import os
import time

import click
from flask import Flask
from flask_migrate import Migrate

from panelsync.config import config
from panelsync.logging_config import configure_logging
from panelsync.models import db

logger = logging.getLogger(__name__)

migrate = Migrate()


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    config_cls = config[config_name]
    app.config.from_object(config_cls() if config_name == "production" else config_cls)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)

    # ── Models (register tables on db.metadata) ─────────────────────────
    from panelsync.models import testing as _testing_models          # noqa: F401
    from panelsync.models import responses as _responses_models      # noqa: F401
    from panelsync.models import insights as _insights_models        # noqa: F401
    from panelsync.models import scheduling as _scheduling_models    # noqa: F401
    from panelsync.models import notification as _notification_models  # noqa: F401

    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:///") and ":memory:" not in \
            app.config["SQLALCHEMY_DATABASE_URI"]:
        os.makedirs(app.instance_path, exist_ok=True)

    # ── Auto-create tables (CREATE IF NOT EXISTS) ──
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Health check ─────────────────────────────────────────────────────
    @app.route("/health")
    def health():
        from panelsync.services.scheduler_service import SchedulerService
        return {"status": "ok", "app": "panelsync", "scheduler_running": SchedulerService.is_running()}

    _register_cli(app)

    # ── Scheduler initialization (import jobs to register them) ──────────
    import importlib
    importlib.import_module("panelsync.services.scheduled_jobs")  # registers @register_job handlers
    from panelsync.services.scheduler_service import SchedulerService as _SchedulerSvc
    _SchedulerSvc.init_app(app)

    return app


def _echo_json(payload):
    click.echo(json.dumps(payload, indent=2, default=str))


def _register_cli(app):
    """CLI commands: manual job runs, the scheduler loop and insights tools."""

    @app.cli.command("run-job")
    @click.argument("job_name")
    def run_job_cmd(job_name):
        """Run one registered job now and print its result."""
        from panelsync.services.scheduler_service import SchedulerService
        SchedulerService.ensure_jobs_registered()
        result = SchedulerService.run_job(job_name)
        _echo_json(result)
        if result["status"] != "success":
            raise SystemExit(1)

    @app.cli.command("scheduler")
    @click.option("--tick", type=int, default=None, help="Seconds between ticks.")
    def scheduler_cmd(tick):
        """Run the interval scheduler in the foreground until interrupted."""
        from panelsync.services.scheduler_service import SchedulerService
        SchedulerService.start(tick_seconds=tick)
        try:
            while SchedulerService.is_running():
                time.sleep(1)
        except KeyboardInterrupt:
            logger.info("Scheduler interrupted")
        finally:
            SchedulerService.stop()

    @app.cli.command("enqueue-check")
    @click.argument("study_id")
    @click.argument("test_id")
    @click.argument("variation_type")
    def enqueue_check_cmd(study_id, test_id, variation_type):
        """Queue an on-demand completion check for one study."""
        from panelsync.services.completion_queue import enqueue_completion_check
        check = enqueue_completion_check(study_id, test_id, variation_type)
        _echo_json(check.to_dict() if check else {"queued": False, "reason": "queue disabled"})

    @app.cli.command("generate-insights")
    @click.argument("test_id")
    def generate_insights_cmd(test_id):
        """Regenerate insights for every variant of a test."""
        from panelsync.services.insights_service import generate_summary_for_test
        _echo_json(generate_summary_for_test(test_id))

    @app.cli.command("insights-report")
    @click.argument("test_id")
    @click.option("--variant", default=None, help="Focus the report on one variant.")
    def insights_report_cmd(test_id, variant):
        """Print the insights report for a test."""
        from panelsync.services.insights_service import build_insights_report, build_variant_report
        if variant:
            _echo_json(build_variant_report(test_id, variant))
        else:
            _echo_json(build_insights_report(test_id))
