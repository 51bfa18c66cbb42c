"""
Panelsync
Notification Service.

Central service for creating in-app notifications, plus the
two lifecycle notices the reconciler emits: the "study still running"
reminder and the "test complete" notice.

Reminders are fire-and-forget: a failure is logged and swallowed so it can
never fail the sweep that triggered it.
"""

import logging

from flask import current_app

from panelsync.models import db
from panelsync.models.notification import Notification
from panelsync.services.email_service import EmailService

logger = logging.getLogger(__name__)


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, title, message="", category="system", severity="info",
               recipient="all", entity_type="", entity_id=None):
        """
        Create a single notification record.

        Returns:
            The created Notification instance (already committed).
        """
        notif = Notification(
            recipient=recipient,
            title=title,
            message=message,
            category=category,
            severity=severity,
            entity_type=entity_type,
            entity_id=entity_id,
        )
        db.session.add(notif)
        db.session.commit()
        return notif

    # ── Lifecycle notices ─────────────────────────────────────────────────

    @staticmethod
    def send_completion_reminder(study_id, test_id, *, variation_type=None, study_status=None):
        """
        Tell operators that a study has not completed yet.

        Creates one in-app notification and emails every address in
        REMINDER_RECIPIENTS.

        Returns:
            True if the reminder was recorded, False if sending failed.
        """
        try:
            NotificationService.create(
                title=f"Study {study_id} has not completed",
                message=(
                    f"Test {test_id} variant {variation_type or '?'} is still "
                    f"{study_status or 'running'} on Prolific."
                ),
                category="reminder",
                severity="warning",
                entity_type="test",
                entity_id=str(test_id),
            )
            context = {
                "study_id": study_id,
                "test_id": test_id,
                "variation_type": variation_type or "?",
                "study_status": study_status or "unknown",
            }
            for address in current_app.config.get("REMINDER_RECIPIENTS", []):
                EmailService.send_from_template(
                    to_email=address,
                    template_name="completion_reminder",
                    context=context,
                    category="reminder",
                    test_id=str(test_id),
                )
        except Exception as e:
            db.session.rollback()
            logger.error(
                "Completion reminder failed for study %s: %s", study_id, e,
                extra={"test_id": test_id, "study_id": study_id},
            )
            return False

        logger.info(
            "Completion reminder sent for study %s", study_id,
            extra={"test_id": test_id, "study_id": study_id},
        )
        return True

    @staticmethod
    def notify_test_completed(test):
        """Create the "test complete" notice for a finalized test and email it out."""
        notif = NotificationService.create(
            title=f"Test {test.name} is complete",
            message="All dispatched studies have completed on Prolific.",
            category="test",
            severity="success",
            entity_type="test",
            entity_id=str(test.id),
        )
        for address in current_app.config.get("REMINDER_RECIPIENTS", []):
            EmailService.send_from_template(
                to_email=address,
                template_name="test_completed",
                context={"test_name": test.name, "test_id": test.id},
                category="test",
                test_id=str(test.id),
            )
        return notif
