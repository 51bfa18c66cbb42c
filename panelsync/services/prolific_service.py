"""
Prolific service layer.

Turns gateway results into domain values and exceptions. Everything that
needs study state from the provider calls these functions; none of them
retry. A failed call raises ProviderError and the caller decides whether
that fails a single variation or the whole unit of work.

All outbound HTTP: delegated to
`panelsync.integrations.prolific_gateway.prolific_gateway`.
"""

from __future__ import annotations

import logging

import panelsync.integrations.prolific_gateway as gw_module
from panelsync.core.exceptions import ProviderError
from panelsync.integrations.prolific_gateway import CircuitOpenError, GatewayResult
from panelsync.models.status import VariationStatus, translate_study_status

logger = logging.getLogger(__name__)

APPROVED_SUBMISSION_STATUSES = {"APPROVED"}


def _raise_for_result(result: GatewayResult, study_id: str, action: str) -> None:
    if result.ok:
        return
    if result.circuit_open:
        raise CircuitOpenError(result.error, study_id=study_id)
    raise ProviderError(
        f"{action} failed for study {study_id}: {result.error}",
        study_id=study_id,
        status_code=result.status_code,
    )


class ProlificService:
    """Stateless service class for provider reads."""

    @staticmethod
    def get_study(study_id: str) -> dict:
        """Return the raw study payload.

        Raises:
            ProviderError: network failure, timeout, non-2xx or open circuit.
        """
        result = gw_module.prolific_gateway.get_study(study_id)
        _raise_for_result(result, study_id, "get_study")
        data = result.data if isinstance(result.data, dict) else {}
        logger.debug(
            "Fetched study %s status=%s", study_id, data.get("status"),
            extra={"study_id": study_id, "duration_ms": result.duration_ms},
        )
        return data

    @classmethod
    def get_study_status(cls, study_id: str) -> VariationStatus:
        """Fetch a study and translate its status into the local vocabulary."""
        data = cls.get_study(study_id)
        return translate_study_status(data.get("status"))

    @staticmethod
    def get_submissions(study_id: str) -> list[dict]:
        result = gw_module.prolific_gateway.get_study_submissions(study_id)
        _raise_for_result(result, study_id, "get_study_submissions")
        data = result.data
        if isinstance(data, dict):
            return list(data.get("results") or [])
        if isinstance(data, list):
            return data
        return []

    @classmethod
    def invalid_participant_ids(cls, study_id: str) -> set[str]:
        """Participant ids whose submission was not approved."""
        invalid = set()
        for submission in cls.get_submissions(study_id):
            status = str(submission.get("status") or "").upper()
            participant_id = submission.get("participant_id")
            if participant_id and status not in APPROVED_SUBMISSION_STATUSES:
                invalid.add(participant_id)
        return invalid
