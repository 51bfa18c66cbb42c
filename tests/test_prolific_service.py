"""Unit tests for panelsync.services.prolific_service.

All outbound HTTP is mocked via patch.object on the module-level
`prolific_gateway` singleton.
"""

from unittest.mock import patch

import pytest

import panelsync.integrations.prolific_gateway as gw_module
from panelsync.core.exceptions import ProviderError
from panelsync.integrations.prolific_gateway import CircuitOpenError, GatewayResult
from panelsync.models.status import VariationStatus
from panelsync.services.prolific_service import ProlificService


def _ok_result(data=None) -> GatewayResult:
    return GatewayResult(ok=True, status_code=200, data=data or {}, error=None, duration_ms=20)


def _err_result(status_code=500, error="HTTP 500: boom", **kwargs) -> GatewayResult:
    return GatewayResult(ok=False, status_code=status_code, data=None, error=error, duration_ms=20, **kwargs)


class TestGetStudyStatus:
    def test_translates_completed(self):
        with patch.object(gw_module.prolific_gateway, "get_study",
                          return_value=_ok_result({"status": "COMPLETED"})):
            assert ProlificService.get_study_status("s1") is VariationStatus.COMPLETE

    def test_unknown_status_is_pending(self):
        with patch.object(gw_module.prolific_gateway, "get_study",
                          return_value=_ok_result({"status": "MYSTERY"})):
            assert ProlificService.get_study_status("s1") is VariationStatus.PENDING

    def test_failure_raises_provider_error(self):
        with patch.object(gw_module.prolific_gateway, "get_study",
                          return_value=_err_result(status_code=503)):
            with pytest.raises(ProviderError) as exc_info:
                ProlificService.get_study_status("s1")
        assert exc_info.value.study_id == "s1"
        assert exc_info.value.status_code == 503

    def test_open_circuit_raises_circuit_open_error(self):
        with patch.object(gw_module.prolific_gateway, "get_study",
                          return_value=_err_result(status_code=None, circuit_open=True)):
            with pytest.raises(CircuitOpenError):
                ProlificService.get_study("s1")


class TestSubmissions:
    def test_invalid_participants_are_not_approved(self):
        payload = {"results": [
            {"participant_id": "p1", "status": "APPROVED"},
            {"participant_id": "p2", "status": "REJECTED"},
            {"participant_id": "p3", "status": "RETURNED"},
            {"participant_id": None, "status": "REJECTED"},
        ]}
        with patch.object(gw_module.prolific_gateway, "get_study_submissions",
                          return_value=_ok_result(payload)):
            assert ProlificService.invalid_participant_ids("s1") == {"p2", "p3"}

    def test_list_payload_accepted(self):
        with patch.object(gw_module.prolific_gateway, "get_study_submissions",
                          return_value=_ok_result([{"participant_id": "p1", "status": "APPROVED"}])):
            assert ProlificService.get_submissions("s1") == [{"participant_id": "p1", "status": "APPROVED"}]

    def test_failure_raises(self):
        with patch.object(gw_module.prolific_gateway, "get_study_submissions",
                          return_value=_err_result()):
            with pytest.raises(ProviderError):
                ProlificService.invalid_participant_ids("s1")
