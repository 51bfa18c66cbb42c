"""Unit tests for panelsync.integrations.prolific_gateway.

Test strategy
-------------
A MagicMock stands in for requests.Session so no network traffic is made.
Each test builds its own ProlificGateway with explicit settings, except the
config test, which relies on the testing app config.
"""

from unittest.mock import MagicMock

import requests

from panelsync.integrations.prolific_gateway import ProlificGateway


def _response(status_code=200, json_data=None, text=""):
    resp = MagicMock()
    resp.status_code = status_code
    resp.ok = 200 <= status_code < 300
    resp.content = b"{}" if json_data is not None else b""
    resp.json.return_value = json_data
    resp.text = text
    return resp


def _gateway(session):
    return ProlificGateway(session, base_url="https://prolific.example/api/v1/", token="tok", timeout=7)


class TestRequest:
    def test_get_study_url_auth_and_timeout(self):
        session = MagicMock()
        session.request.return_value = _response(json_data={"id": "s1", "status": "ACTIVE"})

        result = _gateway(session).get_study("s1")

        assert result.ok
        assert result.data["status"] == "ACTIVE"
        method, url = session.request.call_args.args
        kwargs = session.request.call_args.kwargs
        assert method == "GET"
        assert url == "https://prolific.example/api/v1/studies/s1/"
        assert kwargs["headers"]["Authorization"] == "Token tok"
        assert kwargs["timeout"] == 7

    def test_submissions_pass_study_param(self):
        session = MagicMock()
        session.request.return_value = _response(json_data={"results": []})

        _gateway(session).get_study_submissions("s1")

        _, url = session.request.call_args.args
        assert url.endswith("/submissions/")
        assert session.request.call_args.kwargs["params"] == {"study": "s1"}

    def test_settings_default_to_app_config(self, app):
        session = MagicMock()
        session.request.return_value = _response(json_data={})

        ProlificGateway(session).get_study("s1")

        _, url = session.request.call_args.args
        assert url == "https://prolific.test/api/v1/studies/s1/"
        assert session.request.call_args.kwargs["headers"]["Authorization"] == "Token test-token"

    def test_timeout_is_reported_not_raised(self):
        session = MagicMock()
        session.request.side_effect = requests.Timeout("slow")

        result = _gateway(session).get_study("s1")

        assert not result.ok
        assert result.timed_out
        assert result.status_code is None

    def test_network_error(self):
        session = MagicMock()
        session.request.side_effect = requests.ConnectionError("refused")

        result = _gateway(session).get_study("s1")

        assert not result.ok
        assert "refused" in result.error

    def test_non_2xx_is_failure(self):
        session = MagicMock()
        session.request.return_value = _response(status_code=404, text="Not found")

        result = _gateway(session).get_study("missing")

        assert not result.ok
        assert result.status_code == 404
        assert result.to_log_dict()["status"] == "error"

    def test_no_inline_retry(self):
        session = MagicMock()
        session.request.return_value = _response(status_code=502, text="bad gateway")

        _gateway(session).get_study("s1")

        assert session.request.call_count == 1


class TestCircuitBreaker:
    def test_opens_after_threshold(self):
        session = MagicMock()
        session.request.return_value = _response(status_code=500, text="boom")
        gateway = _gateway(session)

        for _ in range(5):
            gateway.get_study("s1")
        result = gateway.get_study("s1")

        assert result.circuit_open
        assert session.request.call_count == 5

    def test_success_clears_failures(self):
        session = MagicMock()
        gateway = _gateway(session)
        session.request.return_value = _response(status_code=500)
        for _ in range(4):
            gateway.get_study("s1")
        session.request.return_value = _response(json_data={"status": "ACTIVE"})
        gateway.get_study("s1")
        session.request.return_value = _response(status_code=500)

        for _ in range(4):
            gateway.get_study("s1")

        assert gateway.circuit_closed()

    def test_reset_circuit(self):
        session = MagicMock()
        session.request.return_value = _response(status_code=500)
        gateway = _gateway(session)
        for _ in range(5):
            gateway.get_study("s1")
        assert not gateway.circuit_closed()

        gateway.reset_circuit()

        assert gateway.circuit_closed()


def test_empty_body_is_empty_dict():
    session = MagicMock()
    session.request.return_value = _response()

    result = _gateway(session).get_study("s1")

    assert result.ok
    assert result.data == {}
