"""
Prolific Integration Gateway.

All outbound HTTP calls to the Prolific REST API go through this class.
Direct `requests` calls in services are FORBIDDEN.

  - Token auth header (``Authorization: Token <PROLIFIC_API_TOKEN>``)
  - Timeout: PROLIFIC_TIMEOUT_SECONDS (default 10 s) on every call
  - No in-line retries: the next scheduled sweep is the retry
  - Circuit breaker: >=5 failures in 60 s -> 30 s pause for all calls
  - Structured GatewayResult returned to the service layer

Threading: circuit breaker state is an in-memory dict guarded by a lock,
shared by sweep worker threads in one process.

Testability: pass a mock `session` to ProlificGateway() in tests instead of
letting it create a real requests.Session internally.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Any

import requests
from flask import current_app, has_app_context

from panelsync.core.exceptions import ProviderError

logger = logging.getLogger(__name__)

# ── Circuit breaker constants ──────────────────────────────────────────────
_CB_FAILURE_THRESHOLD = 5          # failures within window before opening
_CB_WINDOW_SECONDS = 60            # failure counting window (seconds)
_CB_OPEN_DURATION_SECONDS = 30     # how long circuit stays open

# ── Defaults when no app config is available ───────────────────────────────
_DEFAULT_TIMEOUT = 10
_DEFAULT_BASE_URL = "https://api.prolific.com/api/v1/"


class CircuitOpenError(ProviderError):
    """Raised by the service layer when the breaker rejected the call."""


class GatewayResult:
    """Structured return value from ProlificGateway calls.

    Attributes:
        ok:             True if the call succeeded (HTTP 2xx + no exception).
        status_code:    HTTP status code (None if network-level failure).
        data:           Parsed JSON response body (dict or list), else None.
        error:          Human-readable error message or None.
        duration_ms:    Round-trip latency in milliseconds.
        timed_out:      True when the call hit the configured timeout.
        circuit_open:   True when the breaker rejected the call unsent.
    """

    def __init__(
        self,
        ok: bool,
        status_code: int | None,
        data: dict | list | None,
        error: str | None,
        duration_ms: int,
        timed_out: bool = False,
        circuit_open: bool = False,
    ) -> None:
        self.ok = ok
        self.status_code = status_code
        self.data = data
        self.error = error
        self.duration_ms = duration_ms
        self.timed_out = timed_out
        self.circuit_open = circuit_open

    def to_log_dict(self) -> dict:
        return {
            "http_status_code": self.status_code,
            "error_message": self.error,
            "duration_ms": self.duration_ms,
            "timed_out": self.timed_out,
            "status": "success" if self.ok else "error",
        }

    def __repr__(self):
        return f"<GatewayResult ok={self.ok} status={self.status_code}>"


class ProlificGateway:
    """Prolific REST API gateway.

    Instantiate once at module level (module-level singleton pattern).
    Pass a custom `session` in tests to intercept HTTP calls without
    making real network requests.

    Usage:
        from panelsync.integrations.prolific_gateway import prolific_gateway
        result = prolific_gateway.get_study("64b7...")
    """

    _CB_KEY = "prolific"

    def __init__(
        self,
        session: requests.Session | None = None,
        *,
        base_url: str | None = None,
        token: str | None = None,
        timeout: int | float | None = None,
    ) -> None:
        self._session: requests.Session | None = session
        self._base_url = base_url
        self._token = token
        self._timeout = timeout

        # Circuit breaker: key -> {"failures": [datetime, ...], "open_until": datetime|None}
        self._cb_state: dict[str, dict] = {}
        self._cb_lock = threading.Lock()

    # ── HTTP session / settings ──────────────────────────────────────────────

    @property
    def session(self) -> requests.Session:
        """Return (or lazily create) the requests.Session."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def _setting(self, explicit, key: str, default):
        if explicit is not None:
            return explicit
        if has_app_context():
            return current_app.config.get(key, default)
        return default

    @property
    def base_url(self) -> str:
        return self._setting(self._base_url, "PROLIFIC_API_URL", _DEFAULT_BASE_URL)

    @property
    def timeout(self) -> int | float:
        return self._setting(self._timeout, "PROLIFIC_TIMEOUT_SECONDS", _DEFAULT_TIMEOUT)

    def _headers(self) -> dict:
        token = self._setting(self._token, "PROLIFIC_API_TOKEN", "")
        return {
            "Authorization": f"Token {token}",
            "Accept": "application/json",
        }

    def _url(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"

    # ── Circuit breaker ───────────────────────────────────────────────────────

    def _ensure_cb_entry(self) -> dict:
        if self._CB_KEY not in self._cb_state:
            self._cb_state[self._CB_KEY] = {"failures": [], "open_until": None}
        return self._cb_state[self._CB_KEY]

    def circuit_closed(self) -> bool:
        """Return True if the circuit allows calls; False if open (paused)."""
        with self._cb_lock:
            state = self._ensure_cb_entry()
            now = datetime.now(timezone.utc)

            if state["open_until"] and now < state["open_until"]:
                logger.warning("Prolific circuit open until %s", state["open_until"])
                return False

            window_start = now - timedelta(seconds=_CB_WINDOW_SECONDS)
            state["failures"] = [f for f in state["failures"] if f >= window_start]

            if len(state["failures"]) >= _CB_FAILURE_THRESHOLD:
                state["open_until"] = now + timedelta(seconds=_CB_OPEN_DURATION_SECONDS)
                logger.error(
                    "Prolific circuit opened: %d failures in %ds window",
                    len(state["failures"]), _CB_WINDOW_SECONDS,
                )
                return False
            return True

    def _record_failure(self) -> None:
        with self._cb_lock:
            self._ensure_cb_entry()["failures"].append(datetime.now(timezone.utc))

    def _record_success(self) -> None:
        """On success, reset failure history and close the circuit."""
        with self._cb_lock:
            state = self._ensure_cb_entry()
            state["failures"].clear()
            state["open_until"] = None

    def reset_circuit(self) -> None:
        with self._cb_lock:
            self._cb_state.clear()

    # ── Core request dispatcher ───────────────────────────────────────────────

    def request(
        self,
        method: str,
        path: str,
        *,
        params: dict | None = None,
        json_body: dict | None = None,
    ) -> GatewayResult:
        """Execute one authenticated request against the Prolific API.

        Returns:
            GatewayResult — always returns (never raises). Callers check .ok.
        """
        if not self.circuit_closed():
            return GatewayResult(
                ok=False,
                status_code=None,
                data=None,
                error="Circuit breaker is open — Prolific calls temporarily suspended",
                duration_ms=0,
                circuit_open=True,
            )

        url = self._url(path)
        timeout = self.timeout
        kwargs: dict[str, Any] = {"headers": self._headers(), "timeout": timeout}
        if params:
            kwargs["params"] = params
        if json_body is not None:
            kwargs["json"] = json_body

        t0 = time.perf_counter()
        try:
            resp = self.session.request(method, url, **kwargs)
        except requests.Timeout:
            self._record_failure()
            logger.warning("Prolific request timed out after %ss url=%s", timeout, url)
            return GatewayResult(
                ok=False,
                status_code=None,
                data=None,
                error=f"Request timed out after {timeout}s",
                duration_ms=int(timeout * 1000),
                timed_out=True,
            )
        except requests.RequestException as exc:
            self._record_failure()
            error = str(exc)[:500]
            logger.warning("Prolific network error url=%s error=%s", url, error)
            return GatewayResult(ok=False, status_code=None, data=None, error=error, duration_ms=0)

        duration_ms = int((time.perf_counter() - t0) * 1000)

        if not resp.ok:
            self._record_failure()
            logger.warning(
                "Prolific request failed status=%d url=%s",
                resp.status_code, url,
                extra={"duration_ms": duration_ms},
            )
            return GatewayResult(
                ok=False,
                status_code=resp.status_code,
                data=None,
                error=f"HTTP {resp.status_code}: {resp.text[:500]}",
                duration_ms=duration_ms,
            )

        self._record_success()
        try:
            data = resp.json() if resp.content else {}
        except ValueError:
            data = {}
        return GatewayResult(
            ok=True,
            status_code=resp.status_code,
            data=data,
            error=None,
            duration_ms=duration_ms,
        )

    # ── Prolific specific operations ──────────────────────────────────────────

    def get_study(self, study_id: str) -> GatewayResult:
        """GET /studies/{id}/

        Returns:
            GatewayResult.data = {"id", "status", "internal_name", ...}
        """
        return self.request("GET", f"studies/{study_id}/")

    def get_study_submissions(self, study_id: str) -> GatewayResult:
        """GET /submissions/?study={id}

        Returns:
            GatewayResult.data = {"results": list[{participant_id, status, ...}]}
        """
        return self.request("GET", "submissions/", params={"study": study_id})


# Module-level singleton; import this instance in services.
# In tests, override via:
#   from panelsync.integrations import prolific_gateway as gw_module
#   patch.object(gw_module.prolific_gateway, "get_study", return_value=...)
prolific_gateway = ProlificGateway()
