"""
Platform-wide exception hierarchy.

Services raise these types; the scheduler and reconciler contain them at
the granularity of one test or one variation.

Usage:
    from panelsync.core.exceptions import NotFoundError, ProviderError

    raise NotFoundError(resource="Test", resource_id=test_id)
    raise ProviderError("GET /studies/abc failed", study_id="abc", status_code=502)
"""


class NotFoundError(Exception):
    """Raised when a requested record does not exist.

    Terminal for the single unit of work that asked for it; siblings in the
    same sweep are unaffected.

    Args:
        resource: Human-readable entity name (e.g. "Test", "Variation").
        resource_id: The key that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is well-formed but violates a business rule.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ProviderError(Exception):
    """Raised when the external study provider call fails.

    Covers network errors, timeouts, non-2xx responses and an open circuit.
    Never retried in-line; the next scheduled sweep is the retry.

    Args:
        message: Error description from the gateway.
        study_id: Study that was being queried.
        status_code: HTTP status if one was received.
    """

    def __init__(
        self,
        message: str,
        study_id: str | None = None,
        status_code: int | None = None,
    ) -> None:
        self.study_id = study_id
        self.status_code = status_code
        super().__init__(message)
