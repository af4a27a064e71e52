"""Exception types for crawl errors.

This module defines the exception hierarchy used across the engine:

- Transient exceptions (timeouts, network failures, 5xx responses) are
  retried by the retry policy and never escape it.
- PermanentFetchError and ExtractionError are per-page failures, handled
  inside the orchestrator's page loop.
- SinkError and ConfigurationError are run-level failures.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from listwalk.data_types import ExtractedRecord, FetchAttempt


# =============================================================================
# Transient Exceptions
# =============================================================================


class TransientException(Exception):
    """Base class for transient errors that might resolve on retry.

    Transient exceptions represent temporary failures like network issues,
    server errors (5xx), or render timeouts. Retrying the page fetch may
    succeed.

    The retry policy is responsible for retry logic and strategy.
    """

    pass


class HTMLResponseAssumptionException(TransientException):
    """Raised when the HTTP response has an unexpected status code.

    Attributes:
        status_code: The actual HTTP status code received.
        expected_codes: List of status codes that were expected.
        url: The URL that returned the unexpected status.
        message: Human-readable error message.
    """

    def __init__(
        self,
        status_code: int,
        expected_codes: list[int],
        url: str,
    ) -> None:
        self.status_code = status_code
        self.expected_codes = expected_codes
        self.url = url

        expected_str = ", ".join(str(code) for code in expected_codes)
        self.message = (
            f"HTTP {status_code} from {url} (expected one of: {expected_str})"
        )
        super().__init__(self.message)


class RenderTimeoutException(TransientException):
    """Raised when navigating to a page takes longer than its timeout.

    Attributes:
        url: The URL that timed out.
        timeout_seconds: The timeout duration in seconds.
        message: Human-readable error message.
    """

    def __init__(self, url: str, timeout_seconds: float) -> None:
        self.url = url
        self.timeout_seconds = timeout_seconds
        self.message = f"Render of {url} timed out after {timeout_seconds}s"
        super().__init__(self.message)


class NetworkException(TransientException):
    """Raised when the connection to the site fails.

    Attributes:
        url: The URL being fetched.
        reason: Description of the underlying network failure.
        message: Human-readable error message.
    """

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        self.reason = reason
        self.message = f"Network failure fetching {url}: {reason}"
        super().__init__(self.message)


# =============================================================================
# Page-level failures
# =============================================================================


class PermanentFetchError(Exception):
    """Raised when the retry policy has used up every attempt for a page.

    Attributes:
        url: Description of the failed action (normally the page URL).
        attempts: The FetchAttempt records, one per try.
        last_error: The transient exception of the final attempt.
        cancelled: True if retrying stopped because the run was cancelled.
    """

    def __init__(
        self,
        url: str,
        attempts: list[FetchAttempt],
        last_error: TransientException,
        cancelled: bool = False,
    ) -> None:
        self.url = url
        self.attempts = attempts
        self.last_error = last_error
        self.cancelled = cancelled
        reason = "cancelled" if cancelled else "gave up"
        self.message = (
            f"{reason} on {url} after {len(attempts)} attempt(s): "
            f"{last_error}"
        )
        super().__init__(self.message)


class ExtractionError(Exception):
    """Raised when a rendered document cannot be used for extraction.

    Missing fields are never an error; this is reserved for documents that
    cannot be parsed at all or selectors that cannot be compiled.
    """

    def __init__(
        self,
        message: str,
        url: str = "",
        context: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.url = url
        self.context = context or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        parts = [self.message]
        if self.url:
            parts.append(f"URL: {self.url}")
        for key, value in self.context.items():
            parts.append(f"  {key}: {value}")
        return "\n".join(parts)


# =============================================================================
# Run-level failures
# =============================================================================


class SinkError(Exception):
    """Raised when a partition's records cannot be persisted.

    The in-memory records travel with the exception so a caller can retry
    persistence without crawling the partition again.

    Attributes:
        partition_key: The partition whose flush failed.
        records: The records that were not persisted.
        cause: The underlying I/O error.
    """

    def __init__(
        self,
        partition_key: str,
        records: list[ExtractedRecord],
        cause: BaseException,
    ) -> None:
        self.partition_key = partition_key
        self.records = records
        self.cause = cause
        self.message = (
            f"Failed to persist {len(records)} record(s) for partition "
            f"'{partition_key}': {cause}"
        )
        super().__init__(self.message)


class ConfigurationError(Exception):
    """Raised when the crawl configuration is missing or invalid.

    Attributes:
        message: Human-readable error message.
        errors: Optional list of individual validation errors.
    """

    def __init__(
        self, message: str, errors: list[dict[str, Any]] | None = None
    ) -> None:
        self.message = message
        self.errors = errors or []
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        if not self.errors:
            return self.message
        details = "; ".join(
            f"{'.'.join(str(part) for part in err.get('loc', ()))}: "
            f"{err.get('msg', '')}"
            for err in self.errors
        )
        return f"{self.message}: {details}"
