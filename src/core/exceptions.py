"""Core exceptions for configuration, request and retry handling.

This module contains shared exception classes to avoid circular imports
between the config loader, the request executor and the API clients.
"""


class ConfigurationError(Exception):
    """Raised when configuration loading or parsing fails."""

    def __init__(self, message: str, config_path: str | None = None) -> None:
        """Initialize the configuration error.

        Args:
            message: Error description
            config_path: Path to the config file that caused the error

        """
        super().__init__(message)
        self.config_path = config_path


class CatalogError(Exception):
    """Base exception for catalog access failures."""


class RequestError(CatalogError):
    """Raised when a single logical request cannot produce a payload."""

    def __init__(self, message: str, url: str | None = None) -> None:
        """Initialize the request error.

        Args:
            message: Error description
            url: Target URL of the failed request

        """
        super().__init__(message)
        self.url = url


class HttpStatusError(RequestError):
    """Raised for a non-success, non-retryable HTTP status."""

    def __init__(self, status: int, reason: str | None = None, url: str | None = None, body: str = "") -> None:
        """Initialize the status error.

        Args:
            status: HTTP status code returned by the server
            reason: HTTP reason phrase, if any
            url: Target URL of the failed request
            body: Leading part of the response body

        """
        text = f"{status} {reason}" if reason else str(status)
        message = f"request failed with status: {text}"
        if body:
            message = f"{message}, body: {body}"
        super().__init__(message, url)
        self.status = status
        self.reason = reason
        self.body = body


class ResponseDecodeError(RequestError):
    """Raised when a response payload cannot be decoded or validated."""


class NoCandidatesError(CatalogError):
    """Raised when a search returns no result at all."""


class OperationCancelledError(CatalogError):
    """Raised when a cancellation context fires while an operation is waiting."""


class RetryError(Exception):
    """Base exception for retry-related errors."""


class RetryExhaustionError(RetryError, RequestError):
    """Raised when retry attempts are exhausted."""

    def __init__(self, message: str, attempts: int, last_error: Exception | None = None, url: str | None = None) -> None:
        """Initialize retry exhaustion error.

        Args:
            message: Error description
            attempts: Number of retry attempts made
            last_error: The last error that occurred before giving up
            url: Target URL of the failed request

        """
        super().__init__(message, url)
        self.attempts = attempts
        self.last_error = last_error


class RateLimitExceededError(RetryExhaustionError):
    """Raised when every attempt of a request was answered with HTTP 429."""

    def __init__(self, attempts: int, url: str | None = None) -> None:
        message = (
            f"rate limit exceeded (429) after {attempts} attempts, "
            "server is overloaded - try reducing parallelism"
        )
        super().__init__(message, attempts, None, url)
