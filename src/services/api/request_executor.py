"""API Request Executor module.

Handles HTTP request execution with token bucket rate limiting, Fibonacci
backoff and a single retry classification shared by every outcome of an
attempt (transport failure, rate limiting, other statuses).
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import urllib.parse
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Final

import aiohttp

from core.backoff import BackoffPolicy
from core.cancellation import sleep_with_context
from core.exceptions import (
    HttpStatusError,
    RateLimitExceededError,
    RequestError,
    ResponseDecodeError,
    RetryExhaustionError,
)
from core.logger import LogFormat

if TYPE_CHECKING:
    from core.cancellation import CancellationToken
    from services.api.rate_limiter import RateLimiterState


# Constants
DEFAULT_MAX_ATTEMPTS: Final = 5
DEFAULT_REQUEST_TIMEOUT_SECONDS: Final = 30.0
HTTP_TOO_MANY_REQUESTS: Final = 429
WAIT_TIME_LOG_THRESHOLD: Final = 0.1
ERROR_BODY_SNIPPET_LIMIT: Final = 200
TRANSPORT_ERRORS: Final = (aiohttp.ClientError, TimeoutError)


@dataclass(frozen=True, slots=True)
class QueryParam:
    """One ordered query string parameter."""

    name: str
    value: str


@dataclass(frozen=True, slots=True)
class RequestDescriptor:
    """Immutable description of one logical GET request.

    Attributes:
        path: Path relative to the executor's base URL, or an absolute URL
        params: Query parameters, appended in order
        is_path_only: True when ``path`` is relative to the base URL

    """

    path: str
    params: tuple[QueryParam, ...] = ()
    is_path_only: bool = True

    @classmethod
    def relative(cls, path: str, params: Mapping[str, Any] | Iterable[tuple[str, Any]] = ()) -> RequestDescriptor:
        return cls(path, _to_params(params), is_path_only=True)

    @classmethod
    def absolute(cls, url: str, params: Mapping[str, Any] | Iterable[tuple[str, Any]] = ()) -> RequestDescriptor:
        return cls(url, _to_params(params), is_path_only=False)


def _to_params(params: Mapping[str, Any] | Iterable[tuple[str, Any]]) -> tuple[QueryParam, ...]:
    items = params.items() if isinstance(params, Mapping) else params
    return tuple(QueryParam(str(name), str(value)) for name, value in items)


class RetryDecision(Enum):
    """Classification of a single attempt's result."""

    SUCCESS = "success"
    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"
    FATAL = "fatal"

    @property
    def retryable(self) -> bool:
        return self in {RetryDecision.RATE_LIMITED, RetryDecision.TRANSIENT}


def classify_status(status: int, retryable_statuses: frozenset[int] = frozenset()) -> RetryDecision:
    """Classify an HTTP status code.

    Args:
        status: HTTP status code
        retryable_statuses: Extra statuses a client treats like transport failures

    """
    if 200 <= status < 300:
        return RetryDecision.SUCCESS
    if status == HTTP_TOO_MANY_REQUESTS:
        return RetryDecision.RATE_LIMITED
    if status in retryable_statuses:
        return RetryDecision.TRANSIENT
    return RetryDecision.FATAL


def classify_exception(error: BaseException) -> RetryDecision:
    """Transport failures (connection problems, timeouts) are transient; anything else is fatal."""
    if isinstance(error, TRANSPORT_ERRORS):
        return RetryDecision.TRANSIENT
    return RetryDecision.FATAL


@dataclass(frozen=True, slots=True)
class Success:
    payload: bytes
    status: int


@dataclass(frozen=True, slots=True)
class RetryableFailure:
    reason: str
    status: int | None = None
    error: Exception | None = None

    @property
    def rate_limited(self) -> bool:
        return self.status == HTTP_TOO_MANY_REQUESTS


@dataclass(frozen=True, slots=True)
class FatalFailure:
    reason: str
    error: RequestError


RetryOutcome = Success | RetryableFailure | FatalFailure


class ApiRequestExecutor:
    """Executes HTTP requests with rate limiting and classified retry.

    Handles all low-level HTTP communication including:
    - Request preparation (URL, headers, timeouts)
    - Token bucket acquisition with adaptive downgrade
    - Fibonacci backoff for transport failures and 429 responses
    - Status classification and error reporting
    """

    def __init__(
        self,
        *,
        api_name: str,
        base_url: str,
        limiter_state: RateLimiterState,
        console_logger: logging.Logger,
        error_logger: logging.Logger,
        user_agent: str,
        backoff: BackoffPolicy | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        retryable_statuses: frozenset[int] = frozenset(),
        extra_headers: Mapping[str, str] | None = None,
    ) -> None:
        """Initialize the API request executor.

        Args:
            api_name: Short name used as the log prefix
            base_url: Base URL that path-only descriptors are joined to
            limiter_state: Rate limiter state owned by this executor
            console_logger: Logger for info/debug messages
            error_logger: Logger for errors/warnings
            user_agent: User-Agent header for requests
            backoff: Retry delay policy
            max_attempts: Attempts per logical request
            request_timeout: Total per-attempt deadline in seconds
            retryable_statuses: Extra statuses retried like transport failures
            extra_headers: Headers merged over the defaults

        """
        if max_attempts <= 0:
            msg = "max_attempts must be a positive integer"
            raise ValueError(msg)
        self.api_name = api_name
        self.base_url = base_url
        self.limiter_state = limiter_state
        self.console_logger = console_logger
        self.error_logger = error_logger
        self.user_agent = user_agent
        self.backoff = backoff or BackoffPolicy()
        self.max_attempts = max_attempts
        self.request_timeout = request_timeout
        self.retryable_statuses = retryable_statuses
        self.headers: dict[str, str] = {"User-Agent": user_agent, "Accept": "application/json"}
        if extra_headers:
            self.headers |= dict(extra_headers)

        # Session managed externally, set via set_session()
        self.session: aiohttp.ClientSession | None = None

        # Metrics
        self.request_count = 0
        self.failure_count = 0
        self.call_durations: list[float] = []

    def set_session(self, session: aiohttp.ClientSession | None) -> None:
        """Set the aiohttp session for making requests."""
        self.session = session

    def build_url(self, descriptor: RequestDescriptor) -> str:
        """Build the final request target from a descriptor."""
        if descriptor.is_path_only:
            target = f"{self.base_url.rstrip('/')}/{descriptor.path.lstrip('/')}"
        else:
            target = descriptor.path
        if descriptor.params:
            query = urllib.parse.urlencode([(param.name, param.value) for param in descriptor.params])
            separator = "&" if "?" in target else "?"
            target = f"{target}{separator}{query}"
        return target

    async def execute(self, descriptor: RequestDescriptor, ctx: CancellationToken | None = None) -> bytes:
        """Execute one logical request and return the raw response body.

        Args:
            descriptor: What to request
            ctx: Cancellation context observed by the limiter and the 429 backoff

        Returns:
            Body of the first 2xx response

        Raises:
            HttpStatusError: On a non-retryable status
            RateLimitExceededError: When every attempt was rate limited
            RetryExhaustionError: When attempts ran out on transient failures
            OperationCancelledError: When ``ctx`` is cancelled while waiting

        """
        wait_time = await self.limiter_state.acquire(ctx)
        if wait_time > WAIT_TIME_LOG_THRESHOLD:
            self.console_logger.debug("%s Waited %.3fs for rate limiting", LogFormat.api(self.api_name), wait_time)

        url = self.build_url(descriptor)
        consecutive_rate_limits = 0
        last_failure: RetryableFailure | None = None

        for attempt in range(self.max_attempts):
            outcome = await self._attempt_request(url, attempt)

            if isinstance(outcome, Success):
                self.limiter_state.record_response()
                return outcome.payload

            if isinstance(outcome, FatalFailure):
                self.failure_count += 1
                self.error_logger.warning("[%s] %s. URL: %s", self.api_name, outcome.reason, url)
                raise outcome.error

            last_failure = outcome
            if outcome.rate_limited:
                consecutive_rate_limits += 1
                await self._handle_rate_limited(attempt, consecutive_rate_limits, ctx)
            else:
                # Transport failures leave the 429 streak of this call untouched
                await self._handle_transient_failure(attempt, outcome)

        self.failure_count += 1
        raise self._exhaustion_error(last_failure, url)

    async def execute_json(self, descriptor: RequestDescriptor, ctx: CancellationToken | None = None) -> dict[str, Any]:
        """Execute a request and decode a JSON object body.

        Raises:
            ResponseDecodeError: If the body is not a JSON object

        """
        payload = await self.execute(descriptor, ctx)
        url = self.build_url(descriptor)
        try:
            data = json.loads(payload)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            msg = f"failed to decode response from {url}: {e}"
            raise ResponseDecodeError(msg, url) from e
        if not isinstance(data, dict):
            msg = f"expected a JSON object from {url}, got {type(data).__name__}"
            raise ResponseDecodeError(msg, url)
        return data

    async def _attempt_request(self, url: str, attempt: int) -> RetryOutcome:
        """Perform a single attempt and classify its result."""
        session = self._ensure_session(url)
        self.request_count += 1
        start_time = time.monotonic()
        try:
            async with session.get(
                url,
                headers=self.headers,
                timeout=aiohttp.ClientTimeout(total=self.request_timeout),
            ) as response:
                status = response.status
                decision = classify_status(status, self.retryable_statuses)
                self.console_logger.debug(
                    "%s Request (Attempt %d): %s - Status: %s (%.3fs)",
                    LogFormat.api(self.api_name),
                    attempt + 1,
                    url,
                    LogFormat.status(status),
                    time.monotonic() - start_time,
                )
                if decision is RetryDecision.RATE_LIMITED:
                    # Body is discarded when the context manager releases the response
                    return RetryableFailure("rate limited (429)", status=status)
                body = await response.read()
        except TRANSPORT_ERRORS as e:
            if classify_exception(e) is not RetryDecision.TRANSIENT:
                raise
            return RetryableFailure(f"{type(e).__name__}: {e}", error=e)
        finally:
            self.call_durations.append(time.monotonic() - start_time)

        if decision is RetryDecision.SUCCESS:
            return Success(body, status)
        if decision is RetryDecision.TRANSIENT:
            return RetryableFailure(f"server returned status {status}", status=status)
        snippet = body[:ERROR_BODY_SNIPPET_LIMIT].decode("utf-8", errors="replace")
        error = HttpStatusError(status, response.reason, url, snippet)
        return FatalFailure(str(error), error)

    def _ensure_session(self, url: str) -> aiohttp.ClientSession:
        """Return the session or raise if it is not usable."""
        if self.session is None or self.session.closed:
            msg = "HTTP session not initialized or closed"
            raise RequestError(msg, url)
        return self.session

    async def _handle_rate_limited(self, attempt: int, consecutive_rate_limits: int, ctx: CancellationToken | None) -> None:
        """Track overload, downgrade if needed, then wait (cancellation-aware)."""
        self.limiter_state.record_rate_limit()
        if attempt == 0 and self.limiter_state.is_overloaded() and self.limiter_state.downgrade():
            profile = self.limiter_state.conservative_profile
            self.console_logger.warning(
                "%s Server overload detected, switching to conservative rate limiting (%.0fms interval, burst %d)",
                LogFormat.api(self.api_name),
                profile.refill_interval_seconds * 1000,
                profile.burst,
            )

        if attempt >= self.max_attempts - 1:
            return

        delay = self.backoff.with_jitter(self.backoff.rate_limit_delay(attempt, consecutive_rate_limits))
        self.console_logger.warning(
            "%s Rate limited (%s), retrying %s in %s",
            LogFormat.api(self.api_name),
            LogFormat.status(HTTP_TOO_MANY_REQUESTS),
            LogFormat.attempt(attempt + 2, self.max_attempts),
            LogFormat.duration(delay),
        )
        await sleep_with_context(delay, ctx)

    async def _handle_transient_failure(self, attempt: int, failure: RetryableFailure) -> None:
        """Wait before retrying a transport failure.

        The wait does not observe the cancellation context.
        """
        if attempt >= self.max_attempts - 1:
            return
        delay = self.backoff.delay(attempt)
        self.console_logger.warning(
            "%s %s, retrying %s in %s",
            LogFormat.api(self.api_name),
            failure.reason,
            LogFormat.attempt(attempt + 2, self.max_attempts),
            LogFormat.duration(delay),
        )
        await asyncio.sleep(delay)

    def _exhaustion_error(self, last_failure: RetryableFailure | None, url: str) -> RetryExhaustionError:
        if last_failure is not None and last_failure.rate_limited:
            error: RetryExhaustionError = RateLimitExceededError(self.max_attempts, url)
        else:
            reason = last_failure.reason if last_failure else "unknown error"
            error = RetryExhaustionError(
                f"request failed after {self.max_attempts} attempts: {reason}",
                self.max_attempts,
                last_failure.error if last_failure else None,
                url,
            )
            error.__cause__ = error.last_error
        self.error_logger.error("[%s] %s. URL: %s", self.api_name, error, url)
        return error

    def get_stats(self) -> dict[str, Any]:
        """Request counters, average duration and limiter statistics."""
        durations = self.call_durations
        return {
            "api_name": self.api_name,
            "request_count": self.request_count,
            "failure_count": self.failure_count,
            "avg_duration": sum(durations) / len(durations) if durations else 0.0,
            "limiter": self.limiter_state.get_stats(),
        }
