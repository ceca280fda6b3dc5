"""Tests for ApiRequestExecutor - rate-limited HTTP execution with classified retry."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from unittest.mock import MagicMock, patch

import aiohttp
import pytest

from core.backoff import BackoffPolicy
from core.cancellation import CancellationToken
from core.exceptions import (
    HttpStatusError,
    OperationCancelledError,
    RateLimitExceededError,
    RequestError,
    ResponseDecodeError,
    RetryExhaustionError,
)
from services.api.request_executor import (
    ApiRequestExecutor,
    QueryParam,
    RequestDescriptor,
    RetryDecision,
    classify_exception,
    classify_status,
)
from tests.mocks.http_mock import FakeResponse, FakeSession

ExecutorFactory = Callable[..., ApiRequestExecutor]

RATE_LIMITED = FakeResponse(status=429, body=b"slow down", reason="Too Many Requests")


def _downgrade_notices(logger: MagicMock) -> list[str]:
    return [call.args[0] for call in logger.warning.call_args_list if "conservative rate limiting" in call.args[0]]


class TestClassification:
    """Tests for status and exception classification."""

    @pytest.mark.parametrize(
        ("status", "expected"),
        [
            (200, RetryDecision.SUCCESS),
            (204, RetryDecision.SUCCESS),
            (429, RetryDecision.RATE_LIMITED),
            (404, RetryDecision.FATAL),
            (500, RetryDecision.FATAL),
            (301, RetryDecision.FATAL),
        ],
    )
    def test_classify_status(self, status: int, expected: RetryDecision) -> None:
        assert classify_status(status) is expected

    def test_extra_retryable_status(self) -> None:
        assert classify_status(503, frozenset({503})) is RetryDecision.TRANSIENT
        assert classify_status(503, frozenset({503})).retryable

    def test_classify_exception(self) -> None:
        assert classify_exception(aiohttp.ClientConnectionError("reset")) is RetryDecision.TRANSIENT
        assert classify_exception(TimeoutError()) is RetryDecision.TRANSIENT
        assert classify_exception(ValueError("bug")) is RetryDecision.FATAL
        assert not RetryDecision.FATAL.retryable


class TestRequestDescriptor:
    """Tests for descriptors and URL building."""

    def test_relative_with_ordered_params(self, make_executor: ExecutorFactory) -> None:
        executor = make_executor()
        descriptor = RequestDescriptor.relative("/api/search", [("q", "a b"), ("type", "album"), ("limit", 10)])
        assert descriptor.params[2] == QueryParam("limit", "10")
        assert executor.build_url(descriptor) == "https://catalog.test/api/api/search?q=a+b&type=album&limit=10"

    def test_absolute_ignores_base_url(self, make_executor: ExecutorFactory) -> None:
        executor = make_executor()
        descriptor = RequestDescriptor.absolute("https://covers.test/x.jpg?size=large", {"v": 2})
        assert executor.build_url(descriptor) == "https://covers.test/x.jpg?size=large&v=2"

    def test_mapping_params(self) -> None:
        descriptor = RequestDescriptor.relative("api/album", {"albumId": 42})
        assert descriptor.params == (QueryParam("albumId", "42"),)
        assert descriptor.is_path_only


class TestExecute:
    """Tests for the execute loop."""

    @pytest.mark.asyncio
    async def test_success_returns_body(self, make_executor: ExecutorFactory) -> None:
        session = FakeSession(FakeResponse(body=b"payload"))
        executor = make_executor(session)

        assert await executor.execute(RequestDescriptor.relative("api/track")) == b"payload"
        assert session.calls[0].headers["User-Agent"] == "TestAgent/1.0"
        assert session.calls[0].headers["Accept"] == "application/json"
        assert executor.request_count == 1
        assert executor.failure_count == 0

    @pytest.mark.asyncio
    async def test_fatal_status_is_not_retried(
        self, make_executor: ExecutorFactory, mock_error_logger: MagicMock
    ) -> None:
        session = FakeSession(FakeResponse(status=404, body=b"not here", reason="Not Found"))
        executor = make_executor(session)

        with pytest.raises(HttpStatusError) as exc_info:
            await executor.execute(RequestDescriptor.relative("api/album"))

        error = exc_info.value
        assert error.status == 404
        assert error.body == "not here"
        assert "request failed with status: 404 Not Found" in str(error)
        assert len(session.calls) == 1
        assert executor.failure_count == 1
        mock_error_logger.warning.assert_called_once()

    @pytest.mark.asyncio
    async def test_server_error_is_fatal_by_default(self, make_executor: ExecutorFactory) -> None:
        session = FakeSession(FakeResponse(status=503, reason="Unavailable"))
        with pytest.raises(HttpStatusError):
            await make_executor(session).execute(RequestDescriptor.relative("x"))
        assert len(session.calls) == 1

    @pytest.mark.asyncio
    async def test_extra_retryable_status_is_retried(self, make_executor: ExecutorFactory) -> None:
        session = FakeSession(FakeResponse(status=503), FakeResponse(body=b"ok"))
        executor = make_executor(session, retryable_statuses=frozenset({503}))
        assert await executor.execute(RequestDescriptor.relative("x")) == b"ok"
        assert len(session.calls) == 2

    @pytest.mark.asyncio
    async def test_transport_error_then_success(
        self, make_executor: ExecutorFactory, mock_console_logger: MagicMock
    ) -> None:
        session = FakeSession(aiohttp.ClientConnectionError("reset"), FakeResponse(body=b"ok"))
        executor = make_executor(session)

        assert await executor.execute(RequestDescriptor.relative("x")) == b"ok"
        assert len(session.calls) == 2
        assert any("retrying" in call.args[0] for call in mock_console_logger.warning.call_args_list)

    @pytest.mark.asyncio
    async def test_transport_exhaustion_wraps_cause(self, make_executor: ExecutorFactory) -> None:
        cause = aiohttp.ClientConnectionError("refused")
        session = FakeSession(cause)
        executor = make_executor(session, max_attempts=3)

        with pytest.raises(RetryExhaustionError) as exc_info:
            await executor.execute(RequestDescriptor.relative("x"))

        error = exc_info.value
        assert not isinstance(error, RateLimitExceededError)
        assert error.attempts == 3
        assert error.last_error is cause
        assert error.__cause__ is cause
        assert len(session.calls) == 3

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self, make_executor: ExecutorFactory) -> None:
        session = FakeSession(TimeoutError(), FakeResponse(body=b"late"))
        assert await make_executor(session).execute(RequestDescriptor.relative("x")) == b"late"

    @pytest.mark.asyncio
    async def test_rate_limit_exhaustion(self, make_executor: ExecutorFactory) -> None:
        """Five 429 answers out of five attempts end in the rate-limit exhaustion error."""
        session = FakeSession(RATE_LIMITED)
        executor = make_executor(session, max_attempts=5)

        with pytest.raises(RateLimitExceededError) as exc_info:
            await executor.execute(RequestDescriptor.relative("api/discography"))

        error = exc_info.value
        assert error.attempts == 5
        assert "rate limit exceeded (429) after 5 attempts" in str(error)
        assert "reducing parallelism" in str(error)
        assert isinstance(error, RetryExhaustionError)
        assert len(session.calls) == 5

    @pytest.mark.asyncio
    async def test_last_failure_decides_exhaustion_kind(self, make_executor: ExecutorFactory) -> None:
        """A transport failure after 429s ends in the generic exhaustion error."""
        session = FakeSession(RATE_LIMITED, RATE_LIMITED, aiohttp.ServerDisconnectedError())
        with pytest.raises(RetryExhaustionError) as exc_info:
            await make_executor(session, max_attempts=3).execute(RequestDescriptor.relative("x"))
        assert not isinstance(exc_info.value, RateLimitExceededError)

    @pytest.mark.asyncio
    async def test_rate_limit_then_success_resets_streak(self, make_executor: ExecutorFactory) -> None:
        session = FakeSession(RATE_LIMITED, FakeResponse(body=b"ok"))
        executor = make_executor(session)

        assert await executor.execute(RequestDescriptor.relative("x")) == b"ok"
        assert executor.limiter_state.consecutive_rate_limits == 0

    @pytest.mark.asyncio
    async def test_rate_limit_backoff_observes_cancellation(self, make_executor: ExecutorFactory) -> None:
        session = FakeSession(RATE_LIMITED)
        executor = make_executor(session, backoff=BackoffPolicy(base_delay_seconds=10.0, max_delay_seconds=10.0))
        ctx = CancellationToken()
        asyncio.get_running_loop().call_later(0.02, ctx.cancel)

        with pytest.raises(OperationCancelledError):
            await asyncio.wait_for(executor.execute(RequestDescriptor.relative("x"), ctx), timeout=5)
        assert len(session.calls) == 1

    @pytest.mark.asyncio
    async def test_transport_backoff_ignores_cancellation(self, make_executor: ExecutorFactory) -> None:
        """Cancelling during a transport-failure wait still lets the next attempt run."""
        session = FakeSession(aiohttp.ClientConnectionError("reset"), FakeResponse(body=b"ok"))
        executor = make_executor(session, backoff=BackoffPolicy(base_delay_seconds=0.1, max_delay_seconds=0.1, jitter_ratio=0.0))
        ctx = CancellationToken()
        asyncio.get_running_loop().call_later(0.02, ctx.cancel)

        result = await asyncio.wait_for(executor.execute(RequestDescriptor.relative("x"), ctx), timeout=5)

        assert result == b"ok"
        assert ctx.cancelled
        assert len(session.calls) == 2

    @pytest.mark.asyncio
    async def test_rate_limit_streak_survives_transport_failure(self, make_executor: ExecutorFactory) -> None:
        """The per-call 429 count keeps growing across an intervening transport failure."""
        session = FakeSession(
            RATE_LIMITED,
            RATE_LIMITED,
            aiohttp.ClientConnectionError("reset"),
            RATE_LIMITED,
            FakeResponse(body=b"ok"),
        )
        executor = make_executor(session, max_attempts=5)

        with patch.object(BackoffPolicy, "rate_limit_delay", autospec=True, return_value=0.0) as rate_limit_delay:
            result = await executor.execute(RequestDescriptor.relative("x"))

        assert result == b"ok"
        assert [call.args[1:] for call in rate_limit_delay.call_args_list] == [(0, 1), (1, 2), (3, 3)]

    @pytest.mark.asyncio
    async def test_cancelled_before_acquire(self, make_executor: ExecutorFactory) -> None:
        session = FakeSession()
        ctx = CancellationToken()
        ctx.cancel()
        with pytest.raises(OperationCancelledError):
            await make_executor(session).execute(RequestDescriptor.relative("x"), ctx)
        assert session.calls == []

    @pytest.mark.asyncio
    async def test_missing_session(self, make_executor: ExecutorFactory) -> None:
        executor = make_executor()
        executor.set_session(None)
        with pytest.raises(RequestError, match="session"):
            await executor.execute(RequestDescriptor.relative("x"))

    @pytest.mark.asyncio
    async def test_closed_session(self, make_executor: ExecutorFactory) -> None:
        session = FakeSession()
        session.closed = True
        with pytest.raises(RequestError, match="session"):
            await make_executor(session).execute(RequestDescriptor.relative("x"))

    def test_invalid_max_attempts(self, make_executor: ExecutorFactory) -> None:
        with pytest.raises(ValueError):
            make_executor(max_attempts=0)


class TestOverloadDowngrade:
    """Tests for the adaptive switch to conservative rate limiting."""

    @pytest.mark.asyncio
    async def test_downgrade_after_eleven_first_attempt_rate_limits(
        self, make_executor: ExecutorFactory, mock_console_logger: MagicMock
    ) -> None:
        """Eleven consecutive first-attempt 429s switch the limiter exactly once."""
        executor = make_executor(FakeSession(RATE_LIMITED), max_attempts=1)
        state = executor.limiter_state

        for _ in range(10):
            with pytest.raises(RateLimitExceededError):
                await executor.execute(RequestDescriptor.relative("x"))
        assert not state.downgraded
        assert _downgrade_notices(mock_console_logger) == []

        with pytest.raises(RateLimitExceededError):
            await executor.execute(RequestDescriptor.relative("x"))
        assert state.downgraded
        assert state.limiter.profile == state.conservative_profile

        for _ in range(3):
            with pytest.raises(RateLimitExceededError):
                await executor.execute(RequestDescriptor.relative("x"))
        assert len(_downgrade_notices(mock_console_logger)) == 1

    @pytest.mark.asyncio
    async def test_success_between_rate_limits_prevents_downgrade(self, make_executor: ExecutorFactory) -> None:
        responses = [RATE_LIMITED] * 10 + [FakeResponse(body=b"ok")] + [RATE_LIMITED] * 10 + [FakeResponse(body=b"ok")]
        executor = make_executor(FakeSession(*responses), max_attempts=1)

        for _ in range(22):
            try:
                await executor.execute(RequestDescriptor.relative("x"))
            except RateLimitExceededError:
                continue
        assert not executor.limiter_state.downgraded

    @pytest.mark.asyncio
    async def test_separate_executors_do_not_share_overload_state(self, make_executor: ExecutorFactory) -> None:
        noisy = make_executor(FakeSession(RATE_LIMITED), max_attempts=1)
        quiet = make_executor(FakeSession(FakeResponse()), max_attempts=1)
        for _ in range(11):
            with pytest.raises(RateLimitExceededError):
                await noisy.execute(RequestDescriptor.relative("x"))
        await quiet.execute(RequestDescriptor.relative("x"))
        assert noisy.limiter_state.downgraded
        assert not quiet.limiter_state.downgraded


class TestExecuteJson:
    """Tests for JSON decoding."""

    @pytest.mark.asyncio
    async def test_decodes_object(self, make_executor: ExecutorFactory) -> None:
        session = FakeSession(FakeResponse.json({"album": {"id": "1"}}))
        assert await make_executor(session).execute_json(RequestDescriptor.relative("x")) == {"album": {"id": "1"}}

    @pytest.mark.asyncio
    async def test_invalid_json(self, make_executor: ExecutorFactory) -> None:
        session = FakeSession(FakeResponse(body=b"<html>"))
        with pytest.raises(ResponseDecodeError, match="failed to decode"):
            await make_executor(session).execute_json(RequestDescriptor.relative("x"))

    @pytest.mark.asyncio
    async def test_non_object_json(self, make_executor: ExecutorFactory) -> None:
        session = FakeSession(FakeResponse.json([1, 2]))
        with pytest.raises(ResponseDecodeError, match="expected a JSON object"):
            await make_executor(session).execute_json(RequestDescriptor.relative("x"))


class TestStats:
    """Tests for get_stats."""

    @pytest.mark.asyncio
    async def test_stats_after_calls(self, make_executor: ExecutorFactory) -> None:
        session = FakeSession(aiohttp.ClientConnectionError("x"), FakeResponse())
        executor = make_executor(session)
        await executor.execute(RequestDescriptor.relative("x"))

        stats = executor.get_stats()
        assert stats["api_name"] == "test"
        assert stats["request_count"] == 2
        assert stats["failure_count"] == 0
        assert stats["avg_duration"] >= 0
        assert stats["limiter"]["total_requests"] == 1
