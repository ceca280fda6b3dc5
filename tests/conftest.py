"""Pytest configuration and shared fixtures for the catalog access tests.

This module configures the test environment by ensuring the project root
and ``src`` are on sys.path, allowing imports of the src package modules
and of ``tests.mocks``.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Callable
from pathlib import Path
from unittest.mock import MagicMock

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
for entry in (PROJECT_ROOT, PROJECT_ROOT / "src"):
    if str(entry) not in sys.path:
        sys.path.insert(0, str(entry))

from core.backoff import BackoffPolicy  # noqa: E402
from services.api.rate_limiter import RateLimiterState, RateLimitProfile  # noqa: E402
from services.api.request_executor import ApiRequestExecutor  # noqa: E402
from tests.mocks.http_mock import FakeSession  # noqa: E402

TEST_BASE_URL = "https://catalog.test/api"

# Large enough that no test ever waits for a token
FAST_PROFILE = RateLimitProfile(refill_interval_seconds=0.001, burst=1000)

# Keeps real retry sleeps in the millisecond range
FAST_BACKOFF = BackoffPolicy(base_delay_seconds=0.001, max_delay_seconds=0.005, jitter_ratio=0.0)


@pytest.fixture
def mock_console_logger() -> MagicMock:
    """Mock console logger for testing."""
    return MagicMock(spec=logging.Logger)


@pytest.fixture
def mock_error_logger() -> MagicMock:
    """Mock error logger for testing."""
    return MagicMock(spec=logging.Logger)


@pytest.fixture
def make_executor(
    mock_console_logger: MagicMock,
    mock_error_logger: MagicMock,
) -> Callable[..., ApiRequestExecutor]:
    """Factory for executors bound to a FakeSession with fast limits and backoff."""

    def _make(session: FakeSession | None = None, **overrides: object) -> ApiRequestExecutor:
        kwargs: dict[str, object] = {
            "api_name": "test",
            "base_url": TEST_BASE_URL,
            "limiter_state": RateLimiterState(FAST_PROFILE, FAST_PROFILE),
            "console_logger": mock_console_logger,
            "error_logger": mock_error_logger,
            "user_agent": "TestAgent/1.0",
            "backoff": FAST_BACKOFF,
            "max_attempts": 3,
        }
        kwargs.update(overrides)
        executor = ApiRequestExecutor(**kwargs)  # type: ignore[arg-type]
        executor.set_session(session if session is not None else FakeSession())  # type: ignore[arg-type]
        return executor

    return _make
