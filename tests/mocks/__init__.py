"""Mock infrastructure for catalog access tests."""

from __future__ import annotations

from tests.mocks.http_mock import FakeResponse, FakeSession

__all__ = [
    "FakeResponse",
    "FakeSession",
]
