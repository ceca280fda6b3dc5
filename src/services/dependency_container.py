"""Service container for the catalog access layer.

Builds the shared HTTP session, one rate-limited request executor per remote
service, and the clients and helpers on top of them. Owns the lifecycle:
``initialize`` opens the session and hands it to every executor, ``close``
logs per-API statistics and closes the session.
"""

from __future__ import annotations

import ssl
from typing import TYPE_CHECKING, Any

import aiohttp
import certifi

from core.backoff import BackoffPolicy
from core.logger import LogFormat
from core.warning_collector import WarningCollector

from .api.catalog import CatalogClient
from .api.musicbrainz import MUSICBRAINZ_RETRYABLE_STATUSES, MusicBrainzClient
from .api.rate_limiter import RateLimiterState, RateLimitProfile
from .api.release_scoring import ReleaseDisambiguator
from .api.request_executor import ApiRequestExecutor
from .cache.metadata_cache import AlbumMetadataCache
from .metadata_resolver import MetadataResolver

if TYPE_CHECKING:
    import logging
    from types import TracebackType

    from core.models.config_models import AppConfig

CATALOG_API_NAME = "catalog"
MUSICBRAINZ_API_NAME = "musicbrainz"


def build_catalog_limiter(config: AppConfig) -> RateLimiterState:
    limits = config.rate_limits
    return RateLimiterState(
        default_profile=RateLimitProfile(limits.refill_interval_seconds, limits.burst),
        conservative_profile=RateLimitProfile(limits.conservative_refill_interval_seconds, limits.conservative_burst),
        overload_threshold=limits.overload_threshold,
    )


def build_musicbrainz_limiter(config: AppConfig) -> RateLimiterState:
    """MusicBrainz bucket; the conservative profile halves the rate and the burst."""
    mb = config.musicbrainz
    return RateLimiterState(
        default_profile=RateLimitProfile(mb.refill_interval_seconds, mb.burst),
        conservative_profile=RateLimitProfile(mb.refill_interval_seconds * 2, max(1, mb.burst // 2)),
        overload_threshold=config.rate_limits.overload_threshold,
    )


class CatalogServices:
    """Wires executors, clients, cache and resolver from one ``AppConfig``.

    Example:
        async with CatalogServices(config, console_logger, error_logger) as services:
            artist = await services.catalog.get_artist("123")

    """

    def __init__(
        self,
        config: AppConfig,
        console_logger: logging.Logger,
        error_logger: logging.Logger,
        *,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        """Construct every service; no I/O happens until ``initialize``.

        Args:
            config: Validated application configuration
            console_logger: Logger for info/debug messages
            error_logger: Logger for errors/warnings
            session: Pre-built session to use instead of creating one; the
                container does not close a session it did not create

        """
        self.config = config
        self.console_logger = console_logger
        self.error_logger = error_logger
        self.session = session
        self._owns_session = session is None

        self.warning_collector = WarningCollector(enabled=config.warnings.enabled)

        self.catalog_executor = ApiRequestExecutor(
            api_name=CATALOG_API_NAME,
            base_url=config.catalog.base_url,
            limiter_state=build_catalog_limiter(config),
            console_logger=console_logger,
            error_logger=error_logger,
            user_agent=config.catalog.user_agent,
            backoff=BackoffPolicy(config.retry.base_delay_seconds, config.retry.max_delay_seconds),
            max_attempts=config.retry.max_attempts,
            request_timeout=config.catalog.request_timeout_seconds,
        )
        self.musicbrainz_executor = ApiRequestExecutor(
            api_name=MUSICBRAINZ_API_NAME,
            base_url=config.musicbrainz.base_url,
            limiter_state=build_musicbrainz_limiter(config),
            console_logger=console_logger,
            error_logger=error_logger,
            user_agent=config.musicbrainz.user_agent,
            backoff=BackoffPolicy(config.musicbrainz.initial_delay_seconds, config.musicbrainz.max_delay_seconds),
            max_attempts=config.musicbrainz.max_attempts,
            request_timeout=config.musicbrainz.request_timeout_seconds,
            retryable_statuses=MUSICBRAINZ_RETRYABLE_STATUSES,
        )

        self.catalog = CatalogClient(
            self.catalog_executor,
            console_logger,
            error_logger,
            self.warning_collector,
            default_parallelism=config.catalog.parallelism,
        )
        self.musicbrainz = MusicBrainzClient(
            self.musicbrainz_executor,
            console_logger,
            error_logger,
            search_limit=config.musicbrainz.search_limit,
        )
        self.cache = AlbumMetadataCache()
        self.disambiguator = ReleaseDisambiguator(console_logger)
        self.resolver = MetadataResolver(
            self.musicbrainz,
            self.disambiguator,
            self.cache,
            self.warning_collector,
            console_logger,
            error_logger,
        )

    @property
    def executors(self) -> tuple[ApiRequestExecutor, ...]:
        return self.catalog_executor, self.musicbrainz_executor

    def _create_client_session(self) -> aiohttp.ClientSession:
        """Create a new aiohttp ClientSession with certifi-backed TLS."""
        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(
            limit_per_host=10,
            limit=50,
            ttl_dns_cache=300,
            ssl=ssl_context,
        )
        timeout = aiohttp.ClientTimeout(total=self.config.catalog.request_timeout_seconds * 2, connect=15)
        return aiohttp.ClientSession(timeout=timeout, connector=connector)

    async def initialize(self) -> None:
        """Open the session (unless one was injected) and share it with every executor."""
        if self.session is None or self.session.closed:
            self.session = self._create_client_session()
            self._owns_session = True
            self.console_logger.info(
                "HTTP session initialized for %s",
                ", ".join(LogFormat.entity(executor.api_name) for executor in self.executors),
            )
        for executor in self.executors:
            executor.set_session(self.session)

    def get_stats(self) -> dict[str, dict[str, Any]]:
        stats = {executor.api_name: executor.get_stats() for executor in self.executors}
        stats["cache"] = self.cache.get_stats()
        return stats

    def log_statistics(self) -> None:
        """Log request counts, limiter waits and call durations per API."""
        self.console_logger.info("--- API Call Statistics ---")
        total_calls = 0
        for executor in self.executors:
            stats = executor.get_stats()
            limiter_stats = stats["limiter"]
            total_calls += stats["request_count"]
            self.console_logger.info(
                "API: %-12s | Requests: %-5d | Failures: %-4d | Avg Wait: %.3fs | Avg Duration: %.3fs",
                executor.api_name.title(),
                stats["request_count"],
                stats["failure_count"],
                limiter_stats["avg_wait_time"],
                stats["avg_duration"],
            )
        if not total_calls:
            self.console_logger.info("No API calls were made during this session.")
        self.console_logger.info("---------------------------")

    async def close(self) -> None:
        """Log statistics and close the session if this container created it."""
        self.log_statistics()
        for executor in self.executors:
            executor.set_session(None)
        if self.session is not None and self._owns_session and not self.session.closed:
            await self.session.close()
            self.console_logger.debug("%s closed", LogFormat.entity("ClientSession"))
        self.session = None

    async def __aenter__(self) -> CatalogServices:
        await self.initialize()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()
