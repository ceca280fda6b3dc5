"""Bounded-concurrency enrichment of discography albums.

Discography listings often lack the album type or the track list. The
enricher fetches full details for those albums, at most ``parallelism`` at a
time. Worker ``i`` only ever writes ``albums[i]``, so the list itself needs no
lock. A failed fetch never fails the batch: the album keeps its data, a
warning is recorded and the type is guessed from the track count.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Final

from core.exceptions import CatalogError, OperationCancelledError
from core.logger import LogFormat
from core.models.catalog_models import Album, year_from_date

if TYPE_CHECKING:
    from core.cancellation import CancellationToken
    from core.warning_collector import WarningCollector

DEFAULT_PARALLELISM: Final = 5
MAX_PARALLELISM: Final = 10
EP_MAX_TRACKS: Final = 6

AlbumFetcher = Callable[[str, "CancellationToken | None"], Awaitable[Album]]


def clamp_parallelism(parallelism: int | None) -> int:
    """Unset or non-positive means the default; anything above the cap is capped."""
    if parallelism is None or parallelism <= 0:
        return DEFAULT_PARALLELISM
    return min(parallelism, MAX_PARALLELISM)


def detect_album_type(track_count: int) -> str:
    """Guess the release type from its number of tracks."""
    if track_count == 0:
        return "album"
    if track_count == 1:
        return "single"
    if track_count <= EP_MAX_TRACKS:
        return "ep"
    return "album"


def needs_details(album: Album) -> bool:
    return not album.type or not album.tracks


@dataclass
class EnrichmentReport:
    """Per-batch outcome counters."""

    total: int = 0
    fetched: int = 0
    failed: int = 0
    skipped: int = 0
    failed_ids: list[str] = field(default_factory=list)


class AlbumEnricher:
    """Fills in missing album details through a bounded fan-out."""

    def __init__(
        self,
        fetch_album: AlbumFetcher,
        console_logger: logging.Logger,
        error_logger: logging.Logger,
        warning_collector: WarningCollector | None = None,
    ) -> None:
        """Initialize the enricher.

        Args:
            fetch_album: Coroutine returning the full album for an id
            console_logger: Logger for progress messages
            error_logger: Logger for fetch failures
            warning_collector: Receives one warning per failed album

        """
        self.fetch_album = fetch_album
        self.console_logger = console_logger
        self.error_logger = error_logger
        self.warning_collector = warning_collector

    async def enrich(
        self,
        albums: list[Album],
        parallelism: int | None = None,
        ctx: CancellationToken | None = None,
    ) -> EnrichmentReport:
        """Enrich ``albums`` in place and wait for every worker.

        Args:
            albums: Caller-owned list; each slot is updated by its own worker
            parallelism: Maximum concurrent fetches (clamped to 1..10, default 5)
            ctx: Cancellation context; once cancelled, workers that have not
                started yet return without touching their album

        Returns:
            Counters for fetched, failed and skipped albums

        """
        workers = clamp_parallelism(parallelism)
        report = EnrichmentReport(total=len(albums))
        if not albums:
            return report

        self.console_logger.info(
            "Fetching details for %s albums with %s workers",
            LogFormat.number(len(albums)),
            LogFormat.number(workers),
        )
        semaphore = asyncio.Semaphore(workers)
        results = await asyncio.gather(
            *(self._enrich_slot(albums, index, semaphore, report, ctx) for index in range(len(albums))),
            return_exceptions=True,
        )

        for index, result in enumerate(results):
            if isinstance(result, BaseException):
                self.error_logger.error(
                    "Unexpected error enriching album %s: %s", albums[index].id, result, exc_info=result
                )
        return report

    async def _enrich_slot(
        self,
        albums: list[Album],
        index: int,
        semaphore: asyncio.Semaphore,
        report: EnrichmentReport,
        ctx: CancellationToken | None,
    ) -> None:
        if ctx is not None and ctx.cancelled:
            report.skipped += 1
            return
        async with semaphore:
            if ctx is not None and ctx.cancelled:
                report.skipped += 1
                return
            await self._process_album(albums[index], report, ctx)

    async def _process_album(self, album: Album, report: EnrichmentReport, ctx: CancellationToken | None) -> None:
        if needs_details(album):
            self.console_logger.debug("Fetching details for album: %s (ID: %s)", album.title, album.id)
            try:
                full_album = await self.fetch_album(album.id, ctx)
            except OperationCancelledError:
                # Not a failure: no warning, but the album still gets the heuristic type
                report.skipped += 1
            except CatalogError as e:
                report.failed += 1
                report.failed_ids.append(album.id)
                self.error_logger.warning("Could not fetch album info for %s (ID: %s): %s", album.title, album.id, e)
                if self.warning_collector is not None:
                    self.warning_collector.add_album_fetch_failure(album.title, album.id, str(e))
            else:
                report.fetched += 1
                album.type = full_album.type
                album.tracks = full_album.tracks
                album.total_tracks = full_album.total_tracks
                album.total_discs = full_album.total_discs
                album.year = full_album.year

        if not album.type:
            album.type = detect_album_type(len(album.tracks))
        album.type = album.type.lower()
        if not album.year:
            album.year = year_from_date(album.release_date)
