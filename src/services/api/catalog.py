"""Client for the download catalog API.

Wraps the request executor with the catalog endpoints (album, track,
discography, search, stream) and normalizes what the API leaves blank.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Final, Literal, TypeVar, cast

from pydantic import BaseModel, ValidationError

from core.exceptions import ResponseDecodeError
from core.models.catalog_models import (
    Album,
    AlbumResponse,
    Artist,
    DiscographyResponse,
    SearchResults,
    StreamUrlResponse,
    Track,
    TrackResponse,
    year_from_date,
)
from services.api.album_enricher import AlbumEnricher, clamp_parallelism
from services.api.request_executor import RequestDescriptor

if TYPE_CHECKING:
    from core.cancellation import CancellationToken
    from core.warning_collector import WarningCollector
    from services.api.request_executor import ApiRequestExecutor

ModelT = TypeVar("ModelT", bound=BaseModel)

SearchType = Literal["artist", "album", "track", "all"]

SEARCH_TYPES: Final[tuple[str, ...]] = ("artist", "album", "track")
UNKNOWN_ARTIST: Final = "Unknown Artist"
# Highest quality FLAC stream
STREAM_QUALITY: Final = "27"


def normalize_track(track: Track, album: Album, position: int) -> None:
    """Fill blank track fields from the album; ``position`` is the 1-based track index."""
    if not track.album:
        track.album = album.title
    if not track.album_artist:
        track.album_artist = album.artist
    if not track.genre:
        track.genre = album.genre
    if not track.release_date:
        track.release_date = album.release_date
    if not track.year:
        track.year = year_from_date(album.release_date)
    if not track.track_number:
        track.track_number = position
    if not track.disc_number:
        track.disc_number = 1


class CatalogClient:
    """High-level catalog operations on top of an ``ApiRequestExecutor``."""

    def __init__(
        self,
        executor: ApiRequestExecutor,
        console_logger: logging.Logger,
        error_logger: logging.Logger,
        warning_collector: WarningCollector | None = None,
        default_parallelism: int | None = None,
    ) -> None:
        self.executor = executor
        self.console_logger = console_logger
        self.error_logger = error_logger
        self.default_parallelism = clamp_parallelism(default_parallelism)
        self.enricher = AlbumEnricher(self.get_album, console_logger, error_logger, warning_collector)

    @property
    def endpoint(self) -> str:
        return self.executor.base_url.rstrip("/")

    async def _get_model(
        self, schema: type[ModelT], path: str, params: dict[str, str], ctx: CancellationToken | None
    ) -> ModelT:
        descriptor = RequestDescriptor.relative(path, params)
        data = await self.executor.execute_json(descriptor, ctx)
        try:
            return schema.model_validate(data)
        except ValidationError as e:
            msg = f"invalid {path} response: {e.error_count()} validation error(s)"
            raise ResponseDecodeError(msg, self.executor.build_url(descriptor)) from e

    def normalize_album(self, album: Album) -> Album:
        """Fill track defaults, totals, year and an absolute cover URL."""
        for position, track in enumerate(album.tracks, start=1):
            normalize_track(track, album, position)
        if not album.total_tracks:
            album.total_tracks = len(album.tracks)
        if not album.total_discs:
            album.total_discs = 1
        if not album.year:
            album.year = year_from_date(album.release_date)
        if album.cover.startswith("/"):
            album.cover = f"{self.endpoint}{album.cover}"
        return album

    async def get_album(self, album_id: str, ctx: CancellationToken | None = None) -> Album:
        """Fetch and normalize one album."""
        response = await self._get_model(AlbumResponse, "api/album", {"albumId": album_id}, ctx)
        return self.normalize_album(response.album)

    async def get_track(self, track_id: str, ctx: CancellationToken | None = None) -> Track:
        """Fetch one track, defaulting its numbering and year."""
        response = await self._get_model(TrackResponse, "api/track", {"trackId": track_id}, ctx)
        track = response.track
        if not track.track_number:
            track.track_number = 1
        if not track.disc_number:
            track.disc_number = 1
        if not track.year:
            track.year = year_from_date(track.release_date)
        return track

    async def get_artist(
        self,
        artist_id: str,
        parallelism: int | None = None,
        ctx: CancellationToken | None = None,
    ) -> Artist:
        """Fetch an artist's discography and enrich albums lacking type or tracks.

        Args:
            artist_id: Catalog artist id
            parallelism: Concurrent album detail fetches; defaults to the configured value
            ctx: Cancellation context shared by every detail fetch

        """
        response = await self._get_model(DiscographyResponse, "api/discography", {"artistId": artist_id}, ctx)
        artist = response.artist
        artist.albums = response.albums

        if artist.name in ("", UNKNOWN_ARTIST) and artist.albums:
            artist.name = artist.albums[0].artist

        report = await self.enricher.enrich(artist.albums, parallelism or self.default_parallelism, ctx)
        self.console_logger.debug(
            "Discography of %s: %d albums, %d fetched, %d failed, %d skipped",
            artist.name,
            report.total,
            report.fetched,
            report.failed,
            report.skipped,
        )
        return artist

    async def get_stream_url(self, track_id: str, ctx: CancellationToken | None = None) -> str:
        response = await self._get_model(
            StreamUrlResponse, "api/stream", {"trackId": track_id, "quality": STREAM_QUALITY}, ctx
        )
        return response.url

    async def download_cover(self, cover_url: str, ctx: CancellationToken | None = None) -> bytes:
        """Download cover art bytes from an absolute URL."""
        return await self.executor.execute(RequestDescriptor.absolute(cover_url), ctx)

    async def search(
        self,
        query: str,
        search_type: SearchType = "all",
        limit: int = 10,
        ctx: CancellationToken | None = None,
    ) -> SearchResults:
        """Search artists, albums and/or tracks; ``"all"`` runs the three searches concurrently.

        Raises:
            CatalogError: The first failure among the typed searches

        """
        types = SEARCH_TYPES if search_type == "all" else (search_type,)
        # Every typed search runs to completion before a failure is raised
        payloads = await asyncio.gather(
            *(self._search_one(query, kind, limit, ctx) for kind in types), return_exceptions=True
        )
        for outcome in payloads:
            if isinstance(outcome, BaseException):
                raise outcome

        results = SearchResults()
        for kind, payload in zip(types, payloads, strict=True):
            self._merge_search_payload(results, kind, cast(dict[str, Any], payload))
        return results

    async def _search_one(self, query: str, kind: str, limit: int, ctx: CancellationToken | None) -> dict[str, Any]:
        descriptor = RequestDescriptor.relative("api/search", [("q", query), ("type", kind), ("limit", limit)])
        return await self.executor.execute_json(descriptor, ctx)

    @staticmethod
    def _merge_search_payload(results: SearchResults, kind: str, payload: dict[str, Any]) -> None:
        try:
            match kind:
                case "artist":
                    if "artists" in payload:
                        results.artists.extend(Artist.model_validate(item) for item in payload["artists"] or [])
                    elif "tracks" in payload:
                        # Some artist searches only return tracks; derive unique artists from them
                        seen: dict[str, Artist] = {}
                        for item in payload["tracks"] or []:
                            track = Track.model_validate(item)
                            seen.setdefault(track.artist_id, Artist(id=track.artist_id, name=track.artist))
                        results.artists.extend(seen.values())
                    else:
                        results.artists.extend(Artist.model_validate(item) for item in payload.get("results") or [])
                case "album":
                    items = payload["albums"] if "albums" in payload else payload.get("results")
                    results.albums.extend(Album.model_validate(item) for item in items or [])
                case "track":
                    items = payload["tracks"] if "tracks" in payload else payload.get("results")
                    results.tracks.extend(Track.model_validate(item) for item in items or [])
        except ValidationError as e:
            msg = f"invalid {kind} search response: {e.error_count()} validation error(s)"
            raise ResponseDecodeError(msg) from e
