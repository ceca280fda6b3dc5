"""Resolve MusicBrainz identifiers for catalog tracks and albums.

Joins the MusicBrainz client, the release disambiguator, the album metadata
cache and the warning collector. The result is a flat mapping of
``MUSICBRAINZ_*`` tag names to identifiers, ready for a tag writer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

from core.exceptions import CatalogError
from core.logger import LogFormat
from core.warning_collector import WarningKind, lookup_context

if TYPE_CHECKING:
    from collections.abc import Sequence

    from core.cancellation import CancellationToken
    from core.models.catalog_models import Album, Track
    from core.models.musicbrainz_models import Recording, Release
    from core.warning_collector import WarningCollector
    from services.api.musicbrainz import MusicBrainzClient
    from services.api.release_scoring import ReleaseDisambiguator
    from services.cache.metadata_cache import AlbumMetadataCache

TAG_TRACK_ID: Final = "MUSICBRAINZ_TRACKID"
TAG_ARTIST_ID: Final = "MUSICBRAINZ_ARTISTID"
TAG_ALBUM_ID: Final = "MUSICBRAINZ_ALBUMID"
TAG_ALBUM_ARTIST_ID: Final = "MUSICBRAINZ_ALBUMARTISTID"
TAG_RELEASE_GROUP_ID: Final = "MUSICBRAINZ_RELEASEGROUPID"

UNKNOWN_ALBUM: Final = "Unknown Album"

# Lookup failures that degrade to a warning instead of failing the caller
LOOKUP_ERRORS: Final = (CatalogError, ValueError)


@dataclass(frozen=True, slots=True)
class IsrcMetadata:
    """Identifiers derived from one ISRC lookup."""

    track_id: str
    track_artist_id: str | None = None
    release_id: str | None = None
    release_group_id: str | None = None
    release_artist_id: str | None = None

    def as_tags(self) -> dict[str, str]:
        return _non_empty(
            {
                TAG_TRACK_ID: self.track_id,
                TAG_ARTIST_ID: self.track_artist_id,
                TAG_ALBUM_ID: self.release_id,
                TAG_ALBUM_ARTIST_ID: self.release_artist_id,
                TAG_RELEASE_GROUP_ID: self.release_group_id,
            }
        )


def _non_empty(tags: dict[str, str | None]) -> dict[str, str]:
    return {name: value for name, value in tags.items() if value}


def expected_track_count(album: Album | None) -> int:
    """Track list length, else the declared total, else 0."""
    if album is None:
        return 0
    return len(album.tracks) or album.total_tracks


def album_title_for(track: Track, album: Album | None) -> str:
    if album is not None and album.title:
        return album.title
    return track.album or UNKNOWN_ALBUM


class MetadataResolver:
    """MusicBrainz lookups with release caching and warning bookkeeping."""

    def __init__(
        self,
        musicbrainz: MusicBrainzClient,
        disambiguator: ReleaseDisambiguator,
        cache: AlbumMetadataCache,
        warning_collector: WarningCollector,
        console_logger: logging.Logger,
        error_logger: logging.Logger,
    ) -> None:
        self.musicbrainz = musicbrainz
        self.disambiguator = disambiguator
        self.cache = cache
        self.warning_collector = warning_collector
        self.console_logger = console_logger
        self.error_logger = error_logger

    async def get_isrc_metadata(
        self, isrc: str, expected_tracks: int = 0, ctx: CancellationToken | None = None
    ) -> IsrcMetadata:
        """Look up an ISRC and pick the most plausible of the recording's releases.

        Raises:
            CatalogError: If the lookup fails or nothing matches

        """
        recording = await self.musicbrainz.search_track_by_isrc(isrc, ctx)
        if not recording.releases:
            return IsrcMetadata(track_id=recording.id, track_artist_id=recording.first_artist_id)

        release = self.disambiguator.select(recording.releases, expected_tracks)
        return IsrcMetadata(
            track_id=recording.id,
            track_artist_id=recording.first_artist_id,
            release_id=release.id,
            release_group_id=release.release_group.id if release.release_group else None,
            release_artist_id=release.first_artist_id,
        )

    async def find_release_id_from_isrc(
        self,
        tracks: Sequence[Track],
        album_artist: str,
        album_title: str,
        ctx: CancellationToken | None = None,
    ) -> str | None:
        """Resolve and cache the album's release id from the first track whose ISRC resolves.

        Returns:
            The cached or newly found release id, or None

        """
        if cached := self.cache.get_release_id(album_artist, album_title):
            return cached

        for track in tracks:
            if not track.isrc:
                continue
            try:
                metadata = await self.get_isrc_metadata(track.isrc, len(tracks), ctx)
            except LOOKUP_ERRORS as e:
                self.console_logger.debug("ISRC %s did not resolve: %s", track.isrc, e)
                continue
            if metadata.release_id:
                self.cache.set_release_id(album_artist, album_title, metadata.release_id)
                self.console_logger.debug(
                    "Release id for %s resolved from ISRC %s",
                    LogFormat.entity(lookup_context(album_artist, album_title)),
                    track.isrc,
                )
                return metadata.release_id
        return None

    async def resolve_release(
        self,
        artist: str,
        album_title: str,
        expected_tracks: int = 0,
        ctx: CancellationToken | None = None,
    ) -> Release | None:
        """Cached release, else fetch by cached id, else search and disambiguate.

        A failure records a release warning and returns None; a later success
        for the same album clears that warning.
        """
        if (release := self.cache.get(artist, album_title)) is not None:
            return release

        try:
            if release_id := self.cache.get_release_id(artist, album_title):
                release = await self.musicbrainz.get_release_metadata(release_id, ctx)
            else:
                candidates = await self.musicbrainz.search_releases(artist, album_title, ctx)
                release = self.disambiguator.select(candidates, expected_tracks)
        except LOOKUP_ERRORS as e:
            self.error_logger.warning("MusicBrainz release lookup failed for %s: %s", lookup_context(artist, album_title), e)
            self.warning_collector.add_release_lookup_failure(artist, album_title, str(e))
            return None

        self.cache.set(artist, album_title, release)
        self.warning_collector.remove(WarningKind.RELEASE_LOOKUP_FAILED, lookup_context(artist, album_title))
        return release

    async def resolve_track(
        self, track: Track, album_title: str, ctx: CancellationToken | None = None
    ) -> Recording | None:
        """ISRC lookup first, then a text search; a failure records a track warning."""
        try:
            if track.isrc:
                try:
                    return await self.musicbrainz.search_track_by_isrc(track.isrc, ctx)
                except LOOKUP_ERRORS as e:
                    self.console_logger.debug("ISRC lookup failed for %s, falling back to search: %s", track.isrc, e)
            return await self.musicbrainz.search_track(track.artist, album_title, track.title, ctx)
        except LOOKUP_ERRORS as e:
            self.error_logger.warning("MusicBrainz track lookup failed for %s: %s", lookup_context(track.artist, track.title), e)
            self.warning_collector.add_track_lookup_failure(track.artist, track.title, str(e))
            return None

    async def build_musicbrainz_tags(
        self, track: Track, album: Album | None = None, ctx: CancellationToken | None = None
    ) -> dict[str, str]:
        """MusicBrainz tag fields for one track.

        An ISRC that resolves provides every identifier at once. Otherwise the
        track and its release are resolved separately.
        """
        if track.isrc:
            try:
                metadata = await self.get_isrc_metadata(track.isrc, expected_track_count(album), ctx)
            except LOOKUP_ERRORS as e:
                self.console_logger.debug("ISRC metadata unavailable for %s: %s", track.isrc, e)
            else:
                return metadata.as_tags()

        tags: dict[str, str | None] = {}
        if (recording := await self.resolve_track(track, album_title_for(track, album), ctx)) is not None:
            tags[TAG_TRACK_ID] = recording.id
            tags[TAG_ARTIST_ID] = recording.first_artist_id

        if album is not None:
            release = await self.resolve_release(album.artist, album.title, expected_track_count(album), ctx)
            if release is not None:
                tags[TAG_ALBUM_ID] = release.id
                tags[TAG_ALBUM_ARTIST_ID] = release.first_artist_id
                tags[TAG_RELEASE_GROUP_ID] = release.release_group.id if release.release_group else None

        return _non_empty(tags)

    def clear_cache(self) -> None:
        self.cache.clear()

    def cache_stats(self) -> tuple[int, list[str]]:
        return self.cache.stats()
