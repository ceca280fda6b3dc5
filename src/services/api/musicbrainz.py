"""MusicBrainz API client.

Looks up recordings and releases by MBID and searches them by ISRC or by
artist/album/title. Every response is decoded through the typed schemas in
``core.models.musicbrainz_models``; an empty result set raises
``NoCandidatesError``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Final

from core.exceptions import NoCandidatesError
from core.models.musicbrainz_models import (
    Recording,
    RecordingSearchResult,
    Release,
    ReleaseSearchResult,
    SearchKind,
    parse_entity,
    parse_search_response,
)
from services.api.request_executor import RequestDescriptor

if TYPE_CHECKING:
    from core.cancellation import CancellationToken
    from services.api.request_executor import ApiRequestExecutor

# Statuses MusicBrainz uses for transient overload besides 429
MUSICBRAINZ_RETRYABLE_STATUSES: Final = frozenset({502, 503, 504})

RECORDING_INCLUDES: Final = "artists+releases+url-rels"
RELEASE_INCLUDES: Final = "artists+labels+recordings+url-rels+release-groups"
ISRC_SEARCH_INCLUDES: Final = "artists+releases+release-groups+recordings"


def quote_term(value: str) -> str:
    """Quote a Lucene search term, escaping embedded quotes and backslashes."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def build_track_query(artist: str, album: str, title: str) -> str:
    """Recording search query; the release clause is omitted when ``album`` is empty."""
    if not album:
        return f"artist:{quote_term(artist)} AND recording:{quote_term(title)}"
    return f"artist:{quote_term(artist)} AND release:{quote_term(album)} AND recording:{quote_term(title)}"


def build_release_query(artist: str, album: str) -> str:
    return f"artist:{quote_term(artist)} AND release:{quote_term(album)}"


class MusicBrainzClient:
    """MusicBrainz web service client.

    The executor passed in should be dedicated to MusicBrainz: it carries the
    service's own rate limit (about three requests per second) and treats
    502/503/504 as retryable.
    """

    def __init__(
        self,
        executor: ApiRequestExecutor,
        console_logger: logging.Logger,
        error_logger: logging.Logger,
        search_limit: int = 5,
    ) -> None:
        """Initialize the MusicBrainz client.

        Args:
            executor: Request executor bound to the ws/2 base URL
            console_logger: Logger for info/debug messages
            error_logger: Logger for errors/warnings
            search_limit: Number of releases requested by release searches

        """
        self.executor = executor
        self.console_logger = console_logger
        self.error_logger = error_logger
        self.search_limit = search_limit

    async def get_track_metadata(self, mbid: str, ctx: CancellationToken | None = None) -> Recording:
        """Fetch a recording by MBID."""
        if not mbid:
            msg = "MBID cannot be empty"
            raise ValueError(msg)
        descriptor = RequestDescriptor.relative(f"recording/{mbid}", {"inc": RECORDING_INCLUDES, "fmt": "json"})
        return parse_entity(Recording, await self.executor.execute_json(descriptor, ctx))

    async def get_release_metadata(self, mbid: str, ctx: CancellationToken | None = None) -> Release:
        """Fetch a release by MBID, including recordings, labels and release group."""
        if not mbid:
            msg = "MBID cannot be empty"
            raise ValueError(msg)
        descriptor = RequestDescriptor.relative(f"release/{mbid}", {"inc": RELEASE_INCLUDES, "fmt": "json"})
        return parse_entity(Release, await self.executor.execute_json(descriptor, ctx))

    async def search_track_by_isrc(self, isrc: str, ctx: CancellationToken | None = None) -> Recording:
        """Find the recording carrying an ISRC.

        Raises:
            NoCandidatesError: If no recording matches

        """
        if not isrc:
            msg = "ISRC cannot be empty"
            raise ValueError(msg)
        result = await self._search_recordings(f"isrc:{quote_term(isrc)}", ctx, inc=ISRC_SEARCH_INCLUDES)
        if not result.recordings:
            msg = f"no track found for ISRC: {isrc}"
            raise NoCandidatesError(msg)
        return result.recordings[0]

    async def search_track(self, artist: str, album: str, title: str, ctx: CancellationToken | None = None) -> Recording:
        """Find a recording by artist, optional album and title.

        Raises:
            NoCandidatesError: If no recording matches

        """
        if not artist or not title:
            msg = "artist and title cannot be empty"
            raise ValueError(msg)
        result = await self._search_recordings(build_track_query(artist, album, title), ctx)
        if not result.recordings:
            msg = f"no track found for: {artist} - {album} - {title}"
            raise NoCandidatesError(msg)
        return result.recordings[0]

    async def search_releases(self, artist: str, album: str, ctx: CancellationToken | None = None) -> list[Release]:
        """Search releases by artist and album title, best service match first.

        Raises:
            NoCandidatesError: If no release matches

        """
        if not artist or not album:
            msg = "artist and album cannot be empty"
            raise ValueError(msg)
        descriptor = RequestDescriptor.relative(
            "release",
            [("query", build_release_query(artist, album)), ("limit", self.search_limit), ("fmt", "json")],
        )
        result = parse_search_response(SearchKind.RELEASE, await self.executor.execute_json(descriptor, ctx))
        assert isinstance(result, ReleaseSearchResult)
        if not result.releases:
            msg = f"no release found for: {artist} - {album}"
            raise NoCandidatesError(msg)
        self.console_logger.debug("MusicBrainz release search '%s - %s': %d hits", artist, album, len(result.releases))
        return result.releases

    async def _search_recordings(
        self, query: str, ctx: CancellationToken | None, inc: str | None = None
    ) -> RecordingSearchResult:
        params: list[tuple[str, str | int]] = [("query", query)]
        if inc:
            params.append(("inc", inc))
        params.extend([("limit", 1), ("fmt", "json")])
        descriptor = RequestDescriptor.relative("recording", params)
        result = parse_search_response(SearchKind.RECORDING, await self.executor.execute_json(descriptor, ctx))
        assert isinstance(result, RecordingSearchResult)
        return result
