"""Tests for the catalog API client."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any
from unittest.mock import MagicMock

import pytest

from core.exceptions import HttpStatusError, ResponseDecodeError
from core.models.catalog_models import Album, Track
from core.warning_collector import WarningCollector
from services.api.catalog import CatalogClient, normalize_track
from services.api.request_executor import ApiRequestExecutor
from tests.mocks.http_mock import FakeResponse, FakeSession

ExecutorFactory = Callable[..., ApiRequestExecutor]


def _album_payload(album_id: str, **extra: Any) -> dict[str, Any]:
    album: dict[str, Any] = {
        "id": album_id,
        "title": f"Album {album_id}",
        "artist": "Coldplay",
        "releaseDate": "2000-07-10",
        "genre": "Rock",
        "type": "ALBUM",
        "tracks": [{"id": 1, "title": "Don't Panic"}, {"id": 2, "title": "Shiver", "trackNumber": 7}],
    }
    album.update(extra)
    return {"album": album}


@pytest.fixture
def make_client(
    make_executor: ExecutorFactory, mock_console_logger: MagicMock, mock_error_logger: MagicMock
) -> Callable[[FakeSession], CatalogClient]:
    def _make(session: FakeSession, collector: WarningCollector | None = None) -> CatalogClient:
        return CatalogClient(make_executor(session), mock_console_logger, mock_error_logger, collector)

    return _make


class TestNormalizeTrack:
    """Tests for normalize_track."""

    def test_fills_blanks_from_album(self) -> None:
        album = Album(title="Parachutes", artist="Coldplay", genre="Rock", release_date="2000-07-10")
        track = Track(title="Yellow")
        normalize_track(track, album, 5)
        assert track.album == "Parachutes"
        assert track.album_artist == "Coldplay"
        assert track.genre == "Rock"
        assert track.year == "2000"
        assert track.track_number == 5
        assert track.disc_number == 1

    def test_keeps_existing_values(self) -> None:
        album = Album(title="Parachutes", genre="Rock")
        track = Track(album="Other", genre="Pop", track_number=9, disc_number=2)
        normalize_track(track, album, 1)
        assert (track.album, track.genre, track.track_number, track.disc_number) == ("Other", "Pop", 9, 2)


class TestGetAlbum:
    """Tests for get_album and get_track."""

    @pytest.mark.asyncio
    async def test_get_album_normalizes(self, make_client: Callable[[FakeSession], CatalogClient]) -> None:
        session = FakeSession(FakeResponse.json(_album_payload("7", cover="/covers/7.jpg")))
        album = await make_client(session).get_album("7")

        assert session.urls == ["https://catalog.test/api/api/album?albumId=7"]
        assert album.total_tracks == 2
        assert album.total_discs == 1
        assert album.year == "2000"
        assert album.cover == "https://catalog.test/api/covers/7.jpg"
        assert [track.track_number for track in album.tracks] == [1, 7]
        assert all(track.album == "Album 7" for track in album.tracks)

    @pytest.mark.asyncio
    async def test_get_album_invalid_payload(self, make_client: Callable[[FakeSession], CatalogClient]) -> None:
        session = FakeSession(FakeResponse.json({"unexpected": True}))
        with pytest.raises(ResponseDecodeError, match="invalid api/album response"):
            await make_client(session).get_album("7")

    @pytest.mark.asyncio
    async def test_get_album_propagates_status_errors(
        self, make_client: Callable[[FakeSession], CatalogClient]
    ) -> None:
        session = FakeSession(FakeResponse(status=404, reason="Not Found"))
        with pytest.raises(HttpStatusError):
            await make_client(session).get_album("missing")

    @pytest.mark.asyncio
    async def test_get_track_defaults(self, make_client: Callable[[FakeSession], CatalogClient]) -> None:
        session = FakeSession(FakeResponse.json({"track": {"id": 5, "title": "Yellow", "releaseDate": "2000-06-26"}}))
        track = await make_client(session).get_track("5")

        assert session.urls == ["https://catalog.test/api/api/track?trackId=5"]
        assert track.id == "5"
        assert track.track_number == 1
        assert track.disc_number == 1
        assert track.year == "2000"


class TestGetArtist:
    """Tests for get_artist."""

    @pytest.mark.asyncio
    async def test_discography_is_enriched(
        self, make_client: Callable[[FakeSession], CatalogClient]
    ) -> None:
        discography = {
            "artist": {"id": "9", "name": "Unknown Artist"},
            "albums": [
                {"id": "1", "title": "Parachutes", "artist": "Coldplay"},
                {"id": "2", "title": "Yellow", "artist": "Coldplay", "type": "SINGLE", "tracks": [{"id": "t"}]},
            ],
        }
        session = FakeSession(
            routes={
                "api/discography": [FakeResponse.json(discography)],
                "api/album": [FakeResponse.json(_album_payload("1"))],
            }
        )

        artist = await make_client(session).get_artist("9", parallelism=2)

        assert artist.name == "Coldplay"
        assert [album.type for album in artist.albums] == ["album", "single"]
        assert len(artist.albums[0].tracks) == 2
        assert session.urls.count("https://catalog.test/api/api/album?albumId=1") == 1
        assert not any("albumId=2" in url for url in session.urls)

    @pytest.mark.asyncio
    async def test_failed_album_is_warned(self, make_client: Callable[..., CatalogClient]) -> None:
        discography = {"artist": {"id": "9", "name": "Coldplay"}, "albums": [{"id": "1", "title": "Broken"}]}
        session = FakeSession(
            routes={
                "api/discography": [FakeResponse.json(discography)],
                "api/album": [FakeResponse(status=500, reason="Server Error")],
            }
        )
        collector = WarningCollector()

        artist = await make_client(session, collector).get_artist("9")

        assert artist.albums[0].type == "album"
        assert collector.count() == 1


class TestOtherEndpoints:
    """Tests for stream, cover and search endpoints."""

    @pytest.mark.asyncio
    async def test_stream_url(self, make_client: Callable[[FakeSession], CatalogClient]) -> None:
        session = FakeSession(FakeResponse.json({"url": "https://stream.test/5.flac"}))
        assert await make_client(session).get_stream_url("5") == "https://stream.test/5.flac"
        assert session.urls == ["https://catalog.test/api/api/stream?trackId=5&quality=27"]

    @pytest.mark.asyncio
    async def test_download_cover(self, make_client: Callable[[FakeSession], CatalogClient]) -> None:
        session = FakeSession(FakeResponse(body=b"\xff\xd8jpeg"))
        assert await make_client(session).download_cover("https://img.test/c.jpg") == b"\xff\xd8jpeg"
        assert session.urls == ["https://img.test/c.jpg"]

    @pytest.mark.asyncio
    async def test_search_all_merges_results(self, make_client: Callable[[FakeSession], CatalogClient]) -> None:
        session = FakeSession(
            routes={
                "type=artist": [
                    FakeResponse.json(
                        {
                            "tracks": [
                                {"id": 1, "artist": "Coldplay", "artistId": 9},
                                {"id": 2, "artist": "Coldplay", "artistId": 9},
                                {"id": 3, "artist": "Chris Martin", "artistId": 10},
                            ]
                        }
                    )
                ],
                "type=album": [FakeResponse.json({"albums": [{"id": "1", "title": "Parachutes"}]})],
                "type=track": [FakeResponse.json({"results": [{"id": "5", "title": "Yellow"}]})],
            }
        )

        results = await make_client(session).search("coldplay", limit=5)

        assert [(artist.id, artist.name) for artist in results.artists] == [("9", "Coldplay"), ("10", "Chris Martin")]
        assert [album.title for album in results.albums] == ["Parachutes"]
        assert [track.title for track in results.tracks] == ["Yellow"]
        assert len(session.calls) == 3
        assert all("q=coldplay" in url and "limit=5" in url for url in session.urls)

    @pytest.mark.asyncio
    async def test_search_all_finishes_every_search_before_raising(
        self, make_executor: ExecutorFactory, mock_console_logger: MagicMock, mock_error_logger: MagicMock
    ) -> None:
        """A fast failing search waits for the slower ones before its error propagates."""
        session = FakeSession(
            routes={
                "type=artist": [FakeResponse.json({"artists": [{"id": 9, "name": "Coldplay"}]}, status=200)],
                "type=album": [FakeResponse(status=404, body=b"missing", reason="Not Found")],
                "type=track": [FakeResponse(body=b'{"results": []}', delay=0.05)],
            }
        )
        executor = make_executor(session)
        client = CatalogClient(executor, mock_console_logger, mock_error_logger)

        with pytest.raises(HttpStatusError) as exc_info:
            await client.search("coldplay")

        assert exc_info.value.status == 404
        assert len(session.calls) == 3
        assert len(executor.call_durations) == 3

    @pytest.mark.asyncio
    async def test_search_single_type(self, make_client: Callable[[FakeSession], CatalogClient]) -> None:
        session = FakeSession(FakeResponse.json({"artists": [{"id": 9, "name": "Coldplay"}]}))
        results = await make_client(session).search("coldplay", "artist")
        assert [artist.name for artist in results.artists] == ["Coldplay"]
        assert results.albums == []
        assert len(session.calls) == 1

    @pytest.mark.asyncio
    async def test_search_invalid_items(self, make_client: Callable[[FakeSession], CatalogClient]) -> None:
        session = FakeSession(FakeResponse.json({"albums": [{"tracks": "not a list"}]}))
        with pytest.raises(ResponseDecodeError, match="invalid album search response"):
            await make_client(session).search("x", "album")
