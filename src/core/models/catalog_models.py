"""Pydantic models for the download catalog API.

Catalog payloads use camelCase keys, numeric or string identifiers and
explicit ``null`` values; the shared base model normalizes all three.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class CatalogModel(BaseModel):
    """Base model: camelCase aliases, numbers coerced to strings, nulls treated as missing."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        coerce_numbers_to_str=True,
    )

    @model_validator(mode="before")
    @classmethod
    def drop_null_values(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data


def year_from_date(release_date: str) -> str:
    """Leading four characters of a release date, or an empty string when too short."""
    return release_date[:4] if len(release_date) >= 4 else ""


class Track(CatalogModel):
    """A catalog track."""

    id: str = ""
    title: str = ""
    artist: str = ""
    artist_id: str = ""
    cover: str = Field(default="", alias="albumCover")
    release_date: str = ""
    duration: float = 0
    album: str = ""
    album_title: str = ""
    album_artist: str = ""
    genre: str = ""
    track_number: int = 0
    disc_number: int = 0
    composer: str = ""
    producer: str = ""
    year: str = ""
    isrc: str = ""
    copyright: str = ""
    album_id: str = ""
    musicbrainz_id: str = ""


class Album(CatalogModel):
    """A catalog album; ``type`` is one of album, ep, single (or empty when unknown)."""

    id: str = ""
    title: str = ""
    artist: str = ""
    cover: str = ""
    release_date: str = ""
    tracks: list[Track] = Field(default_factory=list)
    genre: str = ""
    type: str = ""
    label: Any = None
    upc: str = ""
    copyright: str = ""
    year: str = ""
    total_tracks: int = 0
    total_discs: int = 0
    musicbrainz_id: str = ""


class Artist(CatalogModel):
    id: str = ""
    name: str = ""
    picture: str = ""
    albums: list[Album] = Field(default_factory=list)
    tracks: list[Track] = Field(default_factory=list)
    bio: str = ""
    country: str = ""
    followers: int = 0


class AlbumResponse(CatalogModel):
    album: Album


class TrackResponse(CatalogModel):
    track: Track


class DiscographyResponse(CatalogModel):
    """The discography endpoint returns the artist and its albums side by side."""

    artist: Artist = Field(default_factory=Artist)
    albums: list[Album] = Field(default_factory=list)


class StreamUrlResponse(CatalogModel):
    url: str


class SearchResults(BaseModel):
    """Merged results of one or more typed searches."""

    artists: list[Artist] = Field(default_factory=list)
    albums: list[Album] = Field(default_factory=list)
    tracks: list[Track] = Field(default_factory=list)
