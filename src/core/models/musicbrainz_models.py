"""Typed schemas for MusicBrainz web service (ws/2) JSON responses.

Search responses are decoded into one explicit model per result kind
(recording-shaped or release-shaped). Scalar fields the service may omit
are modelled as ``None`` rather than silently defaulted.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any, Final, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from core.exceptions import ResponseDecodeError

# Version of the web service these schemas describe (the "/ws/2" path segment)
MUSICBRAINZ_SCHEMA_VERSION: Final = 2


def _to_kebab(name: str) -> str:
    return name.replace("_", "-")


class MusicBrainzModel(BaseModel):
    """Immutable base model using the service's kebab-case keys."""

    model_config = ConfigDict(alias_generator=_to_kebab, populate_by_name=True, extra="ignore", frozen=True)


class ArtistRef(MusicBrainzModel):
    id: str
    name: str | None = None
    sort_name: str | None = None
    disambiguation: str | None = None


class ArtistCredit(MusicBrainzModel):
    artist: ArtistRef
    name: str | None = None
    joinphrase: str | None = None


class MediaTrack(MusicBrainzModel):
    id: str
    number: str | None = None
    title: str | None = None
    length: int | None = None


class Disc(MusicBrainzModel):
    id: str


class Medium(MusicBrainzModel):
    """One medium of a release; ``format`` is e.g. "CD", "Digital Media" or absent."""

    format: str | None = None
    position: int | None = None
    track_count: int | None = None
    discs: list[Disc] = Field(default_factory=list)
    tracks: list[MediaTrack] = Field(default_factory=list)


class ReleaseGroupRef(MusicBrainzModel):
    id: str
    title: str | None = None
    primary_type: str | None = None


class Label(MusicBrainzModel):
    id: str | None = None
    name: str | None = None


class LabelInfo(MusicBrainzModel):
    catalog_number: str | None = None
    label: Label | None = None


class TextRepresentation(MusicBrainzModel):
    language: str | None = None
    script: str | None = None


class ReleaseSummary(MusicBrainzModel):
    """A release candidate: the shape shared by search hits and releases embedded in recordings."""

    id: str
    title: str = ""
    date: str | None = None
    artist_credit: list[ArtistCredit] = Field(default_factory=list)
    release_group: ReleaseGroupRef | None = None
    media: list[Medium] = Field(default_factory=list)

    @property
    def year(self) -> str | None:
        if self.date and len(self.date) >= 4:
            return self.date[:4]
        return None

    @property
    def first_artist_id(self) -> str | None:
        return self.artist_credit[0].artist.id if self.artist_credit else None

    @property
    def formats(self) -> list[str]:
        return [medium.format for medium in self.media if medium.format]


class Release(ReleaseSummary):
    """Full release lookup or search hit."""

    status: str | None = None
    country: str | None = None
    barcode: str | None = None
    packaging: str | None = None
    label_info: list[LabelInfo] = Field(default_factory=list)
    text_representation: TextRepresentation | None = None


class Recording(MusicBrainzModel):
    """A recording; ``length`` is in milliseconds."""

    id: str
    title: str = ""
    length: int | None = None
    artist_credit: list[ArtistCredit] = Field(default_factory=list)
    releases: list[ReleaseSummary] = Field(default_factory=list)

    @property
    def first_artist_id(self) -> str | None:
        return self.artist_credit[0].artist.id if self.artist_credit else None


class SearchKind(StrEnum):
    RECORDING = "recording"
    RELEASE = "release"


class RecordingSearchResult(MusicBrainzModel):
    kind: Literal[SearchKind.RECORDING] = SearchKind.RECORDING
    count: int | None = None
    offset: int | None = None
    recordings: list[Recording] = Field(default_factory=list)

    @property
    def items(self) -> list[Recording]:
        return self.recordings


class ReleaseSearchResult(MusicBrainzModel):
    kind: Literal[SearchKind.RELEASE] = SearchKind.RELEASE
    count: int | None = None
    offset: int | None = None
    releases: list[Release] = Field(default_factory=list)

    @property
    def items(self) -> list[Release]:
        return self.releases


SearchResult = RecordingSearchResult | ReleaseSearchResult

ModelT = TypeVar("ModelT", bound=MusicBrainzModel)

_SEARCH_SCHEMAS: dict[SearchKind, type[RecordingSearchResult] | type[ReleaseSearchResult]] = {
    SearchKind.RECORDING: RecordingSearchResult,
    SearchKind.RELEASE: ReleaseSearchResult,
}


def parse_search_response(
    kind: SearchKind,
    payload: dict[str, Any],
    schema_version: int = MUSICBRAINZ_SCHEMA_VERSION,
) -> SearchResult:
    """Decode a search payload into the schema for ``kind``.

    Args:
        kind: Which entity was searched
        payload: Decoded JSON object
        schema_version: Web service version the payload came from

    Raises:
        ResponseDecodeError: On an unsupported version or a payload that does not fit the schema

    """
    if schema_version != MUSICBRAINZ_SCHEMA_VERSION:
        msg = f"unsupported MusicBrainz schema version: {schema_version}"
        raise ResponseDecodeError(msg)
    schema = _SEARCH_SCHEMAS[kind]
    try:
        return schema.model_validate({**payload, "kind": kind})
    except ValidationError as e:
        msg = f"invalid MusicBrainz {kind} search response: {e.error_count()} validation error(s)"
        raise ResponseDecodeError(msg) from e


def parse_entity(schema: type[ModelT], payload: dict[str, Any]) -> ModelT:
    """Decode a single lookup payload (release or recording)."""
    try:
        return schema.model_validate(payload)
    except ValidationError as e:
        msg = f"invalid MusicBrainz {schema.__name__.lower()} response: {e.error_count()} validation error(s)"
        raise ResponseDecodeError(msg) from e
