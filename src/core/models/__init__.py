"""Data models for configuration, catalog payloads and MusicBrainz payloads."""

from core.models.catalog_models import Album, Artist, SearchResults, Track
from core.models.config_models import AppConfig
from core.models.musicbrainz_models import Recording, Release, ReleaseSummary

__all__ = [
    "Album",
    "AppConfig",
    "Artist",
    "Recording",
    "Release",
    "ReleaseSummary",
    "SearchResults",
    "Track",
]
