"""API service modules for the download catalog and MusicBrainz.

This package contains:
- Request executor: rate-limited HTTP with classified retry
- Catalog: album, track, discography, search and stream endpoints
- MusicBrainz: recording and release lookups and searches
- Release scoring: disambiguation of fuzzy release matches
"""

from .album_enricher import AlbumEnricher, EnrichmentReport
from .catalog import CatalogClient
from .musicbrainz import MusicBrainzClient
from .rate_limiter import RateLimiterState, RateLimitProfile, TokenBucketRateLimiter
from .release_scoring import ReleaseDisambiguator
from .request_executor import ApiRequestExecutor, RequestDescriptor

__all__ = [
    "AlbumEnricher",
    "ApiRequestExecutor",
    "CatalogClient",
    "EnrichmentReport",
    "MusicBrainzClient",
    "RateLimitProfile",
    "RateLimiterState",
    "ReleaseDisambiguator",
    "RequestDescriptor",
    "TokenBucketRateLimiter",
]
