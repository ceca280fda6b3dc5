"""In-process memo of resolved MusicBrainz associations.

Entries are keyed by the exact ``"artist|album"`` string (case-sensitive, no
normalization) and never expire while the process runs. Two maps are kept:
full release records and bare release ids, the latter filled when only the
id is known (for example after an ISRC lookup).

Concurrent misses for the same key are not de-duplicated: both callers may
fetch, and the later ``set`` wins.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from core.models.musicbrainz_models import Release


def cache_key(artist: str, album: str) -> str:
    """Composite key of an artist and album title."""
    return f"{artist}|{album}"


class ReadWriteLock:
    """Many concurrent readers or one writer; writers wait for readers to drain."""

    def __init__(self) -> None:
        self._condition = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._condition:
            while self._writer:
                self._condition.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._condition:
                self._readers -= 1
                if not self._readers:
                    self._condition.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._condition:
            while self._writer or self._readers:
                self._condition.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._condition:
                self._writer = False
                self._condition.notify_all()


class AlbumMetadataCache:
    """Release records and release ids keyed by ``"artist|album"``."""

    def __init__(self) -> None:
        self._releases: dict[str, Release] = {}
        self._release_ids: dict[str, str] = {}
        self._lock = ReadWriteLock()

    def get(self, artist: str, album: str) -> Release | None:
        """Cached release for the pair, or None."""
        with self._lock.read():
            return self._releases.get(cache_key(artist, album))

    def set(self, artist: str, album: str, release: Release) -> None:
        with self._lock.write():
            self._releases[cache_key(artist, album)] = release

    def get_release_id(self, artist: str, album: str) -> str | None:
        with self._lock.read():
            return self._release_ids.get(cache_key(artist, album))

    def set_release_id(self, artist: str, album: str, release_id: str) -> None:
        with self._lock.write():
            self._release_ids[cache_key(artist, album)] = release_id

    def clear(self) -> None:
        """Drop both maps."""
        with self._lock.write():
            self._releases.clear()
            self._release_ids.clear()

    def stats(self) -> tuple[int, list[str]]:
        """Number of cached releases and their keys."""
        with self._lock.read():
            return len(self._releases), list(self._releases)

    def get_stats(self) -> dict[str, Any]:
        with self._lock.read():
            return {"releases": len(self._releases), "release_ids": len(self._release_ids)}
