"""Collects non-fatal lookup problems for an end-of-run summary.

Batch operations never fail because a single item could not be resolved;
instead they record a warning here, and a later success for the same
(kind, context) pair may clear it again.
"""

from __future__ import annotations

import threading
from collections import Counter
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from core.logger import get_shared_console

if TYPE_CHECKING:
    from rich.console import Console


class WarningKind(StrEnum):
    """Kinds of warnings, in summary order."""

    TRACK_LOOKUP_FAILED = "track_lookup_failed"
    RELEASE_LOOKUP_FAILED = "release_lookup_failed"
    COVER_ART_DOWNLOAD_FAILED = "cover_art_download_failed"
    ALBUM_FETCH_FAILED = "album_fetch_failed"

    @property
    def heading(self) -> str:
        return _KIND_TITLES[self]


_KIND_TITLES: dict[WarningKind, str] = {
    WarningKind.TRACK_LOOKUP_FAILED: "MusicBrainz Track Lookup Failures",
    WarningKind.RELEASE_LOOKUP_FAILED: "MusicBrainz Release Lookup Failures",
    WarningKind.COVER_ART_DOWNLOAD_FAILED: "Cover Art Download Failures",
    WarningKind.ALBUM_FETCH_FAILED: "Album Information Fetch Failures",
}


@dataclass(frozen=True, slots=True)
class CollectedWarning:
    kind: WarningKind
    context: str
    message: str
    details: str = ""


def lookup_context(artist: str, title: str) -> str:
    """Context string identifying a track or release: ``"artist - title"``."""
    return f"{artist} - {title}"


class WarningCollector:
    """Thread-safe, ordered store of collected warnings.

    When disabled, every mutation is a no-op.
    """

    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled
        self._warnings: list[CollectedWarning] = []
        self._lock = threading.Lock()

    def add(self, kind: WarningKind, context: str, message: str, details: str = "") -> None:
        if not self.enabled:
            return
        with self._lock:
            self._warnings.append(CollectedWarning(kind, context, message, details))

    def add_track_lookup_failure(self, artist: str, title: str, details: str) -> None:
        self.add(WarningKind.TRACK_LOOKUP_FAILED, lookup_context(artist, title), "Failed to find MusicBrainz track", details)

    def add_release_lookup_failure(self, artist: str, album: str, details: str) -> None:
        self.add(
            WarningKind.RELEASE_LOOKUP_FAILED, lookup_context(artist, album), "Failed to find MusicBrainz release", details
        )

    def add_cover_art_failure(self, album: str, details: str) -> None:
        self.add(WarningKind.COVER_ART_DOWNLOAD_FAILED, album, "Could not download cover art", details)

    def add_album_fetch_failure(self, album_title: str, album_id: str, details: str) -> None:
        self.add(WarningKind.ALBUM_FETCH_FAILED, f"{album_title} (ID: {album_id})", "Could not fetch album info", details)

    def remove(self, kind: WarningKind, context: str) -> int:
        """Drop every warning matching kind and context.

        Returns:
            Number of removed warnings

        """
        if not self.enabled:
            return 0
        with self._lock:
            kept = [w for w in self._warnings if w.kind is not kind or w.context != context]
            removed = len(self._warnings) - len(kept)
            self._warnings = kept
        return removed

    def remove_release_lookup_failure(self, artist: str, album: str) -> int:
        return self.remove(WarningKind.RELEASE_LOOKUP_FAILED, lookup_context(artist, album))

    def has_warnings(self) -> bool:
        with self._lock:
            return bool(self._warnings)

    def count(self) -> int:
        with self._lock:
            return len(self._warnings)

    def warnings(self) -> list[CollectedWarning]:
        with self._lock:
            return list(self._warnings)

    def by_kind(self) -> dict[WarningKind, list[CollectedWarning]]:
        """Group warnings by kind, in ``WarningKind`` declaration order."""
        grouped: dict[WarningKind, list[CollectedWarning]] = {}
        snapshot = self.warnings()
        for kind in WarningKind:
            if matching := [w for w in snapshot if w.kind is kind]:
                grouped[kind] = matching
        return grouped

    def summary_lines(self) -> list[str]:
        """Plain-text summary: one section per kind, contexts sorted, repeats shown as ``(xN)``."""
        total = self.count()
        if not total:
            return []
        lines = [f"Warning Summary ({total} warnings):", "-" * 50]
        for kind, warnings in self.by_kind().items():
            lines.append(f"{kind.heading} ({len(warnings)}):")
            counts = Counter(w.context for w in warnings)
            for context in sorted(counts):
                suffix = f" (x{counts[context]})" if counts[context] > 1 else ""
                lines.append(f"  - {context}{suffix}")
        return lines

    def print_summary(self, console: Console | None = None) -> None:
        """Render the summary through Rich."""
        lines = self.summary_lines()
        if not lines:
            return
        output = console or get_shared_console()
        for line in lines:
            output.print(line, style="yellow", markup=False, highlight=False)
