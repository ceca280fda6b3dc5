"""Release disambiguation for fuzzy MusicBrainz matches.

A search for one album or one ISRC usually returns several releases: the
original album, singles, regional pressings, compilations. The scorer
rewards titles that look like the expected kind of release, digital
editions and early pressings, and penalizes compilations and physical media.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Final, Generic, TypeVar

from core.exceptions import NoCandidatesError
from core.models.musicbrainz_models import ReleaseSummary

__all__ = [
    "COMPILATION_KEYWORDS",
    "PHYSICAL_FORMATS",
    "ReleaseDisambiguator",
    "ScoredCandidate",
    "is_compilation_title",
    "looks_like_album",
    "looks_like_single",
]

COMPILATION_KEYWORDS: Final[tuple[str, ...]] = (
    "various",
    "compilation",
    "hits",
    "best of",
    "collection",
    "playlist",
    "dmc",
    "brit awards",
    "cool grooves",
)

DIGITAL_FORMAT: Final = "digital media"
PHYSICAL_FORMATS: Final[frozenset[str]] = frozenset({"cd", "vinyl", "cassette", "dvd", "blu-ray"})

# Years counted as an original pressing; the inclusive lower half of 2010..2020
PRESSING_WINDOW: Final[tuple[str, str]] = ("2010", "2015")

ALBUM_TITLE_MAX_LENGTH: Final = 30
SINGLE_TITLE_MAX_LENGTH: Final = 20
MULTI_TRACK_THRESHOLD: Final = 5
LARGE_ALBUM_THRESHOLD: Final = 10
SINGLE_TRACK_THRESHOLD: Final = 3

ALBUM_TITLE_BONUS: Final = 100
NO_DEMO_BONUS: Final = 30
SINGLE_ON_LARGE_ALBUM_PENALTY: Final = -50
SINGLE_TITLE_BONUS: Final = 50
PRESSING_WINDOW_BONUS: Final = 10
NON_COMPILATION_BONUS: Final = 15
DIGITAL_MEDIA_BONUS: Final = 40
PHYSICAL_MEDIA_PENALTY: Final = -20

CandidateT = TypeVar("CandidateT", bound=ReleaseSummary)


def is_compilation_title(title: str) -> bool:
    """Check a lower-cased title against the compilation keywords."""
    return any(keyword in title for keyword in COMPILATION_KEYWORDS)


def looks_like_album(title: str) -> bool:
    """Short, no " - " separator and not a compilation."""
    return len(title) < ALBUM_TITLE_MAX_LENGTH and " - " not in title and not is_compilation_title(title)


def looks_like_single(title: str) -> bool:
    return "single" in title or len(title) < SINGLE_TITLE_MAX_LENGTH


@dataclass(frozen=True, slots=True)
class ScoredCandidate(Generic[CandidateT]):
    candidate: CandidateT
    score: int


class ReleaseDisambiguator:
    """Scores release candidates and selects the most plausible one."""

    def __init__(self, console_logger: logging.Logger | None = None) -> None:
        self.console_logger = console_logger or logging.getLogger(__name__)

    @staticmethod
    def score(candidate: ReleaseSummary, expected_track_count: int) -> int:
        """Integer plausibility score of one candidate.

        Args:
            candidate: Release to score
            expected_track_count: Number of tracks of the release being matched

        Returns:
            Higher is better; the scale is only meaningful relative to other candidates

        """
        title = candidate.title.lower()
        score = 0

        if expected_track_count > MULTI_TRACK_THRESHOLD:
            if looks_like_album(title):
                score += ALBUM_TITLE_BONUS
            if "demo" not in title:
                score += NO_DEMO_BONUS
            if expected_track_count > LARGE_ALBUM_THRESHOLD and looks_like_single(title):
                score += SINGLE_ON_LARGE_ALBUM_PENALTY
        elif expected_track_count <= SINGLE_TRACK_THRESHOLD and looks_like_single(title):
            score += SINGLE_TITLE_BONUS

        year = candidate.year
        if year is not None and PRESSING_WINDOW[0] <= year <= PRESSING_WINDOW[1]:
            score += PRESSING_WINDOW_BONUS

        if not is_compilation_title(title):
            score += NON_COMPILATION_BONUS

        formats = [fmt.lower() for fmt in candidate.formats]
        if DIGITAL_FORMAT in formats:
            score += DIGITAL_MEDIA_BONUS
        if any(fmt in PHYSICAL_FORMATS for fmt in formats):
            score += PHYSICAL_MEDIA_PENALTY

        return score

    def rank(self, candidates: Sequence[CandidateT], expected_track_count: int) -> list[ScoredCandidate[CandidateT]]:
        """Score every candidate, preserving input order."""
        return [ScoredCandidate(candidate, self.score(candidate, expected_track_count)) for candidate in candidates]

    def select(self, candidates: Sequence[CandidateT], expected_track_count: int) -> CandidateT:
        """Pick the best candidate.

        A single candidate is returned without scoring. Among several, the
        strictly highest score wins and ties keep the earliest candidate.

        Raises:
            NoCandidatesError: If ``candidates`` is empty

        """
        if not candidates:
            msg = "no release candidates to select from"
            raise NoCandidatesError(msg)
        if len(candidates) == 1:
            return candidates[0]

        best: ScoredCandidate[CandidateT] | None = None
        for scored in self.rank(candidates, expected_track_count):
            if best is None or scored.score > best.score:
                best = scored

        assert best is not None
        self.console_logger.debug(
            "Selected release '%s' (%s) with score %d out of %d candidates",
            best.candidate.title,
            best.candidate.id,
            best.score,
            len(candidates),
        )
        return best.candidate
