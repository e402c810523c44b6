"""Catalog candidate search and title/artist match scoring."""

import logging
import re
import unicodedata
from typing import NamedTuple

from rapidfuzz import fuzz

from annotator.models.lyrics import CatalogCandidate
from annotator.services.catalog import KugouCatalog
from annotator.services.chinese_script import to_simplified, to_traditional

logger = logging.getLogger(__name__)

TITLE_WEIGHT = 0.55
ARTIST_WEIGHT = 0.45
STRONG_MATCH_THRESHOLD = 0.7
STRONG_MATCH_BONUS = 0.1

_PARENTHETICAL_RE = re.compile(r"\s*\([^)]*\)\s*")
_COMBINING_MARKS_RE = re.compile(r"[\u0300-\u036f]")
_NON_WORD_RE = re.compile(r"[^\w\s]")
_WHITESPACE_RE = re.compile(r"\s+")

# YouTube title noise such as "(Official Music Video)" or 【MV】
_VIDEO_MARKER_RE = re.compile(
    r"\s*[\[(【「『]?\s*(official\s*)?(music\s*)?(video|mv|m/v|audio|lyric|lyrics|visualizer|live)\s*[\])】」』]?\s*",
    re.IGNORECASE,
)
_LENTICULAR_RE = re.compile(r"\s*【[^】]*】\s*")
_SQUARE_RE = re.compile(r"\s*\[[^\]]*\]\s*")
_DELIMITED_RE = re.compile(r"^(.+?)\s*[-–—|]\s*(.+)$")
_QUOTED_RE = re.compile(r"^(.+?)\s*[「'\"]([^」'\"]+)[」'\"]")
_GENERIC_CHANNEL_RE = re.compile(r"vevo|topic|official|music|records|entertainment|labels", re.IGNORECASE)


class ParsedTitle(NamedTuple):
    title: str
    artist: str


def strip_parentheses(text: str) -> str:
    if not text:
        return text
    return _PARENTHETICAL_RE.sub(" ", text).strip()


def normalize_for_comparison(text: str) -> str:
    """Lower-case, drop accents and punctuation, collapse whitespace."""
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFD", text.lower())
    stripped = unicodedata.normalize("NFC", _COMBINING_MARKS_RE.sub("", decomposed))
    return _WHITESPACE_RE.sub(" ", _NON_WORD_RE.sub(" ", stripped)).strip()


def calculate_similarity(query: str, target: str) -> float:
    """Similarity in [0, 1]; identical normalised strings score 1.0."""
    norm_query = normalize_for_comparison(query)
    norm_target = normalize_for_comparison(target)
    if not norm_query or not norm_target:
        return 0.0
    if norm_query == norm_target:
        return 1.0

    blended = 0.7 * fuzz.token_set_ratio(norm_query, norm_target) + 0.3 * fuzz.ratio(norm_query, norm_target)
    return min(blended / 100.0, 1.0)


def score_song_match(
    candidate_title: str,
    candidate_artist: str,
    target_title: str,
    target_artist: str,
) -> float:
    title_score = calculate_similarity(strip_parentheses(target_title), strip_parentheses(candidate_title))
    artist_score = calculate_similarity(strip_parentheses(target_artist), strip_parentheses(candidate_artist))

    score = TITLE_WEIGHT * title_score + ARTIST_WEIGHT * artist_score
    if title_score >= STRONG_MATCH_THRESHOLD and artist_score >= STRONG_MATCH_THRESHOLD:
        score += STRONG_MATCH_BONUS
    return round(score, 3)


def normalize_artist_separator(artist: str) -> str:
    """KuGou joins multiple artists with an ideographic comma."""
    return artist.replace("、", " & ")


def parse_title_simple(raw_title: str, channel_name: str | None = None) -> ParsedTitle:
    """Best-effort split of a video title into song title and artist."""
    if not raw_title:
        return ParsedTitle("", "")

    cleaned = _VIDEO_MARKER_RE.sub(" ", raw_title)
    cleaned = _LENTICULAR_RE.sub(" ", cleaned)
    cleaned = _SQUARE_RE.sub(" ", cleaned).strip()
    cleaned = strip_parentheses(cleaned)

    delimited = _DELIMITED_RE.match(cleaned)
    if delimited:
        return ParsedTitle(title=delimited.group(2).strip(), artist=delimited.group(1).strip())

    quoted = _QUOTED_RE.match(cleaned)
    if quoted:
        return ParsedTitle(title=quoted.group(2).strip(), artist=quoted.group(1).strip())

    artist = ""
    if channel_name and not _GENERIC_CHANNEL_RE.search(channel_name):
        artist = re.sub(r"\s*-\s*Topic$", "", channel_name, flags=re.IGNORECASE)
        artist = re.sub(r"VEVO$", "", artist, flags=re.IGNORECASE).strip()
    return ParsedTitle(title=cleaned, artist=artist)


class SourceMatcher:
    """Searches the catalog and ranks candidates against a target song."""

    def __init__(self, catalog: KugouCatalog) -> None:
        self.catalog = catalog

    async def search(self, query: str, target_title: str, target_artist: str) -> list[CatalogCandidate]:
        """Candidates best-first. Raises UpstreamError when the catalog fails."""
        songs = await self.catalog.search(to_simplified(query))

        candidates: list[CatalogCandidate] = []
        for song in songs:
            title = to_traditional(song.songname)
            artist = normalize_artist_separator(to_traditional(song.singername))
            candidates.append(
                CatalogCandidate(
                    title=title,
                    artist=artist,
                    album=to_traditional(song.album_name) if song.album_name else None,
                    hash=song.hash,
                    album_id=song.album_id,
                    score=score_song_match(title, artist, target_title, target_artist),
                )
            )

        # Stable: equal scores keep catalog order
        candidates.sort(key=lambda c: c.score, reverse=True)
        return candidates
