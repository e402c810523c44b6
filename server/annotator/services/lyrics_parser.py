"""Timed-line parsing for LRC and KRC lyrics.

Produces the canonical ``TimedLine`` sequence every annotation is indexed
against. Output keeps input order: sortedness is the catalog's contract.
"""

import base64
import binascii
import bisect
import json
import logging
import re
from dataclasses import dataclass

from annotator.models.lyrics import LyricsDocument, TimedLine, WordTiming
from annotator.services.chinese_script import to_simplified, to_traditional

logger = logging.getLogger(__name__)

# LRC carries hundredths; KRC carries milliseconds
WORD_TIMING_MATCH_TOLERANCE_MS = 10

# Shorter artist names are too likely to collide with real lyric lines
MIN_ARTIST_LENGTH = 3

# Credit and production lines the catalog mixes into lyrics
SKIP_PREFIXES: tuple[str, ...] = (
    "作词", "作曲", "编曲", "制作", "发行", "出品", "监制", "策划", "统筹",
    "录音", "混音", "母带", "和声", "合声", "合声编写", "版权", "吉他", "贝斯", "鼓", "键盘",
    "企划", "词：", "詞：", "词曲：", "詞曲：", "曲", "男：", "女：", "合：", "OP", "SP", "TME享有",
    "Produced", "Composed", "Arranged", "Mixed", "Lyrics", "Keyboard",
    "Guitar", "Bass", "Drum", "Vocal", "Original Publisher", "Sub-publisher",
    "Electric Piano", "Synth by", "Recorded by", "Mixed by", "Mastered by",
    "Produced by", "Composed by", "Digital Editing by", "Mix Assisted by",
    "Mix by", "Mix Engineer", "Background vocals", "Background vocals by",
    "Chorus by", "Percussion by", "String by", "Harp by", "Piano by",
    "Piano Arranged by", "Written by", "Additional Production by",
    "Synthesizer", "Programming", "Background Vocals", "Recording Engineer",
    "Digital Editing",
)

_LRC_LINE_RE = re.compile(r"^\[(\d{1,2}):(\d{1,2})\.(\d{2,3})\](.+)$")
_KRC_LINE_RE = re.compile(r"^\[(\d+),(\d+)\](.*)$")
_KRC_WORD_RE = re.compile(r"<(\d+),(\d+),\d+>((?:[^<]|<(?!\d))*)")
_KRC_WORD_TAG_RE = re.compile(r"<\d+,\d+,\d+>")
_KRC_LANGUAGE_RE = re.compile(r"^\[language:([^\]]+)\]", re.MULTILINE)

# KRC language block types
_KRC_LANGUAGE_TRANSLATION = 1

_TRADITIONAL_CHINESE_CODES = frozenset({
    "zh-tw", "zh-hant", "chinese traditional", "traditional chinese", "繁體中文",
})


def should_skip_line(text: str, title: str | None = None, artist: str | None = None) -> bool:
    """True for credit lines, parenthesised asides, title/artist banners and bare artist names."""
    trimmed = text.strip()

    if trimmed.startswith(SKIP_PREFIXES):
        return True

    if (trimmed.startswith("(") and trimmed.endswith(")")) or (
        trimmed.startswith("（") and trimmed.endswith("）")
    ):
        return True

    if title and artist:
        banners = [f"{title} - {artist}", f"{artist} - {title}"]
        banners += [to_simplified(b) for b in banners]
        if any(trimmed.startswith(banner) for banner in banners):
            return True

    if artist and len(artist) >= MIN_ARTIST_LENGTH:
        if trimmed in (artist, to_simplified(artist)):
            return True

    return False


def ms_to_lrc_time(ms: int) -> str:
    """Format milliseconds as an LRC ``[mm:ss.xx]`` tag."""
    if ms < 0:
        ms = 0
    total_seconds, remainder = divmod(ms, 1000)
    minutes, seconds = divmod(total_seconds, 60)
    return f"[{minutes:02d}:{seconds:02d}.{remainder // 10:02d}]"


def parse_lrc(lrc: str, title: str | None = None, artist: str | None = None) -> list[TimedLine]:
    lines: list[TimedLine] = []
    for raw_line in lrc.splitlines():
        match = _LRC_LINE_RE.match(raw_line.strip())
        if not match:
            continue

        minutes, seconds, fraction, content = match.groups()
        fraction_ms = int(fraction) * 10 if len(fraction) == 2 else int(fraction)
        start_ms = int(minutes) * 60_000 + int(seconds) * 1000 + fraction_ms

        text = content.strip()
        if text and not should_skip_line(text, title, artist):
            lines.append(TimedLine(start_time_ms=start_ms, text=text))
    return lines


@dataclass(frozen=True)
class _RawKrcLine:
    raw_index: int
    start_time_ms: int
    text: str
    word_timings: tuple[WordTiming, ...]
    skip: bool


def _scan_krc(krc: str, title: str | None, artist: str | None) -> list[_RawKrcLine]:
    """Every KRC line header in order, including ones the filter rejects.

    The raw index is what KRC's embedded language block is aligned to.
    """
    raw_lines: list[_RawKrcLine] = []
    normalized = krc.replace("\r\n", "\n").replace("\r", "\n")

    for line in normalized.split("\n"):
        line_match = _KRC_LINE_RE.match(line)
        if not line_match:
            continue

        start_ms, _, content = line_match.groups()
        words = tuple(
            WordTiming(text=word, start_time_ms=int(offset), duration_ms=int(duration))
            for offset, duration, word in _KRC_WORD_RE.findall(content)
            if word
        )
        if words:
            full_text = "".join(w.text for w in words).strip()
        else:
            full_text = _KRC_WORD_TAG_RE.sub("", content).strip()

        raw_lines.append(_RawKrcLine(
            raw_index=len(raw_lines),
            start_time_ms=int(start_ms),
            text=full_text,
            word_timings=words,
            skip=not full_text or should_skip_line(full_text, title, artist),
        ))

    return raw_lines


def parse_krc(krc: str, title: str | None = None, artist: str | None = None) -> list[TimedLine]:
    return [
        TimedLine(
            start_time_ms=raw.start_time_ms,
            text=raw.text,
            word_timings=raw.word_timings or None,
        )
        for raw in _scan_krc(krc, title, artist)
        if not raw.skip
    ]


def is_krc_format(text: str | None) -> bool:
    if not text:
        return False
    return bool(_KRC_WORD_TAG_RE.search(text) or re.search(r"^\[\d+,\d+\]", text, re.MULTILINE))


def _nearest_index(starts: list[int], target_ms: int) -> int | None:
    """Index into sorted ``starts`` of the value closest to ``target_ms`` within tolerance."""
    pos = bisect.bisect_left(starts, target_ms)
    best: int | None = None
    for candidate in (pos - 1, pos):
        if 0 <= candidate < len(starts):
            distance = abs(starts[candidate] - target_ms)
            if distance <= WORD_TIMING_MATCH_TOLERANCE_MS and (
                best is None or distance < abs(starts[best] - target_ms)
            ):
                best = candidate
    return best


def attach_word_timings(lines: list[TimedLine], word_timed: list[TimedLine]) -> list[TimedLine]:
    """Copy per-word timings onto the lines whose start times match."""
    timed = sorted((line for line in word_timed if line.word_timings), key=lambda l: l.start_time_ms)
    if not timed:
        return lines

    starts = [line.start_time_ms for line in timed]
    result: list[TimedLine] = []
    for line in lines:
        idx = _nearest_index(starts, line.start_time_ms)
        if idx is None:
            result.append(line)
        else:
            result.append(line.model_copy(update={"word_timings": timed[idx].word_timings}))
    return result


def parse_lyrics(
    document: LyricsDocument,
    title: str | None = None,
    artist: str | None = None,
) -> list[TimedLine]:
    """Parse a stored lyrics document into the canonical line sequence.

    LRC is the primary format. When only KRC was available the catalog
    stores it in the LRC slot, so that case is detected and parsed as KRC.
    """
    if is_krc_format(document.lrc):
        return parse_krc(document.lrc, title, artist)

    lines = parse_lrc(document.lrc, title, artist)

    if document.krc and is_krc_format(document.krc):
        krc_lines = parse_krc(document.krc, title, artist)
        if not lines:
            return krc_lines
        lines = attach_word_timings(lines, krc_lines)

    return lines


# ── Embedded Chinese translation ─────────────────────────────


def is_chinese_traditional(language: str) -> bool:
    return language.strip().lower() in _TRADITIONAL_CHINESE_CODES


def extract_embedded_translation(krc: str) -> list[str] | None:
    """Read the Chinese translation block carried in a KRC ``[language:]`` tag."""
    match = _KRC_LANGUAGE_RE.search(krc)
    if not match:
        return None

    try:
        payload = json.loads(base64.b64decode(match.group(1).strip()))
    except (binascii.Error, ValueError) as exc:
        logger.info("Ignoring unreadable KRC language block: %s", exc)
        return None

    return _translation_rows(payload)


def _translation_rows(payload: object) -> list[str] | None:
    blocks = payload.get("content") if isinstance(payload, dict) else None
    if not isinstance(blocks, list):
        return None

    for block in blocks:
        if not isinstance(block, dict) or block.get("type") != _KRC_LANGUAGE_TRANSLATION:
            continue
        rows = block.get("lyricContent")
        if not rows or not isinstance(rows, list):
            return None
        if not all(isinstance(row, list) and all(isinstance(part, str) for part in row) for row in rows):
            logger.info("Ignoring KRC translation block with non-text rows")
            return None
        return ["".join(row).strip() for row in rows]
    return None


def build_translation_from_krc(
    document: LyricsDocument,
    lines: list[TimedLine],
    title: str | None = None,
    artist: str | None = None,
) -> str | None:
    """Derive a Traditional Chinese LRC translation from KRC's embedded block.

    Produces exactly one output line per entry in ``lines``; lines with no
    usable embedded translation fall back to their source text. Returns
    None when the KRC carries no translation at all.
    """
    krc = document.krc or (document.lrc if is_krc_format(document.lrc) else None)
    if not krc:
        return None

    embedded = extract_embedded_translation(krc)
    if not embedded:
        return None

    by_start: dict[int, str] = {}
    for raw in _scan_krc(krc, title, artist):
        if raw.skip or raw.raw_index >= len(embedded):
            continue
        translated = embedded[raw.raw_index]
        if translated and not should_skip_line(translated, title, artist):
            by_start.setdefault(raw.start_time_ms, to_traditional(translated))

    if not by_start:
        return None

    starts = sorted(by_start)
    output: list[str] = []
    for line in lines:
        idx = _nearest_index(starts, line.start_time_ms)
        text = by_start[starts[idx]] if idx is not None else line.text
        output.append(f"{ms_to_lrc_time(line.start_time_ms)}{text}")
    return "\n".join(output)
