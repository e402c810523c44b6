"""Character-class detection over Unicode code-point ranges."""

import re
import unicodedata
from collections.abc import Iterable

from annotator.models.lyrics import TimedLine

# Korean songs borrow some Han characters; up to this share of Hangul
# (relative to Han) still counts as Chinese lyrics.
HANGUL_TOLERANCE_RATIO = 0.1

_KANJI_RE = re.compile(r"[\u4E00-\u9FFF]")
_KANA_RE = re.compile(r"[\u3040-\u309F\u30A0-\u30FF]")
_HANGUL_RE = re.compile(r"[\uAC00-\uD7AF\u1100-\u11FF\u3130-\u318F]")
_HAN_EXTENDED_RE = re.compile(r"[\u4E00-\u9FFF\u3400-\u4DBF]")
_LATIN_LINE_RE = re.compile(r"^[a-zA-Z0-9\s.,!?'\"()\-:;]+$")


def has_kanji(text: str) -> bool:
    return bool(_KANJI_RE.search(text))


def has_kana(text: str) -> bool:
    return bool(_KANA_RE.search(text))


def has_hangul(text: str) -> bool:
    return bool(_HANGUL_RE.search(text))


def is_kana_char(char: str) -> bool:
    return bool(_KANA_RE.fullmatch(char))


def is_ascii_only(text: str) -> bool:
    return text.isascii()


def is_latin_line(text: str) -> bool:
    """True for lines made only of basic Latin letters, digits and punctuation."""
    return bool(_LATIN_LINE_RE.match(text.strip()))


def _is_skippable(char: str) -> bool:
    return char.isspace() or unicodedata.category(char).startswith("P")


def lyrics_are_mostly_chinese(lines: Iterable[TimedLine]) -> bool:
    """Decide whether the lyrics are Chinese (Han without kana, little Hangul)."""
    han = kana = hangul = 0
    for line in lines:
        for char in line.text:
            if _is_skippable(char):
                continue
            if _HANGUL_RE.match(char):
                hangul += 1
            elif _KANA_RE.match(char):
                kana += 1
            elif _HAN_EXTENDED_RE.match(char):
                han += 1

    if han == 0 or kana > 0:
        return False
    if hangul > han:
        return False
    if hangul > 0 and hangul > han * HANGUL_TOLERANCE_RATIO:
        return False
    return True
