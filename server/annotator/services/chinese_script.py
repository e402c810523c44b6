"""Simplified/Traditional Chinese conversion for catalog queries and results.

The catalog indexes Simplified Chinese; results are shown in Taiwan
Traditional. Characters outside the conversion tables (ASCII, kana, Hangul)
pass through unchanged.
"""

from functools import lru_cache

from opencc import OpenCC


@lru_cache(maxsize=None)
def _converter(config: str) -> OpenCC:
    return OpenCC(config)


def to_simplified(text: str) -> str:
    if not text:
        return text
    return _converter("tw2s").convert(text)


def to_traditional(text: str) -> str:
    if not text:
        return text
    return _converter("s2tw").convert(text)
