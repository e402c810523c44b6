"""Tests for LRC/KRC timed-line parsing and the embedded KRC translation."""

import base64
import json

from annotator.models.lyrics import LyricsDocument, TimedLine
from annotator.services.lyrics_parser import (
    MIN_ARTIST_LENGTH,
    WORD_TIMING_MATCH_TOLERANCE_MS,
    attach_word_timings,
    build_translation_from_krc,
    extract_embedded_translation,
    is_chinese_traditional,
    is_krc_format,
    ms_to_lrc_time,
    parse_krc,
    parse_lrc,
    parse_lyrics,
    should_skip_line,
)


def _language_tag(lyric_content: list[list[str]]) -> str:
    payload = {"content": [{"type": 1, "language": 0, "lyricContent": lyric_content}]}
    encoded = base64.b64encode(json.dumps(payload, ensure_ascii=False).encode("utf-8")).decode()
    return f"[language:{encoded}]"


KRC_WITH_TRANSLATION = "\n".join([
    "[ti:Song]",
    _language_tag([[""], ["我爱你"], ["世界"]]),
    "[0,1000]<0,1000,0>作词：某人",
    "[1000,2000]<0,1000,0>Hello <1000,1000,0>love",
    "[3000,2000]<0,2000,0>World",
])


class TestConstants:
    def test_tolerance(self):
        assert WORD_TIMING_MATCH_TOLERANCE_MS == 10

    def test_min_artist_length(self):
        assert MIN_ARTIST_LENGTH == 3


class TestMsToLrcTime:
    def test_formats(self):
        assert ms_to_lrc_time(62345) == "[01:02.34]"
        assert ms_to_lrc_time(0) == "[00:00.00]"

    def test_negative_clamped(self):
        assert ms_to_lrc_time(-50) == "[00:00.00]"


class TestShouldSkipLine:
    def test_credit_prefix(self):
        assert should_skip_line("作词：某人")
        assert should_skip_line("Produced by Someone")

    def test_parenthesised(self):
        assert should_skip_line("(Instrumental)")
        assert should_skip_line("（間奏）")

    def test_title_banner(self):
        assert should_skip_line("Song - Artist", "Song", "Artist")
        assert should_skip_line("Artist - Song", "Song", "Artist")

    def test_artist_alone(self):
        assert should_skip_line("Artist Name", "Song", "Artist Name")
        assert should_skip_line("  周杰伦 ", None, "周杰倫")

    def test_short_artist_not_matched(self):
        assert not should_skip_line("Oh", "Song", "Oh")

    def test_regular_line_kept(self):
        assert not should_skip_line("Hello world", "Song", "Artist")


class TestParseLrc:
    def test_basic(self):
        lines = parse_lrc("[00:12.34]Hello\n[01:02.345]World")
        assert lines == [
            TimedLine(start_time_ms=12340, text="Hello"),
            TimedLine(start_time_ms=62345, text="World"),
        ]

    def test_malformed_line_dropped(self):
        lines = parse_lrc("not-a-time]garbage\n[not-a-time]garbage\n[00:01.00]ok")
        assert [line.text for line in lines] == ["ok"]

    def test_metadata_and_blank_lines_dropped(self):
        lines = parse_lrc("[ti:Song]\n[00:01.00]   \n\n[00:02.00]kept")
        assert [line.text for line in lines] == ["kept"]

    def test_credits_dropped(self):
        lrc = "[00:00.00]Song - Artist\n[00:00.50]作曲：某人\n[00:01.00]First"
        lines = parse_lrc(lrc, "Song", "Artist")
        assert [line.text for line in lines] == ["First"]

    def test_keeps_input_order(self):
        lines = parse_lrc("[00:05.00]b\n[00:01.00]a")
        assert [line.text for line in lines] == ["b", "a"]


class TestParseKrc:
    def test_word_timings(self):
        lines = parse_krc("[1000,2000]<0,500,0>Hel<500,500,0>lo")
        assert len(lines) == 1
        line = lines[0]
        assert line.start_time_ms == 1000
        assert line.text == "Hello"
        assert [w.text for w in line.word_timings] == ["Hel", "lo"]
        assert line.word_timings[1].start_time_ms == 500
        assert line.word_timings[1].duration_ms == 500

    def test_line_without_word_tags(self):
        lines = parse_krc("[1000,2000]plain text")
        assert lines[0].text == "plain text"
        assert lines[0].word_timings is None

    def test_credit_lines_dropped(self):
        lines = parse_krc(KRC_WITH_TRANSLATION, "Song", "Artist")
        assert [line.text for line in lines] == ["Hello love", "World"]

    def test_crlf(self):
        lines = parse_krc("[0,100]<0,100,0>a\r\n[100,100]<0,100,0>b")
        assert [line.text for line in lines] == ["a", "b"]


class TestIsKrcFormat:
    def test_detects(self):
        assert is_krc_format("[1000,2000]<0,500,0>a")
        assert not is_krc_format("[00:01.00]a")
        assert not is_krc_format(None)
        assert not is_krc_format("")


class TestAttachWordTimings:
    def test_matches_within_tolerance(self):
        lrc_lines = [TimedLine(start_time_ms=1000, text="Hello")]
        krc_lines = parse_krc("[1005,1000]<0,500,0>Hel<500,500,0>lo")
        result = attach_word_timings(lrc_lines, krc_lines)
        assert result[0].word_timings is not None
        assert result[0].text == "Hello"

    def test_outside_tolerance(self):
        lrc_lines = [TimedLine(start_time_ms=1000, text="Hello")]
        krc_lines = parse_krc("[1020,1000]<0,500,0>Hel<500,500,0>lo")
        result = attach_word_timings(lrc_lines, krc_lines)
        assert result[0].word_timings is None


class TestParseLyrics:
    def test_lrc_with_krc_timings(self):
        doc = LyricsDocument(
            lrc="[00:01.00]Hello love\n[00:03.00]World",
            krc=KRC_WITH_TRANSLATION,
        )
        lines = parse_lyrics(doc, "Song", "Artist")
        assert [line.text for line in lines] == ["Hello love", "World"]
        assert lines[0].word_timings is not None

    def test_krc_stored_as_primary(self):
        doc = LyricsDocument(lrc=KRC_WITH_TRANSLATION)
        lines = parse_lyrics(doc, "Song", "Artist")
        assert [line.text for line in lines] == ["Hello love", "World"]

    def test_empty_lrc_falls_back_to_krc(self):
        doc = LyricsDocument(lrc="[ti:nothing]", krc=KRC_WITH_TRANSLATION)
        lines = parse_lyrics(doc, "Song", "Artist")
        assert len(lines) == 2


class TestEmbeddedTranslation:
    def test_is_chinese_traditional(self):
        assert is_chinese_traditional("zh-TW")
        assert is_chinese_traditional("zh-Hant")
        assert not is_chinese_traditional("zh-CN")
        assert not is_chinese_traditional("en")

    def test_extract(self):
        assert extract_embedded_translation(KRC_WITH_TRANSLATION) == ["", "我爱你", "世界"]

    def test_extract_missing(self):
        assert extract_embedded_translation("[0,100]<0,100,0>a") is None

    def test_extract_unreadable(self):
        assert extract_embedded_translation("[language:%%%]") is None

    def test_extract_unexpected_shape(self):
        def tag(payload) -> str:
            return "[language:" + base64.b64encode(json.dumps(payload).encode("utf-8")).decode() + "]"

        assert extract_embedded_translation(tag([1, 2])) is None
        assert extract_embedded_translation(tag({"content": "x"})) is None
        assert extract_embedded_translation(tag({"content": [{"type": 1, "lyricContent": [[1, 2]]}]})) is None
        assert extract_embedded_translation(tag({"content": [{"type": 1, "lyricContent": ["row"]}]})) is None

    def test_build_aligns_to_parsed_lines(self):
        doc = LyricsDocument(lrc="[00:01.00]Hello love\n[00:03.00]World", krc=KRC_WITH_TRANSLATION)
        lines = parse_lyrics(doc, "Song", "Artist")
        lrc = build_translation_from_krc(doc, lines, "Song", "Artist")
        assert lrc == "[00:01.00]我愛你\n[00:03.00]世界"

    def test_build_falls_back_to_source_text(self):
        doc = LyricsDocument(lrc=KRC_WITH_TRANSLATION)
        lines = parse_lyrics(doc, "Song", "Artist") + [TimedLine(start_time_ms=9000, text="Extra")]
        lrc = build_translation_from_krc(doc, lines, "Song", "Artist")
        rows = lrc.split("\n")
        assert len(rows) == len(lines)
        assert rows[-1] == "[00:09.00]Extra"

    def test_build_without_block(self):
        doc = LyricsDocument(lrc="[00:01.00]a", krc="[1000,100]<0,100,0>a")
        assert build_translation_from_krc(doc, parse_lyrics(doc)) is None
