"""Inline ruby markup decoders for generated furigana and soramimi lines.

Both kinds use ``<base:reading>`` spans with plain runs in between. The
decoders never raise: anything that is not a well-formed span is kept as
plain text.
"""

import re

from annotator.models.lyrics import AnnotationSegment, LineSegments, TimedLine
from annotator.services.script_classifier import is_kana_char

_RUBY_RE = re.compile(r"<([^:<>]+):([^<>]+)>")
# Soramimi also allows base-only spans such as <사랑>
_SORAMIMI_SPAN_RE = re.compile(r"<([^:<>]+)(?::([^<>]+))?>")
_HAN_ONLY_RE = re.compile(r"^[\u4E00-\u9FFF\u3400-\u4DBF\s]+$")
_FURIGANA_HINT_RE = re.compile(r"\([\u3040-\u309F\u30A0-\u30FF]+\)")
_FOREIGN_SCRIPT_RE = re.compile(
    r"[\uAC00-\uD7AF\u1100-\u11FF\u3130-\u318F\u3040-\u309F\u30A0-\u30FF]"
)

# Last-resort Chinese sound-alikes for kana the generator left unannotated
KANA_TO_CHINESE: dict[str, str] = {
    "あ": "阿", "い": "衣", "う": "屋", "え": "欸", "お": "喔",
    "か": "咖", "き": "奇", "く": "酷", "け": "給", "こ": "可",
    "さ": "撒", "し": "詩", "す": "蘇", "せ": "些", "そ": "搜",
    "た": "她", "ち": "吃", "つ": "此", "て": "貼", "と": "頭",
    "な": "娜", "に": "妮", "ぬ": "奴", "ね": "內", "の": "諾",
    "は": "哈", "ひ": "嘻", "ふ": "夫", "へ": "嘿", "ほ": "火",
    "ま": "媽", "み": "咪", "む": "木", "め": "沒", "も": "摸",
    "や": "壓", "ゆ": "玉", "よ": "喲",
    "ら": "啦", "り": "里", "る": "嚕", "れ": "咧", "ろ": "囉",
    "わ": "哇", "を": "喔", "ん": "嗯",
    "が": "嘎", "ぎ": "奇", "ぐ": "姑", "げ": "給", "ご": "哥",
    "ざ": "砸", "じ": "吉", "ず": "祖", "ぜ": "賊", "ぞ": "作",
    "だ": "打", "ぢ": "吉", "づ": "祖", "で": "得", "ど": "多",
    "ば": "爸", "び": "比", "ぶ": "布", "べ": "貝", "ぼ": "寶",
    "ぱ": "啪", "ぴ": "批", "ぷ": "噗", "ぺ": "配", "ぽ": "坡",
    "ゃ": "壓", "ゅ": "玉", "ょ": "喲",
    "っ": "～", "—": "～",
    "ア": "阿", "イ": "衣", "ウ": "屋", "エ": "欸", "オ": "喔",
    "カ": "咖", "キ": "奇", "ク": "酷", "ケ": "給", "コ": "可",
    "サ": "撒", "シ": "詩", "ス": "蘇", "セ": "些", "ソ": "搜",
    "タ": "她", "チ": "吃", "ツ": "此", "テ": "貼", "ト": "頭",
    "ナ": "娜", "ニ": "妮", "ヌ": "奴", "ネ": "內", "ノ": "諾",
    "ハ": "哈", "ヒ": "嘻", "フ": "夫", "ヘ": "嘿", "ホ": "火",
    "マ": "媽", "ミ": "咪", "ム": "木", "メ": "沒", "モ": "摸",
    "ヤ": "壓", "ユ": "玉", "ヨ": "喲",
    "ラ": "啦", "リ": "里", "ル": "嚕", "レ": "咧", "ロ": "囉",
    "ワ": "哇", "ヲ": "喔", "ン": "嗯",
    "ガ": "嘎", "ギ": "奇", "グ": "姑", "ゲ": "給", "ゴ": "哥",
    "ザ": "砸", "ジ": "吉", "ズ": "祖", "ゼ": "賊", "ゾ": "作",
    "ダ": "打", "ヂ": "吉", "ヅ": "祖", "デ": "得", "ド": "多",
    "バ": "爸", "ビ": "比", "ブ": "布", "ベ": "貝", "ボ": "寶",
    "パ": "啪", "ピ": "批", "プ": "噗", "ペ": "配", "ポ": "坡",
    "ャ": "壓", "ュ": "玉", "ョ": "喲",
    "ッ": "～", "ー": "～",
}


def parse_ruby_markup(content: str) -> LineSegments:
    """Decode ``<base:reading>`` furigana markup into segments."""
    segments: LineSegments = []
    last = 0
    for match in _RUBY_RE.finditer(content):
        if match.start() > last:
            segments.append(AnnotationSegment(text=content[last:match.start()]))
        segments.append(AnnotationSegment(text=match.group(1), reading=match.group(2)))
        last = match.end()

    if last < len(content):
        segments.append(AnnotationSegment(text=content[last:]))

    return segments or [AnnotationSegment(text=content)]


def strip_furigana_annotation(text: str) -> str:
    """Remove echoed kana hints: ``耳(みみ)`` becomes ``耳``."""
    return _FURIGANA_HINT_RE.sub("", text)


def clean_soramimi_reading(reading: str) -> str:
    """Drop Hangul and kana the generator leaked into a reading."""
    return _FOREIGN_SCRIPT_RE.sub("", reading)


def _clean_plain_run(text: str) -> str:
    return strip_furigana_annotation(text.replace("|", ""))


def parse_soramimi_markup(content: str) -> LineSegments:
    """Decode soramimi markup into segments.

    Handles ``<base:reading>`` and base-only ``<base>`` spans. Pipe word
    delimiters and kana hints are removed from base text, readings are
    cleaned of foreign script, and a colon-less span holding only Han
    characters is treated as a leaked reading and dropped.
    """
    segments: LineSegments = []
    last = 0
    for match in _SORAMIMI_SPAN_RE.finditer(content):
        before = _clean_plain_run(content[last:match.start()])
        if before:
            segments.append(AnnotationSegment(text=before))
        last = match.end()

        base, reading = match.group(1), match.group(2)
        if reading is None and _HAN_ONLY_RE.match(base):
            continue

        text = strip_furigana_annotation(base)
        if not text:
            continue
        cleaned = clean_soramimi_reading(reading) if reading else ""
        segments.append(AnnotationSegment(text=text, reading=cleaned or None))

    remaining = _clean_plain_run(content[last:])
    if remaining:
        segments.append(AnnotationSegment(text=remaining))

    return segments or [AnnotationSegment(text=content)]


def _fallback_reading(text: str) -> str | None:
    if len(text) == 1:
        return KANA_TO_CHINESE.get(text) if is_kana_char(text) else None

    if not any(is_kana_char(char) for char in text):
        return None
    reading = "".join(
        KANA_TO_CHINESE.get(char, char) if is_kana_char(char) else char for char in text
    )
    return reading if reading != text else None


def fill_missing_readings(segments: LineSegments) -> LineSegments:
    """Give reading-less kana segments a fixed Chinese sound-alike."""
    filled: LineSegments = []
    for segment in segments:
        reading = None if segment.reading else _fallback_reading(segment.text)
        if reading:
            filled.append(AnnotationSegment(text=segment.text, reading=reading))
        else:
            filled.append(segment)
    return filled


def furigana_to_annotated_text(segments: LineSegments) -> str:
    """Render furigana as prompt text: ``私(わたし)|は``."""
    return "|".join(
        f"{seg.text}({seg.reading})" if seg.reading else seg.text for seg in segments
    )


def convert_lines_to_annotated_text(
    lines: list[TimedLine],
    furigana: list[LineSegments] | None,
) -> list[str]:
    annotated: list[str] = []
    for index, line in enumerate(lines):
        segments = furigana[index] if furigana and index < len(furigana) else None
        if segments and any(seg.reading for seg in segments):
            annotated.append(furigana_to_annotated_text(segments))
        else:
            annotated.append(line.text)
    return annotated


def clean_cached_soramimi(lines: list[LineSegments], chinese_target: bool) -> list[LineSegments]:
    """Tidy stored soramimi before serving it.

    For a Chinese target, readings are re-cleaned of foreign script, and
    segments left with no reading that still hold Hangul or kana are dropped.
    A line emptied this way is served as its plain source text.
    """
    if not chinese_target:
        return lines

    cleaned_lines: list[LineSegments] = []
    for segments in lines:
        cleaned: LineSegments = []
        for seg in segments:
            reading = clean_soramimi_reading(seg.reading) if seg.reading else None
            if reading:
                cleaned.append(AnnotationSegment(text=seg.text, reading=reading))
            elif not _FOREIGN_SCRIPT_RE.search(seg.text):
                cleaned.append(AnnotationSegment(text=seg.text))
        if not "".join(seg.text for seg in cleaned).strip():
            cleaned = [AnnotationSegment(text="".join(seg.text for seg in segments))]
        cleaned_lines.append(cleaned)
    return cleaned_lines
