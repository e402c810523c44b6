from typing import Annotated, Any, Literal, Union

from pydantic import Discriminator, Field, Tag

from annotator.models.lyrics import (
    AnnotationSegment,
    CamelModel,
    LineSegments,
    LyricsSource,
    TimedLine,
)


AnnotationKind = Literal["translation", "furigana", "soramimi"]

SkipReason = Literal["chinese_lyrics"]


class LineEvent(CamelModel):
    """One completed line from a streaming annotation run."""

    line_index: int = Field(ge=0)
    segments: LineSegments
    progress: int = Field(ge=0, le=100)

    @property
    def text(self) -> str:
        return "".join(seg.text for seg in self.segments)


class AnnotationResult(CamelModel):
    kind: AnnotationKind
    lines: list[LineSegments]
    success: bool = True
    completed_count: int = 0
    error: str | None = None

    def texts(self) -> list[str]:
        return ["".join(seg.text for seg in line) for line in self.lines]


# ── Per-kind annotation status (fetch-lyrics response) ───────


class CachedTranslation(CamelModel):
    status: Literal["cached"] = "cached"
    kind: Literal["translation"] = "translation"
    total_lines: int
    language: str
    lrc: str


class CachedSegments(CamelModel):
    status: Literal["cached"] = "cached"
    kind: Literal["furigana", "soramimi"]
    total_lines: int
    target_language: str | None = None
    data: list[LineSegments]


class PendingAnnotation(CamelModel):
    status: Literal["pending"] = "pending"
    kind: AnnotationKind
    total_lines: int
    target_language: str | None = None


class SkippedAnnotation(CamelModel):
    status: Literal["skipped"] = "skipped"
    kind: AnnotationKind
    total_lines: int
    target_language: str | None = None
    skip_reason: SkipReason


def _info_tag(value: Any) -> str | None:
    # Both cached shapes share status "cached"; kind tells them apart
    if isinstance(value, dict):
        status, kind = value.get("status"), value.get("kind")
    else:
        status, kind = getattr(value, "status", None), getattr(value, "kind", None)
    if status == "cached":
        return "cached_translation" if kind == "translation" else "cached_segments"
    return status


AnnotationInfo = Annotated[
    Union[
        Annotated[CachedTranslation, Tag("cached_translation")],
        Annotated[CachedSegments, Tag("cached_segments")],
        Annotated[PendingAnnotation, Tag("pending")],
        Annotated[SkippedAnnotation, Tag("skipped")],
    ],
    Discriminator(_info_tag),
]


# ── Requests ─────────────────────────────────────────────────


class FetchLyricsRequest(CamelModel):
    lyrics_source: LyricsSource | None = None
    force: bool = False
    title: str | None = Field(default=None, max_length=500)
    artist: str | None = Field(default=None, max_length=500)
    translate_to: str | None = Field(default=None, max_length=10)
    include_furigana: bool = False
    include_soramimi: bool = False
    soramimi_target_language: str | None = Field(default=None, max_length=10)
    return_metadata: bool = False


class SearchLyricsRequest(CamelModel):
    query: str | None = Field(default=None, max_length=500)


class TranslateStreamRequest(CamelModel):
    language: str = Field(min_length=1, max_length=10)
    force: bool = False


class FuriganaStreamRequest(CamelModel):
    force: bool = False


class SoramimiStreamRequest(CamelModel):
    force: bool = False
    target_language: str | None = Field(default=None, max_length=10)
    furigana: list[list[AnnotationSegment]] | None = Field(default=None, max_length=1000)


class ClearCachedDataRequest(CamelModel):
    clear_translations: bool = False
    clear_furigana: bool = False
    clear_soramimi: bool = False


# ── Responses ────────────────────────────────────────────────


class LyricsPayload(CamelModel):
    lrc: str
    krc: str | None = None
    parsed_lines: list[TimedLine]


class SongMetadataPayload(CamelModel):
    title: str | None = None
    artist: str | None = None
    album: str | None = None
    cover: str | None = None
    lyrics_source: LyricsSource | None = None


class FetchMeta(CamelModel):
    parsed_lines_count: int
    cached: bool
    lyrics_source_changed: bool


class FetchLyricsResponse(CamelModel):
    lyrics: LyricsPayload
    cached: bool
    translation: AnnotationInfo | None = None
    furigana: AnnotationInfo | None = None
    soramimi: AnnotationInfo | None = None
    metadata: SongMetadataPayload | None = None
    meta: FetchMeta = Field(serialization_alias="_meta")
