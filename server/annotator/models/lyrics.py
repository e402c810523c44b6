from pydantic import BaseModel, ConfigDict, Field


def _to_camel(string: str) -> str:
    """Convert snake_case to camelCase."""
    components = string.split("_")
    return components[0] + "".join(x.title() for x in components[1:])


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=_to_camel)


class WordTiming(CamelModel):
    model_config = ConfigDict(frozen=True)

    text: str
    # Offset from the owning line's start, as carried by KRC
    start_time_ms: int = Field(ge=0)
    duration_ms: int = Field(ge=0, default=0)


class TimedLine(CamelModel):
    model_config = ConfigDict(frozen=True)

    start_time_ms: int = Field(ge=0)
    text: str
    word_timings: tuple[WordTiming, ...] | None = None


class LyricsSource(CamelModel):
    hash: str = Field(max_length=128)
    album_id: str | int
    title: str = Field(max_length=500)
    artist: str = Field(max_length=500)
    album: str | None = Field(default=None, max_length=500)

    def same_as(self, other: "LyricsSource | None") -> bool:
        return other is not None and self.hash == other.hash


class LyricsDocument(CamelModel):
    lrc: str
    krc: str | None = None


class AnnotationSegment(CamelModel):
    text: str
    reading: str | None = None


LineSegments = list[AnnotationSegment]


class CatalogCandidate(CamelModel):
    title: str
    artist: str
    album: str | None = None
    hash: str
    album_id: str | int
    score: float = 0.0

    def to_source(self) -> LyricsSource:
        return LyricsSource(
            hash=self.hash,
            album_id=self.album_id,
            title=self.title,
            artist=self.artist,
            album=self.album,
        )


class SongDocument(CamelModel):
    id: str
    title: str = ""
    artist: str | None = None
    album: str | None = None
    cover: str | None = None
    lyric_offset: int | None = None
    lyrics_source: LyricsSource | None = None
    lyrics: LyricsDocument | None = None
    translations: dict[str, str] | None = None
    furigana: list[LineSegments] | None = None
    soramimi_by_lang: dict[str, list[LineSegments]] | None = None
    created_by: str | None = None
    created_at: int = 0
    updated_at: int = 0
