from annotator.models.lyrics import (
    AnnotationSegment,
    CatalogCandidate,
    LyricsDocument,
    LyricsSource,
    SongDocument,
    TimedLine,
    WordTiming,
)
from annotator.models.annotation import (
    AnnotationKind,
    AnnotationResult,
    FetchLyricsRequest,
    FetchLyricsResponse,
    LineEvent,
)

__all__ = [
    "AnnotationSegment",
    "CatalogCandidate",
    "LyricsDocument",
    "LyricsSource",
    "SongDocument",
    "TimedLine",
    "WordTiming",
    "AnnotationKind",
    "AnnotationResult",
    "FetchLyricsRequest",
    "FetchLyricsResponse",
    "LineEvent",
]
