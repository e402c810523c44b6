"""Per-song document lifecycle: lyrics resolution, annotation caching, invalidation.

``fetch_lyrics`` walks NO_SOURCE -> SOURCE_RESOLVED -> CACHE_HIT | CACHE_MISS
-> PERSISTED. A forced refresh or a changed catalog hash clears every
annotation set before the new lyrics are written. Annotation requests return
a cached value, a skip, or an ``AnnotationJob`` that streams line events and
persists the result on success.
"""

import asyncio
import logging
import math
import re
from collections.abc import Awaitable, Callable
from typing import Any

from annotator.config import settings
from annotator.errors import LyricsNotFoundError, UpstreamError, ValidationError
from annotator.models.annotation import (
    AnnotationKind,
    AnnotationResult,
    CachedSegments,
    CachedTranslation,
    FetchLyricsRequest,
    FetchLyricsResponse,
    FetchMeta,
    LineEvent,
    LyricsPayload,
    PendingAnnotation,
    SkippedAnnotation,
    SongMetadataPayload,
)
from annotator.models.lyrics import (
    CatalogCandidate,
    LineSegments,
    LyricsSource,
    SongDocument,
    TimedLine,
)
from annotator.services.annotation_engine import (
    AnnotationEngine,
    AnnotationPlan,
    LineCallback,
    emit_line,
    is_chinese_target,
    plan_furigana,
    plan_soramimi,
    plan_translation,
)
from annotator.services.catalog import KugouCatalog
from annotator.services.llm_service import LLMService
from annotator.services.lyrics_parser import (
    build_translation_from_krc,
    is_chinese_traditional,
    ms_to_lrc_time,
    parse_lyrics,
)
from annotator.services.markup import clean_cached_soramimi
from annotator.services.script_classifier import lyrics_are_mostly_chinese
from annotator.services.source_matcher import SourceMatcher, parse_title_simple, strip_parentheses
from annotator.services.storage import GetSongOptions, PreserveFlags, SongStore

logger = logging.getLogger(__name__)

# YouTube video ids: 11 characters of [A-Za-z0-9_-]
SONG_ID_RE = re.compile(r"^[A-Za-z0-9_-]{11}$")

InFlightKey = tuple[str, AnnotationKind, str]


def validate_song_id(song_id: str) -> None:
    if not SONG_ID_RE.match(song_id or ""):
        raise ValidationError(f"Invalid song id: {song_id!r}")


def translation_to_lrc(lines: list[TimedLine], texts: list[str]) -> str:
    return "\n".join(
        f"{ms_to_lrc_time(line.start_time_ms)}{text}" for line, text in zip(lines, texts)
    )


def _lrc_line_count(lrc: str) -> int:
    return sum(1 for row in lrc.splitlines() if row.strip())


class InFlightRegistry:
    """One running generation per (song, kind, language).

    The first caller starts the task; concurrent callers await the same task
    instead of starting a duplicate generation. The task is shielded so a
    disconnecting caller does not cancel it for the others.
    """

    def __init__(self) -> None:
        self._tasks: dict[InFlightKey, asyncio.Task[AnnotationResult]] = {}

    def __contains__(self, key: InFlightKey) -> bool:
        return key in self._tasks

    async def run(
        self,
        key: InFlightKey,
        factory: Callable[[], Awaitable[AnnotationResult]],
    ) -> tuple[AnnotationResult, bool]:
        """Return ``(result, started_here)``."""
        task = self._tasks.get(key)
        if task is not None:
            logger.info("Joining in-flight %s generation for %s", key[1], key[0])
            return await asyncio.shield(task), False

        task = asyncio.ensure_future(factory())
        self._tasks[key] = task
        task.add_done_callback(lambda done: self._forget(key, done))
        return await asyncio.shield(task), True

    def _forget(self, key: InFlightKey, task: asyncio.Task[AnnotationResult]) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]


class AnnotationJob:
    """A pending generation for one annotation kind."""

    status = "pending"

    def __init__(
        self,
        service: "SongService",
        song_id: str,
        plan: AnnotationPlan,
        lyrics_hash: str | None,
    ) -> None:
        self._service = service
        self.song_id = song_id
        self.plan = plan
        self.lyrics_hash = lyrics_hash

    @property
    def kind(self) -> AnnotationKind:
        return self.plan.kind

    @property
    def total_lines(self) -> int:
        return len(self.plan.lines)

    @property
    def key(self) -> InFlightKey:
        return (self.song_id, self.plan.kind, self.plan.target_language or "")

    def info(self) -> PendingAnnotation:
        return PendingAnnotation(
            kind=self.kind,
            total_lines=self.total_lines,
            target_language=self.plan.target_language if self.kind == "soramimi" else None,
        )

    async def run(
        self,
        on_line: LineCallback | None = None,
        abort: asyncio.Event | None = None,
    ) -> AnnotationResult:
        return await self._service._run_job(self, on_line, abort)


class SongService:
    """Orchestrates catalog, parser, engine and store for one song at a time."""

    def __init__(
        self,
        store: SongStore,
        catalog: KugouCatalog,
        llm: LLMService,
        engine: AnnotationEngine | None = None,
        registry: InFlightRegistry | None = None,
    ) -> None:
        self.store = store
        self.catalog = catalog
        self.llm = llm
        self.matcher = SourceMatcher(catalog)
        self.engine = engine or AnnotationEngine()
        self.registry = registry or InFlightRegistry()

    # ── Lyrics ───────────────────────────────────────────────

    async def get_song(self, song_id: str) -> SongDocument:
        validate_song_id(song_id)
        song = await self.store.get(song_id, GetSongOptions(include_lyrics=True))
        if song is None:
            raise LyricsNotFoundError(f"Song {song_id} not found")
        return song

    def parse_song_lines(self, song: SongDocument) -> list[TimedLine]:
        if song.lyrics is None:
            return []
        source = song.lyrics_source
        return parse_lyrics(
            song.lyrics,
            (source.title if source else None) or song.title,
            (source.artist if source else None) or song.artist,
        )

    async def fetch_lyrics(self, song_id: str, request: FetchLyricsRequest) -> FetchLyricsResponse:
        validate_song_id(song_id)
        soramimi_language = request.soramimi_target_language or settings.default_soramimi_language

        song = await self.store.get(
            song_id,
            GetSongOptions(
                include_lyrics=True,
                include_translations=[request.translate_to] if request.translate_to else False,
                include_furigana=request.include_furigana,
                include_soramimi=request.include_soramimi,
            ),
        )

        stored_source = song.lyrics_source if song else None
        source = request.lyrics_source or stored_source
        source_changed = bool(source and stored_source and not source.same_as(stored_source))

        if song and song.lyrics and song.lyrics.lrc and not request.force and not source_changed:
            logger.info("Lyrics cache hit for %s", song_id)
            return await self._cached_response(song_id, song, request, soramimi_language)

        if source is None:
            source = await self._auto_match(song, request)
        if source is None:
            raise LyricsNotFoundError("No lyrics source available")

        try:
            lyrics = await self.catalog.fetch_lyrics(source)
        except UpstreamError as exc:
            logger.warning("Lyrics download failed for %s: %s", song_id, exc)
            lyrics = None
        if lyrics is None:
            raise LyricsNotFoundError("Failed to fetch lyrics")

        cover = await self.catalog.fetch_cover_url(source.hash, source.album_id)

        if song is not None and (request.force or source_changed):
            logger.info("Clearing annotations for %s (force=%s, source changed=%s)",
                        song_id, request.force, source_changed)
            await self.store.set(song_id, {}, PreserveFlags.clear_annotations())

        partial: dict[str, Any] = {
            "title": (song.title if song else "") or request.title or source.title or song_id,
            "artist": (song.artist if song else None) or request.artist or source.artist,
            "album": (song.album if song else None) or source.album,
            "lyrics": lyrics,
            "lyrics_source": source,
        }
        if cover:
            partial["cover"] = cover
        saved = await self.store.set(song_id, partial, PreserveFlags())

        lines = parse_lyrics(lyrics, source.title, source.artist)
        response = FetchLyricsResponse(
            lyrics=LyricsPayload(lrc=lyrics.lrc, krc=lyrics.krc, parsed_lines=lines),
            cached=False,
            meta=FetchMeta(parsed_lines_count=len(lines), cached=False, lyrics_source_changed=source_changed),
        )
        await self._attach_annotation_info(response, song_id, saved, lines, request, soramimi_language)
        if request.return_metadata:
            response.metadata = _metadata(saved)
        return response

    async def _cached_response(
        self,
        song_id: str,
        song: SongDocument,
        request: FetchLyricsRequest,
        soramimi_language: str,
    ) -> FetchLyricsResponse:
        lines = self.parse_song_lines(song)

        source = song.lyrics_source
        if not song.cover and source and source.hash and source.album_id:
            cover = await self.catalog.fetch_cover_url(source.hash, source.album_id)
            if cover:
                song = song.model_copy(update={"cover": cover})
                await self.store.set(song_id, {"cover": cover})

        response = FetchLyricsResponse(
            lyrics=LyricsPayload(lrc=song.lyrics.lrc, krc=song.lyrics.krc, parsed_lines=lines),
            cached=True,
            meta=FetchMeta(parsed_lines_count=len(lines), cached=True, lyrics_source_changed=False),
        )
        if lines:
            await self._attach_annotation_info(response, song_id, song, lines, request, soramimi_language)
        if request.return_metadata:
            response.metadata = _metadata(song)
        return response

    async def _attach_annotation_info(
        self,
        response: FetchLyricsResponse,
        song_id: str,
        song: SongDocument,
        lines: list[TimedLine],
        request: FetchLyricsRequest,
        soramimi_language: str,
    ) -> None:
        total = len(lines)

        if request.translate_to:
            language = request.translate_to
            lrc = await self._cached_translation(song_id, song, lines, language, use_store=True)
            if lrc is not None:
                response.translation = CachedTranslation(total_lines=total, language=language, lrc=lrc)
            else:
                response.translation = PendingAnnotation(kind="translation", total_lines=total)

        if request.include_furigana:
            cached = _valid_segments(song.furigana, total)
            if cached is not None:
                response.furigana = CachedSegments(kind="furigana", total_lines=total, data=cached)
            else:
                response.furigana = PendingAnnotation(kind="furigana", total_lines=total)

        if request.include_soramimi:
            response.soramimi = self._soramimi_status(song, lines, soramimi_language)

    async def _auto_match(self, song: SongDocument | None, request: FetchLyricsRequest) -> LyricsSource | None:
        raw_title = (song.title if song else "") or request.title or ""
        raw_artist = (song.artist if song else None) or request.artist or ""
        if not raw_title:
            return None

        title, artist = raw_title, raw_artist
        if not raw_artist:
            parsed = parse_title_simple(raw_title)
            title = parsed.title or raw_title
            artist = parsed.artist

        query = f"{strip_parentheses(title)} {strip_parentheses(artist)}".strip()
        try:
            candidates = await self.matcher.search(query, title, artist)
        except UpstreamError as exc:
            logger.warning("Catalog search failed for '%s': %s", query, exc)
            return None

        if not candidates:
            logger.info("No catalog match for '%s'", query)
            return None
        best = candidates[0]
        logger.info("Auto-matched '%s' to %s - %s (score %.3f)", query, best.artist, best.title, best.score)
        return best.to_source()

    async def search_lyrics(self, song_id: str, query: str | None = None) -> list[CatalogCandidate]:
        """Ranked catalog candidates for the song. Catalog failure yields no candidates."""
        validate_song_id(song_id)
        song = await self.store.get(song_id)

        title = song.title if song else ""
        artist = (song.artist if song else None) or ""
        if title and not artist:
            parsed = parse_title_simple(title)
            title, artist = parsed.title or title, parsed.artist

        if not query:
            query = f"{strip_parentheses(title)} {strip_parentheses(artist)}".strip()
        if not query:
            raise ValidationError("A search query is required")

        try:
            return await self.matcher.search(query, title or query, artist)
        except UpstreamError as exc:
            logger.warning("Catalog search failed for '%s': %s", query, exc)
            return []

    # ── Annotations ──────────────────────────────────────────

    async def _load(self, song_id: str) -> tuple[SongDocument, list[TimedLine]]:
        validate_song_id(song_id)
        song = await self.store.get(song_id, GetSongOptions.everything())
        if song is None or song.lyrics is None:
            raise LyricsNotFoundError(f"Song {song_id} has no lyrics")
        lines = self.parse_song_lines(song)
        if not lines:
            raise LyricsNotFoundError(f"Song {song_id} has no parsable lyric lines")
        return song, lines

    async def _cached_translation(
        self,
        song_id: str,
        song: SongDocument,
        lines: list[TimedLine],
        language: str,
        use_store: bool,
    ) -> str | None:
        """Stored translation, else the KRC-derived one for Traditional Chinese."""
        stored = (song.translations or {}).get(language)
        if use_store and stored and _lrc_line_count(stored) == len(lines):
            return stored

        if is_chinese_traditional(language) and song.lyrics is not None:
            source = song.lyrics_source
            derived = build_translation_from_krc(
                song.lyrics,
                lines,
                (source.title if source else None) or song.title,
                (source.artist if source else None) or song.artist,
            )
            if derived:
                logger.info("Using embedded KRC translation for %s", song_id)
                await self._save_translation(song_id, language, derived)
                return derived
        return None

    async def prepare_translation(
        self,
        song_id: str,
        language: str,
        force: bool = False,
    ) -> CachedTranslation | AnnotationJob:
        song, lines = await self._load(song_id)
        lrc = await self._cached_translation(song_id, song, lines, language, use_store=not force)
        if lrc is not None:
            return CachedTranslation(total_lines=len(lines), language=language, lrc=lrc)
        return AnnotationJob(self, song_id, plan_translation(lines, language), _hash(song))

    async def prepare_furigana(self, song_id: str, force: bool = False) -> CachedSegments | AnnotationJob:
        song, lines = await self._load(song_id)
        cached = None if force else _valid_segments(song.furigana, len(lines))
        if cached is not None:
            return CachedSegments(kind="furigana", total_lines=len(lines), data=cached)
        return AnnotationJob(self, song_id, plan_furigana(lines), _hash(song))

    def _soramimi_status(
        self,
        song: SongDocument,
        lines: list[TimedLine],
        language: str,
        force: bool = False,
    ) -> CachedSegments | SkippedAnnotation | PendingAnnotation:
        total = len(lines)
        if is_chinese_target(language) and lyrics_are_mostly_chinese(lines):
            return SkippedAnnotation(
                kind="soramimi",
                total_lines=total,
                target_language=language,
                skip_reason="chinese_lyrics",
            )

        cached = None if force else _valid_segments((song.soramimi_by_lang or {}).get(language), total)
        if cached is not None:
            return CachedSegments(
                kind="soramimi",
                total_lines=total,
                target_language=language,
                data=clean_cached_soramimi(cached, is_chinese_target(language)),
            )
        return PendingAnnotation(kind="soramimi", total_lines=total, target_language=language)

    async def prepare_soramimi(
        self,
        song_id: str,
        target_language: str | None = None,
        force: bool = False,
        furigana: list[LineSegments] | None = None,
    ) -> CachedSegments | SkippedAnnotation | AnnotationJob:
        language = target_language or settings.default_soramimi_language
        song, lines = await self._load(song_id)

        if furigana is not None and len(furigana) != len(lines):
            raise ValidationError(
                f"Furigana has {len(furigana)} lines but the lyrics have {len(lines)}"
            )

        status = self._soramimi_status(song, lines, language, force)
        if not isinstance(status, PendingAnnotation):
            return status
        return AnnotationJob(self, song_id, plan_soramimi(lines, language, furigana), _hash(song))

    async def clear_cached_data(
        self,
        song_id: str,
        translations: bool = False,
        furigana: bool = False,
        soramimi: bool = False,
    ) -> list[str]:
        """Drop the selected annotation sets; returns the names cleared."""
        validate_song_id(song_id)
        if await self.store.get(song_id) is None:
            raise LyricsNotFoundError(f"Song {song_id} not found")

        flags = PreserveFlags(
            lyrics=True,
            translations=not translations,
            furigana=not furigana,
            soramimi=not soramimi,
        )
        await self.store.set(song_id, {}, flags)

        cleared = [
            name for name, selected in
            (("translations", translations), ("furigana", furigana), ("soramimi", soramimi))
            if selected
        ]
        logger.info("Cleared %s for %s", ", ".join(cleared) or "nothing", song_id)
        return cleared

    # ── Job execution ────────────────────────────────────────

    async def _run_job(
        self,
        job: AnnotationJob,
        on_line: LineCallback | None,
        abort: asyncio.Event | None,
    ) -> AnnotationResult:
        result, started_here = await self.registry.run(
            job.key, lambda: self._execute(job, on_line, abort)
        )
        if not started_here:
            await _replay(result, on_line)
        return result

    async def _execute(
        self,
        job: AnnotationJob,
        on_line: LineCallback | None,
        abort: asyncio.Event | None,
    ) -> AnnotationResult:
        plan = job.plan
        stream = None
        if plan.needs_generation:
            stream = self.llm.stream_text(plan.system_prompt, plan.user_prompt, plan.temperature)

        result = await self.engine.run(plan, stream, on_line, abort)
        logger.info(
            "%s for %s finished: %d/%d lines, success=%s",
            plan.kind, job.song_id, result.completed_count, len(plan.lines), result.success,
        )

        if result.success:
            try:
                await self._persist(job, result)
            except Exception:
                logger.exception("Failed to persist %s for %s", plan.kind, job.song_id)
        return result

    async def _persist(self, job: AnnotationJob, result: AnnotationResult) -> None:
        current = await self.store.get(job.song_id)
        if current is None or _hash(current) != job.lyrics_hash:
            logger.info("Lyrics for %s changed during %s generation; not caching", job.song_id, job.kind)
            return

        plan = job.plan
        if plan.kind == "translation":
            await self._save_translation(
                job.song_id, plan.target_language or "", translation_to_lrc(plan.lines, result.texts())
            )
        elif plan.kind == "furigana":
            await self.store.set(job.song_id, {"furigana": result.lines})
        else:
            existing = await self.store.get(job.song_id, GetSongOptions(include_soramimi=True))
            by_lang = dict((existing.soramimi_by_lang if existing else None) or {})
            by_lang[plan.target_language or settings.default_soramimi_language] = result.lines
            await self.store.set(job.song_id, {"soramimi_by_lang": by_lang})

    async def _save_translation(self, song_id: str, language: str, lrc: str) -> None:
        existing = await self.store.get(song_id, GetSongOptions(include_translations=True))
        translations = dict((existing.translations if existing else None) or {})
        translations[language] = lrc
        await self.store.set(song_id, {"translations": translations})


def _hash(song: SongDocument) -> str | None:
    return song.lyrics_source.hash if song.lyrics_source else None


def _valid_segments(data: list[LineSegments] | None, total: int) -> list[LineSegments] | None:
    """Stored per-line segments, or None when missing or stale."""
    if not data or len(data) != total:
        return None
    return data


def _metadata(song: SongDocument) -> SongMetadataPayload:
    source = song.lyrics_source
    return SongMetadataPayload(
        title=(source.title if source else None) or song.title,
        artist=(source.artist if source else None) or song.artist,
        album=(source.album if source else None) or song.album,
        cover=song.cover,
        lyrics_source=source,
    )


async def _replay(result: AnnotationResult, on_line: LineCallback | None) -> None:
    """Re-emit a finished result as line events for a caller that joined late."""
    total = len(result.lines)
    for index, segments in enumerate(result.lines):
        progress = math.floor((index + 1) / total * 100 + 0.5)
        await emit_line(on_line, LineEvent(line_index=index, segments=segments, progress=progress))
