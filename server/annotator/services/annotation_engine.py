"""Streaming annotation engine.

Turns N timed lines plus a chunked text stream from the generator into N
per-line segment lists. The generator sees only the lines that need work,
renumbered densely 1..M; each ``"<n>: <content>"`` record is mapped back to
its original line, decoded, stored and reported as soon as its newline
arrives. Whatever the stream does, the result covers every line.
"""

import asyncio
import inspect
import logging
import math
import re
from collections.abc import AsyncIterable, Awaitable, Callable
from dataclasses import dataclass, field

from annotator.config import settings
from annotator.errors import GenerationAbort, GenerationTimeout
from annotator.models.annotation import AnnotationKind, AnnotationResult, LineEvent
from annotator.models.lyrics import AnnotationSegment, LineSegments, TimedLine
from annotator.services import prompts
from annotator.services.markup import (
    convert_lines_to_annotated_text,
    fill_missing_readings,
    parse_ruby_markup,
    parse_soramimi_markup,
)
from annotator.services.script_classifier import has_kanji, is_latin_line

logger = logging.getLogger(__name__)

RECORD_RE = re.compile(r"^(\d+)[:.\s]\s*(.*)$")
_WHITESPACE_RE = re.compile(r"\s+")

LineCallback = Callable[[LineEvent], Awaitable[None] | None]


class RecordTokenizer:
    """Incremental newline splitter for a chunked text stream.

    Only the newly fed chunk is scanned; a trailing partial record is held
    back until its newline arrives or ``flush`` is called.
    """

    def __init__(self) -> None:
        self._pending: list[str] = []

    def feed(self, chunk: str) -> list[str]:
        records: list[str] = []
        cursor = 0
        while True:
            newline = chunk.find("\n", cursor)
            if newline == -1:
                break
            self._pending.append(chunk[cursor:newline])
            records.append("".join(self._pending))
            self._pending.clear()
            cursor = newline + 1

        if cursor < len(chunk):
            self._pending.append(chunk[cursor:])
        return records

    def flush(self) -> list[str]:
        record = "".join(self._pending)
        self._pending.clear()
        return [record] if record.strip() else []


def _plain(text: str) -> LineSegments:
    return [AnnotationSegment(text=text)]


def _spans_match(segments: LineSegments, source: str) -> bool:
    joined = "".join(seg.text for seg in segments)
    return _WHITESPACE_RE.sub("", joined) == _WHITESPACE_RE.sub("", source)


@dataclass
class AnnotationPlan:
    """Everything one engine run needs for a single annotation kind."""

    kind: AnnotationKind
    lines: list[TimedLine]
    # targets[g - 1] is the original index of generation index g
    targets: list[int]
    system_prompt: str
    user_prompt: str
    temperature: float
    decode: Callable[[str], LineSegments]
    target_language: str | None = None

    @property
    def needs_generation(self) -> bool:
        return bool(self.targets)

    def resolved_indices(self) -> list[int]:
        """Original indices answered without the generator, in line order."""
        targeted = set(self.targets)
        return [i for i in range(len(self.lines)) if i not in targeted]

    def accepts(self, index: int, segments: LineSegments) -> bool:
        """Ruby and soramimi segments must spell out the source line."""
        if self.kind == "translation":
            return True
        return _spans_match(segments, self.lines[index].text)


def plan_translation(lines: list[TimedLine], language: str) -> AnnotationPlan:
    return AnnotationPlan(
        kind="translation",
        lines=lines,
        targets=list(range(len(lines))),
        system_prompt=prompts.translation_system_prompt(language),
        user_prompt=prompts.numbered([line.text for line in lines]),
        temperature=settings.translation_temperature,
        decode=_plain,
        target_language=language,
    )


def plan_furigana(lines: list[TimedLine]) -> AnnotationPlan:
    targets = [i for i, line in enumerate(lines) if has_kanji(line.text)]
    return AnnotationPlan(
        kind="furigana",
        lines=lines,
        targets=targets,
        system_prompt=prompts.FURIGANA_SYSTEM_PROMPT,
        user_prompt=prompts.numbered([lines[i].text for i in targets]),
        temperature=settings.furigana_temperature,
        decode=parse_ruby_markup,
    )


def is_chinese_target(language: str) -> bool:
    return language.lower().startswith("zh")


def plan_soramimi(
    lines: list[TimedLine],
    target_language: str,
    furigana: list[LineSegments] | None = None,
) -> AnnotationPlan:
    """Plan a soramimi run.

    Pure-Latin lines pass through untouched. When furigana with readings is
    supplied the prompt carries ``text(reading)`` hints; otherwise KRC word
    boundaries are marked with ``|``.
    """
    targets = [i for i, line in enumerate(lines) if not is_latin_line(line.text)]
    with_furigana = bool(furigana) and any(seg.reading for row in furigana for seg in row)

    if with_furigana:
        annotated = convert_lines_to_annotated_text(lines, furigana)
        texts = [annotated[i] for i in targets]
    else:
        texts = []
        for i in targets:
            line = lines[i]
            if line.word_timings:
                texts.append("|".join(w.text for w in line.word_timings))
            else:
                texts.append(line.text)

    if is_chinese_target(target_language):
        def decode(content: str) -> LineSegments:
            return fill_missing_readings(parse_soramimi_markup(content))
    else:
        decode = parse_soramimi_markup

    return AnnotationPlan(
        kind="soramimi",
        lines=lines,
        targets=targets,
        system_prompt=prompts.soramimi_system_prompt(target_language, with_furigana),
        user_prompt=prompts.numbered(texts),
        temperature=settings.soramimi_temperature,
        decode=decode,
        target_language=target_language,
    )


async def emit_line(on_line: LineCallback | None, event: LineEvent) -> None:
    if on_line is None:
        return
    result = on_line(event)
    if inspect.isawaitable(result):
        await result


@dataclass
class _StreamState:
    plan: AnnotationPlan
    on_line: LineCallback | None
    results: list[LineSegments | None] = field(init=False)
    completed: set[int] = field(default_factory=set)

    def __post_init__(self) -> None:
        self.results = [None] * len(self.plan.lines)

    @property
    def progress(self) -> int:
        total = len(self.plan.lines)
        if total == 0:
            return 100
        return math.floor(len(self.completed) / total * 100 + 0.5)

    async def complete(self, index: int, segments: LineSegments) -> None:
        # Re-delivery overwrites the slot without re-counting
        self.results[index] = segments
        self.completed.add(index)
        await emit_line(self.on_line, LineEvent(line_index=index, segments=segments, progress=self.progress))

    async def accept(self, record: str) -> None:
        match = RECORD_RE.match(record.strip())
        if not match:
            return

        generation_index = int(match.group(1))
        content = match.group(2).strip()
        if not content or not 1 <= generation_index <= len(self.plan.targets):
            return

        index = self.plan.targets[generation_index - 1]
        segments = self.plan.decode(content)
        if not segments:
            return
        if not self.plan.accepts(index, segments):
            logger.debug("Dropping %s record %d: segments do not cover the line", self.plan.kind, index)
            return
        await self.complete(index, segments)

    def finalize(self) -> list[LineSegments]:
        return [
            segments if segments else _plain(line.text)
            for segments, line in zip(self.results, self.plan.lines)
        ]


class AnnotationEngine:
    """Consumes a generator stream against an ``AnnotationPlan``."""

    def __init__(self, timeout: float | None = None) -> None:
        self.timeout = timeout if timeout is not None else settings.generation_timeout_seconds

    async def run(
        self,
        plan: AnnotationPlan,
        stream: AsyncIterable[str] | None,
        on_line: LineCallback | None = None,
        abort: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> AnnotationResult:
        state = _StreamState(plan, on_line)

        for index in plan.resolved_indices():
            await state.complete(index, _plain(plan.lines[index].text))

        error: str | None = None
        if plan.needs_generation and stream is not None:
            try:
                await self._drive(state, stream, abort, timeout if timeout is not None else self.timeout)
            except GenerationTimeout as exc:
                logger.warning("%s generation timed out: %s", plan.kind, exc)
                error = "timeout"
            except GenerationAbort as exc:
                logger.info("%s generation aborted: %s", plan.kind, exc)
                error = "aborted"
            except Exception as exc:
                logger.exception("%s generation failed", plan.kind)
                error = str(exc) or exc.__class__.__name__
            finally:
                await _close(stream)
        elif plan.needs_generation:
            error = "no generation stream"

        return AnnotationResult(
            kind=plan.kind,
            lines=state.finalize(),
            success=error is None,
            completed_count=len(state.completed),
            error=error,
        )

    async def _consume(self, state: _StreamState, stream: AsyncIterable[str]) -> None:
        tokenizer = RecordTokenizer()
        async for chunk in stream:
            if not chunk:
                continue
            for record in tokenizer.feed(chunk):
                await state.accept(record)

        for record in tokenizer.flush():
            await state.accept(record)

    async def _drive(
        self,
        state: _StreamState,
        stream: AsyncIterable[str],
        abort: asyncio.Event | None,
        timeout: float,
    ) -> None:
        consumer = asyncio.create_task(self._consume(state, stream))
        waiters: set[asyncio.Task] = {consumer}
        abort_waiter: asyncio.Task | None = None
        if abort is not None:
            abort_waiter = asyncio.create_task(abort.wait())
            waiters.add(abort_waiter)

        try:
            done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if abort_waiter is not None:
                abort_waiter.cancel()

        if consumer in done:
            # Re-raises a generator failure
            consumer.result()
            return

        consumer.cancel()
        try:
            await consumer
        except asyncio.CancelledError:
            pass

        completed = len(state.completed)
        if abort is not None and abort.is_set():
            raise GenerationAbort(f"cancelled after {completed} of {len(state.plan.lines)} lines")
        raise GenerationTimeout(f"exceeded {timeout}s after {completed} of {len(state.plan.lines)} lines")


async def _close(stream: AsyncIterable[str]) -> None:
    aclose = getattr(stream, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except RuntimeError:
        logger.debug("Generation stream already closing")
