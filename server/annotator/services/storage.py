"""Song documents keyed by video id, with partial merges and projected reads."""

import threading
import time
from dataclasses import dataclass
from typing import Any, Protocol

from annotator.models.lyrics import SongDocument

# Fields whose absence from a partial write is governed by PreserveFlags
_PRESERVABLE = ("lyrics", "translations", "furigana", "soramimi_by_lang")


@dataclass(frozen=True)
class GetSongOptions:
    """Projection for ``SongStore.get``. Metadata is always returned."""

    include_lyrics: bool = False
    # True for all languages, or a list of language codes
    include_translations: bool | list[str] = False
    include_furigana: bool = False
    include_soramimi: bool = False

    @classmethod
    def everything(cls) -> "GetSongOptions":
        return cls(
            include_lyrics=True,
            include_translations=True,
            include_furigana=True,
            include_soramimi=True,
        )


@dataclass(frozen=True)
class PreserveFlags:
    """Per-field behaviour for fields missing from a partial write.

    True leaves the stored value untouched; False nulls it out. A field
    present in the partial write is always overwritten.
    """

    lyrics: bool = True
    translations: bool = True
    furigana: bool = True
    soramimi: bool = True

    @classmethod
    def clear_annotations(cls) -> "PreserveFlags":
        return cls(lyrics=True, translations=False, furigana=False, soramimi=False)

    def keeps(self, field_name: str) -> bool:
        return {
            "lyrics": self.lyrics,
            "translations": self.translations,
            "furigana": self.furigana,
            "soramimi_by_lang": self.soramimi,
        }[field_name]


class SongStore(Protocol):
    async def get(self, song_id: str, options: GetSongOptions | None = None) -> SongDocument | None: ...

    async def set(
        self,
        song_id: str,
        partial: dict[str, Any],
        preserve: PreserveFlags | None = None,
    ) -> SongDocument: ...

    async def delete(self, song_id: str) -> None: ...


def _now_ms() -> int:
    return int(time.time() * 1000)


def _project(doc: SongDocument, options: GetSongOptions) -> SongDocument:
    updates: dict[str, Any] = {}
    if not options.include_lyrics:
        updates["lyrics"] = None
    if not options.include_furigana:
        updates["furigana"] = None
    if not options.include_soramimi:
        updates["soramimi_by_lang"] = None

    if options.include_translations is False:
        updates["translations"] = None
    elif isinstance(options.include_translations, list) and doc.translations:
        wanted = {
            lang: lrc for lang, lrc in doc.translations.items()
            if lang in options.include_translations
        }
        updates["translations"] = wanted or None

    return doc.model_copy(update=updates, deep=True)


class InMemorySongStore:
    """Thread-safe song store held in process memory.

    Reads return deep copies projected by ``GetSongOptions``; writes merge
    into the stored document under ``PreserveFlags``. Contents are lost on
    restart, so every cached annotation is regenerated after one.
    """

    def __init__(self) -> None:
        self._songs: dict[str, SongDocument] = {}
        self._lock = threading.Lock()

    async def get(self, song_id: str, options: GetSongOptions | None = None) -> SongDocument | None:
        with self._lock:
            doc = self._songs.get(song_id)
        if doc is None:
            return None
        return _project(doc, options or GetSongOptions())

    async def set(
        self,
        song_id: str,
        partial: dict[str, Any],
        preserve: PreserveFlags | None = None,
    ) -> SongDocument:
        preserve = preserve or PreserveFlags()
        now = _now_ms()

        with self._lock:
            existing = self._songs.get(song_id)
            merged: dict[str, Any] = (
                existing.model_dump() if existing else {"id": song_id, "created_at": now}
            )

            for field_name in _PRESERVABLE:
                if field_name not in partial and not preserve.keeps(field_name):
                    merged[field_name] = None

            merged.update(partial)
            merged["id"] = song_id
            merged["updated_at"] = now

            doc = SongDocument.model_validate(merged)
            self._songs[song_id] = doc

        return doc.model_copy(deep=True)

    async def delete(self, song_id: str) -> None:
        with self._lock:
            self._songs.pop(song_id, None)

    def list_ids(self) -> list[str]:
        with self._lock:
            return list(self._songs.keys())


# Singleton instance
song_store = InMemorySongStore()
