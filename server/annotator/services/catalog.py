"""KuGou lyrics catalog client.

Four endpoints are used: song search, lyrics candidate lookup by song hash,
lyrics download (KRC or LRC) and album info for cover art. Every call is
time-bounded; transport and decoding failures surface as ``UpstreamError``.
"""

import logging
from typing import Literal

import httpx
from pydantic import BaseModel, ConfigDict

from annotator.config import settings
from annotator.errors import DecodeError, UpstreamError
from annotator.models.lyrics import LyricsDocument, LyricsSource
from annotator.services.lyrics_codec import decode_krc, decode_timed_plain

logger = logging.getLogger(__name__)

SEARCH_URL = "http://mobilecdn.kugou.com/api/v3/search/song"
CANDIDATE_URL = "https://krcs.kugou.com/search"
DOWNLOAD_URL = "http://lyrics.kugou.com/download"
ALBUM_INFO_URL = "http://mobilecdn.kugou.com/api/v3/album/info"

# The catalog only answers clients that send this exact user agent blob
KUGOU_HEADERS = {
    "User-Agent": (
        '{"percent": 21.4, "useragent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) '
        'AppleWebKit/537.36 (KHTML, like Gecko) Chrome/116.0.0.0 Safari/537.36", '
        '"system": "Chrome 116.0 Win10", "browser": "chrome", "version": 116.0, "os": "win10"}'
    ),
}

COVER_SIZE = 400

LyricsFormat = Literal["krc", "lrc"]


class KugouSong(BaseModel):
    """One entry of the search response's ``data.info`` list."""

    model_config = ConfigDict(extra="ignore")

    hash: str
    album_id: str | int = ""
    songname: str
    singername: str = ""
    album_name: str | None = None


class LyricsCandidate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str | int
    accesskey: str


def format_cover_url(url: str | None, size: int = COVER_SIZE) -> str | None:
    """Fill the ``{size}`` placeholder and force HTTPS."""
    if not url:
        return None
    if url.startswith("http://"):
        url = "https://" + url[len("http://"):]
    return url.replace("{size}", str(size))


class KugouCatalog:
    """Async client for the KuGou catalog."""

    def __init__(self, http: httpx.AsyncClient | None = None) -> None:
        self._http = http

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                timeout=settings.catalog_timeout_seconds,
                headers=KUGOU_HEADERS,
            )
        return self._http

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def _get_json(self, url: str, params: dict[str, str | int]) -> dict:
        client = self._client()
        try:
            resp = await client.get(url, params=params, headers=KUGOU_HEADERS)
            resp.raise_for_status()
            data = resp.json()
        except httpx.TimeoutException as exc:
            raise UpstreamError(f"Catalog request timed out: {url}") from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Catalog request failed: {exc}") from exc
        except ValueError as exc:
            raise UpstreamError(f"Catalog returned invalid JSON: {url}") from exc

        if not isinstance(data, dict):
            raise UpstreamError(f"Unexpected catalog response shape: {url}")
        return data

    async def search(self, keyword: str) -> list[KugouSong]:
        data = await self._get_json(
            SEARCH_URL,
            {
                "format": "json",
                "keyword": keyword,
                "page": 1,
                "pagesize": settings.catalog_page_size,
                "showtype": 1,
            },
        )
        infos = (data.get("data") or {}).get("info") or []

        songs: list[KugouSong] = []
        for info in infos:
            try:
                songs.append(KugouSong.model_validate(info))
            except ValueError:
                logger.debug("Skipping malformed catalog entry: %r", info)
        logger.info("Catalog search '%s' returned %d songs", keyword, len(songs))
        return songs

    async def fetch_candidate(self, song_hash: str) -> LyricsCandidate | None:
        data = await self._get_json(
            CANDIDATE_URL,
            {
                "ver": 1,
                "man": "yes",
                "client": "mobi",
                "keyword": "",
                "duration": "",
                "hash": song_hash,
                "album_audio_id": "",
            },
        )
        candidates = data.get("candidates") or []
        if not candidates:
            return None
        try:
            return LyricsCandidate.model_validate(candidates[0])
        except ValueError as exc:
            raise UpstreamError(f"Malformed lyrics candidate for {song_hash}") from exc

    async def fetch_lyrics_blob(
        self,
        lyrics_id: str | int,
        access_key: str,
        fmt: LyricsFormat,
    ) -> str | None:
        """Download one lyrics format; returns the still-encoded base64 payload."""
        data = await self._get_json(
            DOWNLOAD_URL,
            {
                "ver": 1,
                "client": "pc",
                "id": lyrics_id,
                "accesskey": access_key,
                "fmt": fmt,
                "charset": "utf8",
            },
        )
        return data.get("content") or None

    async def fetch_cover_url(self, song_hash: str, album_id: str | int) -> str | None:
        """Album cover URL, or None. Cover art is optional so failures are logged only."""
        if not album_id:
            return None
        try:
            data = await self._get_json(ALBUM_INFO_URL, {"albumid": album_id})
        except UpstreamError as exc:
            logger.info("Cover lookup failed for %s: %s", song_hash, exc)
            return None
        return format_cover_url((data.get("data") or {}).get("imgurl"))

    async def _download(
        self,
        candidate: LyricsCandidate,
        fmt: LyricsFormat,
    ) -> str | None:
        try:
            blob = await self.fetch_lyrics_blob(candidate.id, candidate.accesskey, fmt)
        except UpstreamError as exc:
            logger.info("%s download failed: %s", fmt.upper(), exc)
            return None
        if not blob:
            return None

        try:
            return decode_krc(blob) if fmt == "krc" else decode_timed_plain(blob)
        except DecodeError as exc:
            logger.info("%s decode failed: %s", fmt.upper(), exc)
            return None

    async def fetch_lyrics(self, source: LyricsSource) -> LyricsDocument | None:
        """Fetch and decode both formats for a source.

        KRC is tried first, then LRC. When only KRC decodes it also fills
        the LRC slot so the document always has a primary text.
        """
        candidate = await self.fetch_candidate(source.hash)
        if candidate is None:
            logger.info("No lyrics candidate for hash %s", source.hash)
            return None

        krc = await self._download(candidate, "krc")
        lrc = await self._download(candidate, "lrc")

        if not lrc and not krc:
            return None
        return LyricsDocument(lrc=lrc or krc or "", krc=krc)
