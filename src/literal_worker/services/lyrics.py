"""Synced lyric lines for a track, cached in the lyrics table."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Protocol

import httpx
from loguru import logger
from sqlalchemy import select

from ..app.models import Line
from ..app.settings import Settings
from .database import Database, LyricRecord
from .exceptions import LyricsUnavailable

INSTRUMENTAL_MARKER = "♪"


class LyricsSource(Protocol):
    async def fetch(self, track_id: str) -> List[Line]: ...


class LyricsService:
    """Reads lyric lines from the local cache, falling back to the provider."""

    def __init__(
        self,
        settings: Settings,
        database: Database,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._base_url = settings.lyrics_api_url.rstrip("/")
        self._access_token = settings.lyrics_access_token
        self._database = database
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.lyrics_timeout_seconds)
        )
        self._pending: Dict[str, "asyncio.Future[List[Line]]"] = {}

    @property
    def base_url(self) -> str:
        return self._base_url

    async def fetch(self, track_id: str) -> List[Line]:
        # Concurrent requests for one track share a single lookup, so the
        # lyrics table never receives the same lines twice.
        pending = self._pending.get(track_id)
        if pending is None:
            pending = asyncio.ensure_future(self._fetch_once(track_id))
            self._pending[track_id] = pending
            pending.add_done_callback(lambda _: self._pending.pop(track_id, None))
        lines = await asyncio.shield(pending)
        return list(lines)

    async def _fetch_once(self, track_id: str) -> List[Line]:
        cached = await self._load_cached(track_id)
        if cached:
            return cached

        lines = await self._fetch_remote(track_id)
        await self._store(track_id, lines)
        logger.info("Cached {} lyric lines for track {}", len(lines), track_id)
        return lines

    async def close(self) -> None:
        await self._client.aclose()

    async def _load_cached(self, track_id: str) -> List[Line]:
        stmt = (
            select(LyricRecord)
            .where(LyricRecord.track_id == track_id)
            .order_by(LyricRecord.start_time_ms.asc())
        )
        async with self._database.session() as session:
            result = await session.execute(stmt)
            records = result.scalars().all()
        return [Line(start_time_ms=record.start_time_ms, words=record.words) for record in records]

    async def _fetch_remote(self, track_id: str) -> List[Line]:
        headers = {"App-Platform": "WebPlayer"}
        if self._access_token:
            headers["Authorization"] = f"Bearer {self._access_token}"
        response = await self._client.get(
            f"{self._base_url}/{track_id}",
            params={"format": "json", "vocalRemoval": "false"},
            headers=headers,
        )
        if response.status_code == 404:
            logger.warning("Lyric provider has no lyrics for track {}", track_id)
            raise LyricsUnavailable(track_id, "lyrics not found")
        response.raise_for_status()

        lines = parse_provider_lines(response.json())
        if not lines:
            raise LyricsUnavailable(track_id, "no lyric lines")
        # The provider reports unsynced lyrics with every timestamp at zero.
        if all(line.start_time_ms == 0 for line in lines):
            logger.warning("Lyrics for track {} are not synced", track_id)
            raise LyricsUnavailable(track_id, "lyrics are not synced")
        return lines

    async def _store(self, track_id: str, lines: List[Line]) -> None:
        async with self._database.session() as session:
            session.add_all(
                LyricRecord(
                    words=line.words,
                    start_time_ms=line.start_time_ms,
                    track_id=track_id,
                )
                for line in lines
            )
            await session.commit()


def parse_provider_lines(payload: Any) -> List[Line]:
    """Extract timed, non-instrumental lines from a provider payload."""
    try:
        raw_lines = payload["lyrics"]["lines"]
    except (KeyError, TypeError) as exc:
        raise ValueError("unexpected lyric payload shape") from exc

    lines: List[Line] = []
    for raw in raw_lines:
        words = raw.get("words")
        if not words or words == INSTRUMENTAL_MARKER:
            continue
        lines.append(Line(start_time_ms=int(raw.get("startTimeMs", 0)), words=words))
    lines.sort(key=lambda line: line.start_time_ms)
    return lines
