"""Resolves every lyric line of a job to an image, generating only new phrases."""

from __future__ import annotations

import asyncio
from typing import List, Optional, Protocol, Sequence

from loguru import logger

from ..app.models import Line, LyricImage
from .cache import DedupCache, normalise_image
from .exceptions import JobAborted
from .throttle import RateThrottle
from .types import RenderState, RenderToken

IMAGE_URI_PREFIX = "data:image/jpeg;base64,"


class ImageGenerator(Protocol):
    async def generate(self, prompt: str) -> List[str]: ...


class ImageOrchestrator:
    """Coordinates the dedup cache, throttle and generator for one job at a time.

    The orchestrator itself holds no per-job state; everything a job shares
    between its lines lives in a :class:`RenderState` created per call to
    :meth:`render`.
    """

    def __init__(
        self,
        cache: DedupCache,
        generator: ImageGenerator,
        throttle: RateThrottle,
    ) -> None:
        self._cache = cache
        self._generator = generator
        self._throttle = throttle

    @property
    def cache(self) -> DedupCache:
        return self._cache

    async def count_cached(self, lines: Sequence[Line]) -> tuple[int, int]:
        """Return ``(distinct phrases present in the cache, distinct phrases)``."""
        hashes = {self._cache.hash(line.words) for line in lines}
        present = await self._cache.count_distinct_present(hashes)
        return present, len(hashes)

    async def render(
        self, lines: Sequence[Line], token: RenderToken
    ) -> Optional[List[LyricImage]]:
        """Resolve all lines concurrently.

        Returns the images in line order, or ``None`` when the token went
        inactive before every line settled.
        """
        state = RenderState()
        results = await asyncio.gather(
            *(self._resolve_line(line, token, state) for line in lines)
        )
        if not token.is_active() or any(result is None for result in results):
            return None
        return [result for result in results if result is not None]

    async def _resolve_line(
        self, line: Line, token: RenderToken, state: RenderState
    ) -> Optional[LyricImage]:
        if not token.is_active():
            return None
        try:
            encoded = await self._resolve_image(line.words, token, state)
            if encoded is None or not token.is_active():
                return None
            token.advance()
        except Exception as exc:  # noqa: BLE001
            if token.is_active():
                token.fail(exc)
            return None
        return LyricImage(
            image_uri=IMAGE_URI_PREFIX + encoded,
            start_time_ms=line.start_time_ms,
            words=line.words,
        )

    async def _resolve_image(
        self, words: str, token: RenderToken, state: RenderState
    ) -> Optional[str]:
        words_hash = self._cache.hash(words)

        pending = state.pending.get(words_hash)
        records: List[str] = []
        if pending is None:
            records = await self._cache.records_for(words_hash)
            if not token.is_active():
                return None
            # Another line may have started generating this phrase meanwhile.
            pending = state.pending.get(words_hash)

        if pending is not None:
            images = await pending
            return self._cache.pick_random(images)

        if records:
            image_id = self._cache.pick_random(records)
            return await self._cache.read(image_id)

        index = state.next_phrase_index()
        task = asyncio.ensure_future(self._generate_phrase(words, words_hash, index, token))
        state.pending[words_hash] = task
        images = await task
        return self._cache.pick_random(images)

    async def _generate_phrase(
        self, words: str, words_hash: str, index: int, token: RenderToken
    ) -> List[str]:
        await self._throttle.wait(index, token.stopped)
        if not token.is_active():
            raise JobAborted(words)

        logger.info("Generating images for {!r}", words)
        images = [normalise_image(image) for image in await self._generator.generate(words)]
        # Stored even if the job was aborted meanwhile; the work is already paid for.
        await self._cache.store(words_hash, images)
        logger.info("Generated {} images for {!r}", len(images), words)
        return images
