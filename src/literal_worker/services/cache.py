"""Content-addressed image cache keyed by the hash of a lyric phrase."""

from __future__ import annotations

import asyncio
import base64
import hashlib
import random
from pathlib import Path
from typing import Iterable, List, Optional, Sequence
from uuid import uuid4

from sqlalchemy import distinct, func, select

from .database import Database, GenerationRecord


def normalise_image(encoded: str) -> str:
    """Return the canonical single-line base64 form of ``encoded``.

    Generators may wrap their output (MIME style) or pad it with whitespace;
    anything that is not base64 once whitespace is dropped raises ``ValueError``.
    """
    payload = base64.b64decode("".join(encoded.split()), validate=True)
    return base64.b64encode(payload).decode("ascii")


class ImageBlobStore:
    """Stores raw image bytes as one file per image id."""

    def __init__(self, root: Path) -> None:
        self._root = root

    def path_for(self, image_id: str) -> Path:
        return self._root / image_id

    async def write(self, image_id: str, encoded: str) -> None:
        payload = base64.b64decode("".join(encoded.split()), validate=True)
        await asyncio.to_thread(self._write_bytes, self.path_for(image_id), payload)

    async def read(self, image_id: str) -> str:
        payload = await asyncio.to_thread(self.path_for(image_id).read_bytes)
        return base64.b64encode(payload).decode("ascii")

    @staticmethod
    def _write_bytes(path: Path, payload: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(payload)


class DedupCache:
    """Append-only mapping from phrase hashes to stored images.

    Records are never updated or deleted, so concurrent jobs may read and
    insert freely; two inserts for the same hash simply add variety.
    """

    def __init__(
        self,
        database: Database,
        blobs: ImageBlobStore,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._database = database
        self._blobs = blobs
        self._rng = rng or random.Random()

    @staticmethod
    def hash(text: str) -> str:
        return hashlib.md5(text.encode("utf-8")).hexdigest()

    async def count_distinct_present(self, hashes: Iterable[str]) -> int:
        unique = sorted(set(hashes))
        if not unique:
            return 0
        stmt = select(func.count(distinct(GenerationRecord.words_hash))).where(
            GenerationRecord.words_hash.in_(unique)
        )
        async with self._database.session() as session:
            result = await session.execute(stmt)
            return int(result.scalar_one())

    async def records_for(self, words_hash: str) -> List[str]:
        stmt = select(GenerationRecord.id).where(GenerationRecord.words_hash == words_hash)
        async with self._database.session() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def insert(self, image_id: str, words_hash: str) -> None:
        async with self._database.session() as session:
            session.add(GenerationRecord(id=image_id, words_hash=words_hash))
            await session.commit()

    def pick_random(self, records: Sequence[str]) -> str:
        if not records:
            raise ValueError("cannot pick from an empty record set")
        return self._rng.choice(list(records))

    async def store(self, words_hash: str, images: Sequence[str]) -> List[str]:
        """Persist base64 images for ``words_hash`` and return their ids."""
        image_ids = [str(uuid4()) for _ in images]
        await asyncio.gather(
            *(
                self._store_one(image_id, words_hash, image)
                for image_id, image in zip(image_ids, images)
            )
        )
        return image_ids

    async def read(self, image_id: str) -> str:
        return await self._blobs.read(image_id)

    async def _store_one(self, image_id: str, words_hash: str, image: str) -> None:
        # Blob first: a visible record must always have readable bytes.
        await self._blobs.write(image_id, image)
        await self.insert(image_id, words_hash)
