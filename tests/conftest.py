from __future__ import annotations

import random
from pathlib import Path

import pytest
import pytest_asyncio

from literal_worker.services.cache import DedupCache, ImageBlobStore
from literal_worker.services.database import Database


@pytest_asyncio.fixture
async def database(tmp_path: Path):
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await db.init()
    yield db
    await db.close()


@pytest.fixture
def blobs(tmp_path: Path) -> ImageBlobStore:
    return ImageBlobStore(tmp_path / "images")


@pytest.fixture
def cache(database: Database, blobs: ImageBlobStore) -> DedupCache:
    return DedupCache(database, blobs, rng=random.Random(7))
