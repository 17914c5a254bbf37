"""
CLI entry point to run a one-off generation for a track through the job manager.

Example:
    python -m literal_worker.generate --track-id 4uLU6hMCjMI75M1A2tKUQC
"""

from __future__ import annotations

import argparse
import asyncio
from pathlib import Path
from typing import Optional

from .app.jobs import JobManager
from .app.models import JobState
from .app.settings import Settings
from .services.cache import DedupCache, ImageBlobStore
from .services.database import Database
from .services.generator import ImageGeneratorClient
from .services.lyrics import LyricsService
from .services.orchestrator import ImageOrchestrator
from .services.throttle import RateThrottle

POLL_INTERVAL_SECONDS = 0.5


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate lyric images for a track.")
    parser.add_argument("--track-id", required=True, help="Track to generate images for.")
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        help="Override data directory (defaults to worker settings).",
    )
    parser.add_argument(
        "--image-gen-url",
        default=None,
        help="Override image generator endpoint (defaults to worker settings).",
    )
    return parser.parse_args()


async def _run(
    track_id: str,
    *,
    data_dir: Optional[Path],
    image_gen_url: Optional[str],
) -> None:
    settings_kwargs: dict[str, object] = {}
    if data_dir is not None:
        settings_kwargs["data_root"] = data_dir
    if image_gen_url is not None:
        settings_kwargs["image_gen_url"] = image_gen_url

    settings = Settings(**settings_kwargs)
    settings.ensure_directories()

    database = Database(settings.database_dsn)
    await database.init()
    cache = DedupCache(database, ImageBlobStore(settings.image_dir))
    lyrics = LyricsService(settings, database)
    generator = ImageGeneratorClient(settings)
    throttle = RateThrottle(settings.throttle_batch_size, settings.throttle_interval_seconds)
    manager = JobManager(
        ImageOrchestrator(cache, generator, throttle),
        lyrics,
        # The window must stay well above the poll interval below.
        timeout_seconds=max(settings.generation_timeout_seconds, POLL_INTERVAL_SECONDS * 10),
    )

    try:
        job_id = await manager.submit(track_id)
        print(f"job_id        : {job_id}")
        while True:
            snapshot = await manager.poll(job_id)
            if snapshot is None:
                print("status        : reclaimed")
                return
            if snapshot.status in {JobState.DONE, JobState.ERROR, JobState.CANCELLED}:
                break
            await asyncio.sleep(POLL_INTERVAL_SECONDS)

        print(f"status        : {snapshot.status.value}")
        if snapshot.lyrics is not None:
            distinct = len({entry.image_uri for entry in snapshot.lyrics})
            print(f"lines         : {len(snapshot.lyrics)}")
            print(f"images        : {distinct}")
    finally:
        await manager.shutdown()
        await lyrics.close()
        await generator.close()
        await database.close()


def main() -> None:
    args = _parse_args()
    asyncio.run(
        _run(
            args.track_id,
            data_dir=args.data_dir,
            image_gen_url=args.image_gen_url,
        )
    )


if __name__ == "__main__":
    main()
