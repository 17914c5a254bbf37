from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from ..services.cache import DedupCache, ImageBlobStore
from ..services.database import Database
from ..services.generator import ImageGeneratorClient
from ..services.lyrics import LyricsService, LyricsSource
from ..services.orchestrator import ImageGenerator, ImageOrchestrator
from ..services.throttle import RateThrottle
from .jobs import JobManager
from .routes import router
from .settings import Settings, get_settings


def create_app(
    settings: Optional[Settings] = None,
    *,
    lyrics: Optional[LyricsSource] = None,
    generator: Optional[ImageGenerator] = None,
) -> FastAPI:
    """Create and configure FastAPI instance."""
    if settings is None:
        settings = get_settings()
    else:
        settings.ensure_directories()

    database = Database(settings.database_dsn)
    cache = DedupCache(database, ImageBlobStore(settings.image_dir))
    lyrics_source = lyrics or LyricsService(settings, database)
    image_generator = generator or ImageGeneratorClient(settings)
    throttle = RateThrottle(settings.throttle_batch_size, settings.throttle_interval_seconds)
    orchestrator = ImageOrchestrator(cache, image_generator, throttle)
    manager = JobManager(
        orchestrator,
        lyrics_source,
        timeout_seconds=settings.generation_timeout_seconds,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await database.init()
        logger.info("Worker ready; image generator at {}", settings.image_gen_url)
        try:
            yield
        finally:
            await manager.shutdown()
            for client in (lyrics_source, image_generator):
                close = getattr(client, "close", None)
                if close is not None:
                    await close()
            await database.close()

    app = FastAPI(title="Literal Worker", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.database = database
    app.state.cache = cache
    app.state.orchestrator = orchestrator
    app.state.job_manager = manager
    if settings.cors_allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_allow_origins,
            allow_methods=["GET"],
            allow_headers=["*"],
        )
    app.include_router(router)
    return app


app = create_app()
