from __future__ import annotations

import re
from typing import cast

from fastapi import APIRouter, HTTPException, Request
from loguru import logger

from ..services.exceptions import LyricsUnavailable
from .jobs import JobManager
from .models import GenerateResponse, JobSnapshot
from .settings import Settings

router = APIRouter()

TRACK_ID_PATTERN = re.compile(r"[A-Za-z0-9]{1,30}")


def get_job_manager(request: Request) -> JobManager:
    return cast(JobManager, request.app.state.job_manager)


@router.get("/health")
async def health(request: Request) -> dict[str, object]:
    settings = cast(Settings, request.app.state.settings)
    manager = get_job_manager(request)
    return {
        "status": "ok",
        "image_gen_url": settings.image_gen_url,
        "image_root": str(settings.image_dir),
        "active_jobs": manager.job_count,
        "waiting_jobs": manager.waiting_count,
    }


@router.get(
    "/generate/{track_id}",
    response_model=GenerateResponse,
    response_model_by_alias=True,
)
async def generate(track_id: str, request: Request) -> GenerateResponse:
    if not TRACK_ID_PATTERN.fullmatch(track_id):
        raise HTTPException(status_code=400, detail="invalid track id")
    manager = get_job_manager(request)
    try:
        job_id = await manager.submit(track_id)
    except LyricsUnavailable as exc:
        raise HTTPException(status_code=422, detail=exc.reason) from exc
    except Exception as exc:  # noqa: BLE001
        logger.exception("generation request for track {} failed", track_id)
        raise HTTPException(status_code=500, detail="generation failed") from exc
    return GenerateResponse(generation_id=job_id)


@router.get(
    "/poll/{generation_id}",
    response_model=JobSnapshot,
    response_model_by_alias=True,
    response_model_exclude_none=True,
)
async def poll(generation_id: str, request: Request) -> JobSnapshot:
    manager = get_job_manager(request)
    snapshot = await manager.poll(generation_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="generation not found")
    return snapshot
