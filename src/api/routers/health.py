"""Liveness endpoint."""

from __future__ import annotations

import shutil
from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from ..schemas import HealthResponse
from ..settings import APISettings, get_settings

router = APIRouter(tags=["health"])


@router.get("/healthz", response_model=HealthResponse)
async def healthz(settings: APISettings = Depends(get_settings)) -> HealthResponse:
    ffmpeg = "ok" if shutil.which(settings.ffmpeg_path) else "missing"
    return HealthResponse(
        ok=ffmpeg == "ok",
        ffmpeg=ffmpeg,
        backends={
            "transcriber": settings.transcriber_backend,
            "generator": settings.generator_backend,
            "synthesizer": settings.synthesizer_backend,
        },
        timestamp=datetime.now(timezone.utc),
    )
