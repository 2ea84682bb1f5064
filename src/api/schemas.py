"""Pydantic schemas for API contracts."""

from __future__ import annotations

from datetime import datetime
from typing import Dict

from pydantic import BaseModel, Field


class ChatResponse(BaseModel):
    transcript: str
    response_text: str
    audio_url: str | None = None


class ErrorResponse(BaseModel):
    kind: str
    message: str


class TTSStreamRequest(BaseModel):
    text: str | None = None
    voice_id: str | None = Field(default=None, alias="voiceId")

    model_config = {"populate_by_name": True}


class HealthResponse(BaseModel):
    ok: bool
    ffmpeg: str
    backends: Dict[str, str]
    timestamp: datetime
