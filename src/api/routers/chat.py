"""Voice turn endpoint: audio in, answer text and speech out."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import JSONResponse, StreamingResponse

from ..schemas import ChatResponse, ErrorResponse
from ..services.frames import encode_sse
from ..services.pipeline import PipelineOrchestrator, get_pipeline_for
from ..services.types import PipelineRequest
from ..settings import APISettings, get_settings

LOGGER = logging.getLogger("echoloop.api")

router = APIRouter(prefix="/v1", tags=["chat"])


def get_pipeline(settings: APISettings = Depends(get_settings)) -> PipelineOrchestrator:
    return get_pipeline_for(settings)


def _wants_stream(value: str | None) -> bool:
    return (value or "").strip().lower() in {"1", "true", "yes"}


async def _with_deadline(coro, timeout: float | None):
    if not timeout:
        return await coro
    return await asyncio.wait_for(coro, timeout=timeout)


def _timeout_response(timeout: float | None) -> JSONResponse:
    body = ErrorResponse(kind="timeout", message=f"timeout: request exceeded {timeout}s")
    return JSONResponse(status_code=504, content=body.model_dump())


@router.post(
    "/chat",
    response_model=ChatResponse,
    responses={400: {"model": ErrorResponse}, 502: {"model": ErrorResponse}, 504: {"model": ErrorResponse}},
)
async def chat(
    audio: UploadFile | None = File(None),
    stream: str | None = Form(None),
    settings: APISettings = Depends(get_settings),
    pipeline: PipelineOrchestrator = Depends(get_pipeline),
):
    blob = await audio.read() if audio is not None else None
    hint = None
    if audio is not None:
        hint = audio.filename if audio.content_type in (None, "application/octet-stream") else audio.content_type
    request = PipelineRequest(audio=blob, container_hint=hint, stream=_wants_stream(stream))
    LOGGER.info(
        "request %s received (%d bytes, stream=%s)",
        request.request_id,
        len(blob or b""),
        request.stream,
    )

    if not request.stream:
        try:
            result = await _with_deadline(pipeline.run(request), settings.request_timeout_sec)
        except asyncio.TimeoutError:
            return _timeout_response(settings.request_timeout_sec)
        return ChatResponse(
            transcript=result.transcript,
            response_text=result.response_text,
            audio_url=result.artifact.url,
        )

    # decode/transcribe failures are reported before the event stream opens
    try:
        await _with_deadline(pipeline.prepare_stream(request), settings.request_timeout_sec)
    except asyncio.TimeoutError:
        return _timeout_response(settings.request_timeout_sec)
    return StreamingResponse(
        encode_sse(pipeline.stream(request)),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )
