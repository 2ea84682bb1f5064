"""Direct text-to-speech proxy using the synthesizer's streaming variant."""

from __future__ import annotations

import logging
from typing import Callable

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, StreamingResponse

from ..errors import ConfigurationError, SynthesisError
from ..schemas import TTSStreamRequest
from ..services.adapters import Synthesizer
from ..services.pipeline import get_synthesizer_for
from ..settings import APISettings, get_settings

LOGGER = logging.getLogger("echoloop.api")

router = APIRouter(prefix="/v1", tags=["tts"])


def get_synthesizer_factory(
    settings: APISettings = Depends(get_settings),
) -> Callable[[], Synthesizer]:
    # resolved inside the route so a missing key maps to this route's error body
    return lambda: get_synthesizer_for(settings)


@router.post("/tts-stream")
async def tts_stream(
    payload: TTSStreamRequest,
    synthesizer_factory: Callable[[], Synthesizer] = Depends(get_synthesizer_factory),
):
    if not payload.text:
        return JSONResponse({"error": "Missing text parameter"}, status_code=400)

    try:
        synthesizer = synthesizer_factory()
    except ConfigurationError as exc:
        LOGGER.error("tts-stream misconfigured: %s", exc)
        return JSONResponse({"error": str(exc)}, status_code=500)
    if payload.voice_id and hasattr(synthesizer, "with_voice"):
        synthesizer = synthesizer.with_voice(payload.voice_id)

    chunks = synthesizer.stream(payload.text)
    # pull the first chunk so vendor errors still get a JSON status
    try:
        first = await anext(chunks)
    except StopAsyncIteration:
        first = b""
    except SynthesisError as exc:
        return JSONResponse({"error": str(exc)}, status_code=exc.status_code or 502)

    async def body():
        if first:
            yield first
        async for chunk in chunks:
            yield chunk

    return StreamingResponse(body(), media_type=synthesizer.media_type)
