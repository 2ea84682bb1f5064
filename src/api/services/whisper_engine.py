"""Transcription adapters: lazy faster-whisper loader (with mock mode) and OpenAI."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Iterable, Optional

import numpy as np
from openai import AsyncOpenAI

from ..errors import ConfigurationError, TranscriptionError
from ..settings import APISettings
from .audio_normalizer import wrap_wav

LOGGER = logging.getLogger("echoloop.whisper")


class WhisperTranscriber:
    """Thin wrapper that loads Whisper on demand, with an explicit mock mode."""

    def __init__(self, settings: APISettings) -> None:
        self.settings = settings
        self._lock = threading.Lock()
        self._model = None
        self._mock = settings.whisper_mock_transcriber
        if self._mock:
            LOGGER.warning(
                "Whisper mock mode enabled (set WHISPER_USE_MOCK=0 and configure "
                "WHISPER_MODEL to enable real transcription)."
            )

    def _load_model(self):
        if self._model is None:
            with self._lock:
                if self._model is None:
                    from faster_whisper import WhisperModel

                    try:
                        self._model = WhisperModel(
                            self.settings.whisper_model,
                            device=self.settings.whisper_device,
                            compute_type=self.settings.whisper_compute_type,
                        )
                    except Exception as exc:  # pragma: no cover - hardware/env dep
                        LOGGER.error(
                            "Failed to load Whisper model '%s': %s",
                            self.settings.whisper_model,
                            exc,
                        )
                        raise
        return self._model

    async def transcribe(self, pcm: bytes, sample_rate: int) -> str:
        audio = np.frombuffer(pcm, dtype="<i2").astype(np.float32) / 32768.0
        if self._mock:
            return f"[mock transcript {len(audio)} samples]"
        if sample_rate != 16000:
            raise TranscriptionError(f"whisper expects 16000 Hz input, got {sample_rate} Hz")
        try:
            return await asyncio.to_thread(self._transcribe_sync, audio)
        except TranscriptionError:
            raise
        except Exception as exc:
            raise TranscriptionError(f"speech recognition failed: {exc}") from exc

    def _transcribe_sync(self, audio: np.ndarray) -> str:
        model = self._load_model()
        segments, _info = model.transcribe(
            audio=audio,
            language=self.settings.transcription_language,
            beam_size=5,
            vad_filter=True,
        )
        return _join_segments(segments)


def _join_segments(segments: Iterable) -> str:
    pieces = [segment.text.strip() for segment in segments]
    return " ".join(piece for piece in pieces if piece).strip()


class OpenAITranscriber:
    """Sends the normalized turn to the OpenAI transcription endpoint."""

    def __init__(self, settings: APISettings, client: Optional[AsyncOpenAI] = None) -> None:
        if client is None:
            if not settings.openai_api_key:
                raise ConfigurationError("TRANSCRIBER_BACKEND=openai but OPENAI_API_KEY is missing")
            client = AsyncOpenAI(api_key=settings.openai_api_key)
        self._client = client
        self.model = settings.openai_whisper_model
        self.language = settings.transcription_language

    async def transcribe(self, pcm: bytes, sample_rate: int) -> str:
        payload = wrap_wav(pcm, sample_rate)
        kwargs = {"model": self.model, "file": ("turn.wav", payload, "audio/wav")}
        if self.language:
            kwargs["language"] = self.language
        try:
            transcript = await self._client.audio.transcriptions.create(**kwargs)
        except Exception as exc:
            raise TranscriptionError(f"speech recognition failed: {exc}") from exc
        return (transcript.text or "").strip()

    async def aclose(self) -> None:
        await self._client.close()


def build_transcriber(settings: APISettings):
    backend = settings.transcriber_backend.lower()
    if backend == "openai":
        return OpenAITranscriber(settings)
    if backend == "mock":
        return WhisperTranscriber(settings.model_copy(update={"whisper_mock_transcriber": True}))
    if backend == "whisper":
        return WhisperTranscriber(settings)
    raise ConfigurationError(f"Unknown TRANSCRIBER_BACKEND '{settings.transcriber_backend}'")
