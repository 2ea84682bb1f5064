"""Synthesis adapters (ElevenLabs, PlayHT, mock) and the artifact store."""

from __future__ import annotations

import asyncio
import io
import logging
import time
import uuid
from pathlib import Path
from typing import AsyncIterator, Optional

import httpx
import numpy as np
import soundfile as sf

from ..errors import ConfigurationError, SynthesisError
from ..settings import APISettings
from .types import SynthesisArtifact

LOGGER = logging.getLogger("echoloop.synthesis")


class _HTTPSynthesizer:
    media_type = "audio/mpeg"
    extension = "mp3"
    vendor = "tts"

    def __init__(self, *, timeout: float = 60.0, client: Optional[httpx.AsyncClient] = None) -> None:
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def _request(self, text: str) -> tuple[str, dict, dict]:  # pragma: no cover - overridden
        raise NotImplementedError

    async def synthesize(self, text: str) -> bytes:
        buffer = bytearray()
        async for chunk in self.stream(text):
            buffer.extend(chunk)
        if not buffer:
            raise SynthesisError(f"{self.vendor} returned no audio")
        return bytes(buffer)

    async def stream(self, text: str) -> AsyncIterator[bytes]:
        url, headers, body = self._request(text)
        try:
            async with self._client.stream("POST", url, headers=headers, json=body) as resp:
                if resp.status_code >= 400:
                    detail = (await resp.aread()).decode("utf-8", errors="replace")
                    raise SynthesisError(
                        f"{self.vendor} TTS error: {resp.status_code} - {detail[:200]}",
                        status_code=resp.status_code,
                    )
                async for chunk in resp.aiter_bytes():
                    if chunk:
                        yield chunk
        except SynthesisError:
            raise
        except httpx.HTTPError as exc:
            raise SynthesisError(f"speech synthesis failed: {exc}") from exc

    async def aclose(self) -> None:
        await self._client.aclose()


class ElevenLabsSynthesizer(_HTTPSynthesizer):
    vendor = "ElevenLabs"
    base_url = "https://api.elevenlabs.io/v1/text-to-speech"

    def __init__(
        self,
        api_key: str,
        voice_id: str,
        *,
        model_id: str = "eleven_turbo_v2",
        output_format: str = "mp3_44100_128",
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        super().__init__(timeout=timeout, client=client)
        self.api_key = api_key
        self.voice_id = voice_id
        self.model_id = model_id
        self.output_format = output_format

    def with_voice(self, voice_id: str | None) -> "ElevenLabsSynthesizer":
        if not voice_id or voice_id == self.voice_id:
            return self
        return ElevenLabsSynthesizer(
            self.api_key,
            voice_id,
            model_id=self.model_id,
            output_format=self.output_format,
            client=self._client,
        )

    def _request(self, text: str) -> tuple[str, dict, dict]:
        body = {
            "text": text,
            "model_id": self.model_id,
            "output_format": self.output_format,
            "voice_settings": {
                "stability": 0.5,
                "similarity_boost": 0.5,
                "use_speaker_boost": True,
            },
        }
        headers = {"Content-Type": "application/json", "xi-api-key": self.api_key}
        return f"{self.base_url}/{self.voice_id}/stream", headers, body


class PlayHTSynthesizer(_HTTPSynthesizer):
    vendor = "PlayHT"
    url = "https://api.play.ht/api/v2/tts/stream"

    def __init__(
        self,
        api_key: str,
        user_id: str,
        voice: str,
        *,
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        super().__init__(timeout=timeout, client=client)
        self.api_key = api_key
        self.user_id = user_id
        self.voice = voice

    def _request(self, text: str) -> tuple[str, dict, dict]:
        body = {
            "text": text,
            "voice": self.voice,
            "quality": "draft",
            "output_format": "mp3",
            "voice_engine": "PlayHT2.0",
            "sample_rate": 24000,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "X-USER-ID": self.user_id,
            "Content-Type": "application/json",
            "Accept": "audio/mpeg",
        }
        return self.url, headers, body


class MockSynthesizer:
    """Renders a short tone per word as WAV so the pipeline runs offline."""

    media_type = "audio/wav"
    extension = "wav"

    def __init__(self, sample_rate: int = 16000, chunk_size: int = 4096) -> None:
        self.sample_rate = sample_rate
        self.chunk_size = chunk_size

    async def synthesize(self, text: str) -> bytes:
        words = max(1, len(text.split()))
        duration = min(10.0, 0.15 * words)
        t = np.arange(int(duration * self.sample_rate)) / self.sample_rate
        tone = (np.sin(2 * np.pi * 440.0 * t) * 0.2).astype(np.float32)
        buffer = io.BytesIO()
        sf.write(buffer, tone, self.sample_rate, format="WAV", subtype="PCM_16")
        return buffer.getvalue()

    async def stream(self, text: str) -> AsyncIterator[bytes]:
        data = await self.synthesize(text)
        for offset in range(0, len(data), self.chunk_size):
            yield data[offset : offset + self.chunk_size]


class ArtifactStore:
    """Writes synthesized audio to disk and hands out URLs for it.

    Files older than ``retention_sec`` are pruned whenever a new artifact is
    saved; ``retention_sec <= 0`` keeps everything.
    """

    def __init__(self, directory: str | Path, url_prefix: str = "/audio", retention_sec: float = 3600.0) -> None:
        self.directory = Path(directory)
        self.url_prefix = url_prefix.rstrip("/")
        self.retention_sec = retention_sec

    async def save(self, data: bytes, *, extension: str, text: str, media_type: str = "audio/mpeg") -> SynthesisArtifact:
        filename = f"tts-{uuid.uuid4()}.{extension}"
        path = self.directory / filename
        await asyncio.to_thread(self._write, path, data)
        pruned = await asyncio.to_thread(self.prune)
        if pruned:
            LOGGER.info("pruned %d expired audio artifacts", pruned)
        return SynthesisArtifact(
            url=f"{self.url_prefix}/{filename}", text=text, path=str(path), media_type=media_type
        )

    def _write(self, path: Path, data: bytes) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    def prune(self, now: float | None = None) -> int:
        if self.retention_sec <= 0 or not self.directory.exists():
            return 0
        cutoff = (now if now is not None else time.time()) - self.retention_sec
        removed = 0
        for path in self.directory.glob("tts-*"):
            try:
                if path.stat().st_mtime < cutoff:
                    path.unlink()
                    removed += 1
            except FileNotFoundError:
                continue
        return removed


def build_synthesizer(settings: APISettings):
    backend = settings.synthesizer_backend.lower()
    if backend == "elevenlabs":
        if not settings.elevenlabs_api_key:
            raise ConfigurationError("SYNTHESIZER_BACKEND=elevenlabs but ELEVENLABS_API_KEY is missing")
        return ElevenLabsSynthesizer(
            settings.elevenlabs_api_key,
            settings.elevenlabs_voice_id,
            model_id=settings.elevenlabs_model_id,
            output_format=settings.elevenlabs_output_format,
            timeout=settings.synthesis_timeout_sec,
        )
    if backend == "playht":
        if not settings.playht_api_key or not settings.playht_user_id:
            raise ConfigurationError(
                "SYNTHESIZER_BACKEND=playht but PLAYHT_API_KEY / PLAYHT_USER_ID are missing"
            )
        return PlayHTSynthesizer(
            settings.playht_api_key,
            settings.playht_user_id,
            settings.playht_voice,
            timeout=settings.synthesis_timeout_sec,
        )
    if backend == "mock":
        return MockSynthesizer()
    raise ConfigurationError(f"Unknown SYNTHESIZER_BACKEND '{settings.synthesizer_backend}'")
