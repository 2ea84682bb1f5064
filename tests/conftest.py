"""Pytest configuration helpers and in-process pipeline fakes."""

from __future__ import annotations

import asyncio
import math
import sys
from pathlib import Path

import numpy as np
import pytest


def _ensure_repo_on_path() -> None:
    """Allow tests to import from repo modules without setting PYTHONPATH."""
    repo_root = Path(__file__).resolve().parents[1]
    path_str = str(repo_root)
    if path_str not in sys.path:
        sys.path.insert(0, path_str)


_ensure_repo_on_path()

from src.api.errors import AudioDecodeError, GenerationError  # noqa: E402
from src.api.services.audio_normalizer import unwrap_wav, wrap_wav  # noqa: E402
from src.api.services.pipeline import PipelineOrchestrator  # noqa: E402
from src.api.services.synthesis import ArtifactStore  # noqa: E402
from src.api.services.types import ProcessedAudio  # noqa: E402


def sine_pcm(duration_s: float = 0.5, sample_rate: int = 16000, amplitude: int = 12000) -> np.ndarray:
    t = np.arange(int(duration_s * sample_rate))
    waveform = np.sin(2 * math.pi * 220 * t / sample_rate)
    return (waveform * amplitude).astype(np.int16)


class WavNormalizer:
    """Decodes WAV captures in-process so tests need no ffmpeg."""

    def __init__(self) -> None:
        self.calls = 0

    async def normalize(self, blob, container_hint=None):
        self.calls += 1
        if not blob:
            raise AudioDecodeError("no audio data received")
        pcm, sample_rate = unwrap_wav(blob)
        return ProcessedAudio(pcm=pcm, sample_rate=sample_rate)


class FakeTranscriber:
    def __init__(self, text: str = "hello there", error: Exception | None = None, delay: float = 0.0) -> None:
        self.text = text
        self.error = error
        self.delay = delay
        self.calls: list[tuple[int, int]] = []

    async def transcribe(self, pcm: bytes, sample_rate: int) -> str:
        self.calls.append((len(pcm), sample_rate))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.text


class FakeGenerator:
    def __init__(
        self,
        fragments=("Hi", " there", "!"),
        *,
        fail_after: int | None = None,
        error: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self.fragments = list(fragments)
        self.fail_after = fail_after
        self.error = error
        self.delay = delay
        self.prompts: list[str] = []

    async def generate(self, text: str) -> str:
        self.prompts.append(text)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return "".join(self.fragments)

    async def stream(self, text: str):
        self.prompts.append(text)
        for idx, fragment in enumerate(self.fragments):
            if self.fail_after is not None and idx == self.fail_after:
                raise self.error or GenerationError("model crashed mid-stream")
            if self.delay:
                await asyncio.sleep(self.delay)
            else:
                await asyncio.sleep(0)
            yield fragment


class FakeSynthesizer:
    media_type = "audio/mpeg"
    extension = "mp3"

    def __init__(self, audio: bytes = b"ID3fake", error: Exception | None = None) -> None:
        self.audio = audio
        self.error = error
        self.texts: list[str] = []

    async def synthesize(self, text: str) -> bytes:
        self.texts.append(text)
        if self.error:
            raise self.error
        return self.audio

    async def stream(self, text: str):
        self.texts.append(text)
        if self.error:
            raise self.error
        half = len(self.audio) // 2
        yield self.audio[:half]
        yield self.audio[half:]


@pytest.fixture()
def tone_wav() -> bytes:
    return wrap_wav(sine_pcm().tobytes(), 16000)


@pytest.fixture()
def make_pipeline(tmp_path):
    def _factory(
        *,
        normalizer=None,
        transcriber=None,
        generator=None,
        synthesizer=None,
        skip_empty_transcript: bool = False,
    ) -> PipelineOrchestrator:
        return PipelineOrchestrator(
            normalizer or WavNormalizer(),
            transcriber or FakeTranscriber(),
            generator or FakeGenerator(),
            synthesizer or FakeSynthesizer(),
            ArtifactStore(tmp_path / "audio", url_prefix="/audio", retention_sec=0),
            skip_empty_transcript=skip_empty_transcript,
            queue_size=8,
        )

    return _factory
