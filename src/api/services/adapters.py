"""Capability interfaces the pipeline depends on.

Concrete vendors live in ``whisper_engine``, ``generation`` and ``synthesis``.
Each adapter raises the matching stage error from :mod:`src.api.errors`.
"""

from __future__ import annotations

from typing import AsyncIterator, Protocol


class Transcriber(Protocol):
    async def transcribe(self, pcm: bytes, sample_rate: int) -> str:  # pragma: no cover - interface only
        ...


class Generator(Protocol):
    async def generate(self, text: str) -> str:  # pragma: no cover - interface only
        ...

    def stream(self, text: str) -> AsyncIterator[str]:  # pragma: no cover - interface only
        """Yield text fragments; exhaustion is the completion marker."""
        ...


class Synthesizer(Protocol):
    media_type: str
    extension: str

    async def synthesize(self, text: str) -> bytes:  # pragma: no cover - interface only
        ...

    def stream(self, text: str) -> AsyncIterator[bytes]:  # pragma: no cover - interface only
        ...
