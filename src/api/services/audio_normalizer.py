"""Transcode captured audio blobs into 16 kHz mono PCM via ffmpeg."""

from __future__ import annotations

import asyncio
import io
import logging
import shutil
import tempfile
from pathlib import Path
from typing import Tuple

import numpy as np
import soundfile as sf

from ..errors import AudioDecodeError
from .types import ProcessedAudio

LOGGER = logging.getLogger("echoloop.normalizer")

TARGET_SAMPLE_RATE = 16000

_CONTAINER_SUFFIXES = {
    "audio/webm": ".webm",
    "video/webm": ".webm",
    "audio/ogg": ".ogg",
    "audio/wav": ".wav",
    "audio/x-wav": ".wav",
    "audio/wave": ".wav",
    "audio/flac": ".flac",
    "audio/mpeg": ".mp3",
    "audio/mp4": ".m4a",
    "audio/aac": ".aac",
}


def suffix_for(container_hint: str | None) -> str:
    """Pick a temp-file suffix from a mime type or filename hint."""
    if not container_hint:
        return ".bin"
    hint = container_hint.split(";")[0].strip().lower()
    if hint in _CONTAINER_SUFFIXES:
        return _CONTAINER_SUFFIXES[hint]
    suffix = Path(hint).suffix
    if suffix and len(suffix) <= 6:
        return suffix
    return ".bin"


def wrap_wav(pcm: bytes, sample_rate: int) -> bytes:
    """Put a WAV envelope around raw mono PCM16 samples."""
    samples = np.frombuffer(pcm, dtype="<i2")
    buffer = io.BytesIO()
    sf.write(buffer, samples, sample_rate, format="WAV", subtype="PCM_16")
    return buffer.getvalue()


def unwrap_wav(data: bytes) -> Tuple[bytes, int]:
    """Return ``(pcm, sample_rate)`` from a mono PCM16 WAV payload."""
    samples, sample_rate = sf.read(io.BytesIO(data), dtype="int16", always_2d=False)
    if samples.ndim > 1:
        samples = samples[:, 0]
    return samples.astype("<i2", copy=False).tobytes(), int(sample_rate)


class AudioNormalizer:
    """Converts arbitrary browser/microphone captures into :class:`ProcessedAudio`.

    The blob is written to a private temp directory, transcoded by ffmpeg to
    16 kHz mono ``pcm_s16le`` WAV, read back and the directory removed on
    every exit path. Any failure raises :class:`AudioDecodeError` and no
    partial buffer is returned.
    """

    def __init__(
        self,
        *,
        ffmpeg_path: str = "ffmpeg",
        sample_rate: int = TARGET_SAMPLE_RATE,
        tmp_dir: str | None = None,
        timeout: float | None = 30.0,
    ) -> None:
        self.ffmpeg_path = ffmpeg_path
        self.sample_rate = sample_rate
        self.tmp_dir = tmp_dir
        self.timeout = timeout

    def available(self) -> bool:
        return shutil.which(self.ffmpeg_path) is not None

    async def normalize(self, blob: bytes | None, container_hint: str | None = None) -> ProcessedAudio:
        if not blob:
            raise AudioDecodeError("no audio data received")

        if self.tmp_dir:
            Path(self.tmp_dir).mkdir(parents=True, exist_ok=True)
        workdir = Path(tempfile.mkdtemp(prefix="echoloop-", dir=self.tmp_dir))
        try:
            source = workdir / f"capture{suffix_for(container_hint)}"
            target = workdir / "normalized.wav"
            source.write_bytes(blob)
            await self._transcode(source, target)
            return self._read_output(target)
        finally:
            shutil.rmtree(workdir, ignore_errors=True)

    async def _transcode(self, source: Path, target: Path) -> None:
        cmd = [
            self.ffmpeg_path,
            "-hide_banner",
            "-loglevel",
            "error",
            "-nostdin",
            "-y",
            "-i",
            str(source),
            "-ac",
            "1",
            "-ar",
            str(self.sample_rate),
            "-acodec",
            "pcm_s16le",
            "-f",
            "wav",
            str(target),
        ]
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise AudioDecodeError(f"transcoder not found: {self.ffmpeg_path}") from exc

        try:
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise AudioDecodeError(f"transcoder timed out after {self.timeout}s") from exc
        finally:
            if process.returncode is None:
                process.kill()
                await process.wait()

        if process.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip().splitlines()
            reason = detail[-1] if detail else f"exit code {process.returncode}"
            LOGGER.warning("ffmpeg failed for %s: %s", source.name, reason)
            raise AudioDecodeError(f"transcoding failed: {reason}")

    def _read_output(self, target: Path) -> ProcessedAudio:
        try:
            pcm, sample_rate = unwrap_wav(target.read_bytes())
        except (OSError, RuntimeError, sf.LibsndfileError) as exc:
            raise AudioDecodeError(f"unreadable transcoder output: {exc}") from exc
        if not pcm:
            raise AudioDecodeError("capture contained no audio samples")
        if sample_rate != self.sample_rate:
            raise AudioDecodeError(
                f"transcoder produced {sample_rate} Hz, expected {self.sample_rate} Hz"
            )
        LOGGER.debug("normalized capture to %d samples @ %d Hz", len(pcm) // 2, sample_rate)
        return ProcessedAudio(pcm=pcm, sample_rate=sample_rate, mime_type="audio/wav")
