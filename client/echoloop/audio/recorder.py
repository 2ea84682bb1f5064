"""Microphone capture that stops itself after trailing silence."""

from __future__ import annotations

import io
import logging
import threading
from typing import Callable, Optional

import numpy as np
import soundfile as sf

from .endpointer import (
    SILENCE_THRESHOLD,
    SILENCE_WINDOW_MS,
    TICK_INTERVAL_MS,
    Endpointer,
    SilenceMonitor,
    to_byte_frame,
)
from .types import CaptureSession

LOGGER = logging.getLogger("echoloop.client.recorder")


def encode_wav(pcm: np.ndarray, sample_rate: int) -> bytes:
    buffer = io.BytesIO()
    sf.write(buffer, pcm.astype(np.int16, copy=False), sample_rate, format="WAV", subtype="PCM_16")
    return buffer.getvalue()


class AudioRecorder:
    """Captures one turn into a :class:`CaptureSession`.

    The sounddevice callback appends each block to the session and keeps the
    latest block (on the 8-bit analyser scale) for the :class:`SilenceMonitor`.
    Recording ends either on sustained silence or on :meth:`stop`, whichever
    comes first; the session is then encoded to a WAV blob.
    """

    def __init__(
        self,
        *,
        sample_rate: int = 16000,
        block_ms: int = 20,
        silence_threshold: float = SILENCE_THRESHOLD,
        silence_window_ms: int = SILENCE_WINDOW_MS,
        tick_interval_ms: int = TICK_INTERVAL_MS,
        stream_factory: Optional[Callable[..., object]] = None,
    ) -> None:
        self.sample_rate = sample_rate
        self.blocksize = max(1, sample_rate * block_ms // 1000)
        self.endpointer = Endpointer(silence_threshold, silence_window_ms)
        self.tick_interval_ms = tick_interval_ms
        self._stream_factory = stream_factory
        self._stream = None
        self._monitor: SilenceMonitor | None = None
        self._session: CaptureSession | None = None
        self._latest: np.ndarray | None = None
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._blob: bytes | None = None

    @property
    def recording(self) -> bool:
        return bool(self._session and self._session.recording)

    def _open_stream(self):
        if self._stream_factory is not None:
            return self._stream_factory(
                samplerate=self.sample_rate,
                channels=1,
                dtype="int16",
                blocksize=self.blocksize,
                callback=self._on_audio,
            )
        import sounddevice as sd

        return sd.InputStream(
            samplerate=self.sample_rate,
            channels=1,
            dtype="int16",
            blocksize=self.blocksize,
            callback=self._on_audio,
        )

    def start(self) -> CaptureSession:
        with self._lock:
            if self.recording:
                return self._session  # type: ignore[return-value]
            self._done.clear()
            self._blob = None
            self._latest = None
            self._session = CaptureSession(sample_rate=self.sample_rate)
            self._stream = self._open_stream()
            self._stream.start()
        self._monitor = SilenceMonitor(
            self._latest_frame,
            self._on_silence,
            endpointer=self.endpointer,
            tick_interval_ms=self.tick_interval_ms,
        )
        self._monitor.start()
        LOGGER.info("Recording started")
        return self._session

    def stop(self) -> Optional[bytes]:
        """Stop manually; any pending silence stop is cancelled."""
        if self._monitor:
            self._monitor.stop()
        self._finish("manual")
        return self._blob

    def wait(self, timeout: float | None = None) -> Optional[bytes]:
        """Block until the recording has ended and return the WAV blob."""
        if not self._done.wait(timeout):
            return None
        return self._blob

    def record_turn(self, timeout: float | None = None) -> Optional[bytes]:
        self.start()
        blob = self.wait(timeout)
        if not self._done.is_set():
            blob = self.stop()
        return blob

    def _latest_frame(self) -> Optional[np.ndarray]:
        return self._latest

    def _on_silence(self) -> None:
        self._finish("silence")

    def _on_audio(self, indata, frames, time_info, status) -> None:  # noqa: ARG002
        if status:
            LOGGER.debug("input status: %s", status)
        block = np.asarray(indata, dtype=np.int16)
        if block.ndim > 1:
            block = block[:, 0]
        session = self._session
        if session is None or not session.recording:
            return
        session.append(block.tobytes())
        self._latest = to_byte_frame(block)

    def _finish(self, reason: str) -> None:
        with self._lock:
            session = self._session
            if session is None or not session.recording:
                return
            session.close()
            stream, self._stream = self._stream, None
            if stream is not None:
                stream.stop()
                stream.close()
            pcm = session.pcm()
            self._blob = encode_wav(pcm, self.sample_rate) if pcm.size else None
            self._session = None
        LOGGER.info("Recording stopped (%s, %.2fs)", reason, len(pcm) / float(self.sample_rate))
        self._done.set()
