"""Dataclasses shared across audio helpers."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import List

import numpy as np


@dataclass(slots=True)
class CaptureSession:
    """State of one recording, from start until the capture stops."""

    sample_rate: int
    chunks: List[bytes] = field(default_factory=list)
    recording: bool = True
    last_active: float = field(default_factory=time.monotonic)

    def append(self, chunk: bytes) -> None:
        if not self.recording:
            return
        self.chunks.append(chunk)
        self.last_active = time.monotonic()

    def close(self) -> None:
        self.recording = False

    def pcm(self) -> np.ndarray:
        if not self.chunks:
            return np.array([], dtype=np.int16)
        return np.frombuffer(b"".join(self.chunks), dtype="<i2")

    @property
    def duration(self) -> float:
        return sum(len(chunk) for chunk in self.chunks) / 2 / float(self.sample_rate)
