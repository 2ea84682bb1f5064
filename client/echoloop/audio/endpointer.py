"""Energy-based end-of-utterance detection for live recordings."""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional

import numpy as np

SILENCE_THRESHOLD = 5.0
SILENCE_WINDOW_MS = 1500
MIDPOINT = 128
TICK_INTERVAL_MS = 16


def average_deviation(frame: np.ndarray, midpoint: float = MIDPOINT) -> float:
    """Mean absolute distance of the samples from ``midpoint``."""
    data = np.asarray(frame)
    if data.size == 0:
        return 0.0
    return float(np.mean(np.abs(data.astype(np.float32) - midpoint)))


def to_byte_frame(pcm16: np.ndarray) -> np.ndarray:
    """Map signed 16-bit samples onto the unsigned 8-bit scale centred at 128."""
    data = np.asarray(pcm16, dtype=np.int16).astype(np.int32)
    return ((data >> 8) + MIDPOINT).astype(np.uint8)


class Endpointer:
    """Decides when a recording should stop after sustained silence.

    Each frame below ``threshold`` arms a stop deadline ``window_ms`` after
    the first silent frame of the run; any frame at or above the threshold
    clears the deadline completely. :meth:`update` returns ``True`` exactly
    once, on the first frame observed at or after the deadline.
    """

    def __init__(
        self,
        threshold: float = SILENCE_THRESHOLD,
        window_ms: int = SILENCE_WINDOW_MS,
        *,
        midpoint: float = MIDPOINT,
        require_speech: bool = False,
    ) -> None:
        self.threshold = float(threshold)
        self.window_ms = int(window_ms)
        self.midpoint = midpoint
        self.require_speech = require_speech
        self.reset()

    def reset(self) -> None:
        self._deadline: Optional[float] = None
        self._heard_speech = False
        self._fired = False

    @property
    def pending(self) -> bool:
        return self._deadline is not None

    @property
    def fired(self) -> bool:
        return self._fired

    def cancel(self) -> None:
        """Drop a pending stop without firing it."""
        self._deadline = None

    def update(self, frame: np.ndarray, now: float) -> bool:
        """Feed one frame sampled at ``now`` (seconds); ``True`` means stop."""
        if self._fired:
            return False
        if average_deviation(frame, self.midpoint) >= self.threshold:
            self._heard_speech = True
            self._deadline = None
            return False
        if self.require_speech and not self._heard_speech:
            return False
        if self._deadline is None:
            self._deadline = now + self.window_ms / 1000.0
            return False
        if now >= self._deadline:
            self._deadline = None
            self._fired = True
            return True
        return False


class SilenceMonitor:
    """Polls a frame source at a fixed tick and calls ``on_stop`` once.

    ``stop()`` cancels any pending stop and ends the polling thread, so a
    manually stopped recording never receives a late ``on_stop``.
    """

    def __init__(
        self,
        frame_source: Callable[[], Optional[np.ndarray]],
        on_stop: Callable[[], None],
        *,
        endpointer: Optional[Endpointer] = None,
        tick_interval_ms: int = TICK_INTERVAL_MS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.frame_source = frame_source
        self.on_stop = on_stop
        self.endpointer = endpointer or Endpointer()
        self.tick_interval = tick_interval_ms / 1000.0
        self.clock = clock
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def start(self) -> None:
        if self.running:
            return
        self.endpointer.reset()
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        self.endpointer.cancel()
        thread = self._thread
        if thread and thread is not threading.current_thread():
            thread.join(timeout=2)

    def tick(self) -> bool:
        """Run one check; returns ``True`` when it triggered ``on_stop``."""
        if self._stop.is_set():
            return False
        frame = self.frame_source()
        if frame is None:
            return False
        if self.endpointer.update(frame, self.clock()):
            self._stop.set()
            self.on_stop()
            return True
        return False

    def _loop(self) -> None:
        while not self._stop.is_set():
            self.tick()
            self._stop.wait(self.tick_interval)
