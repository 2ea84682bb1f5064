"""Frames of the incremental delivery contract and the channel that carries them."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict

DONE_SENTINEL = "[DONE]"


@dataclass(frozen=True, slots=True)
class Frame:
    kind: str
    payload: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def token(cls, content: str) -> "Frame":
        return cls("token", {"content": content})

    @classmethod
    def artifact(cls, url: str, text: str) -> "Frame":
        return cls("artifact", {"url": url, "text": text})

    @classmethod
    def error(cls, stage: str, message: str) -> "Frame":
        return cls("error", {"stage": stage, "message": message})

    @classmethod
    def done(cls) -> "Frame":
        return cls("done")

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind, **self.payload}

    def encode(self) -> str:
        """Server-sent event text for this frame."""
        if self.kind == "done":
            return f"data: {DONE_SENTINEL}\n\n"
        return f"data: {json.dumps(self.to_dict(), ensure_ascii=False)}\n\n"


class ChannelClosed(RuntimeError):
    pass


class FrameChannel:
    """Ordered output channel with one draining reader.

    Producers ``send`` frames; iterating the channel yields them in send
    order and stops after the sentinel. ``close`` enqueues the sentinel once;
    any later ``send`` raises :class:`ChannelClosed`.
    """

    def __init__(self, maxsize: int = 0) -> None:
        self._queue: "asyncio.Queue[Frame]" = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, frame: Frame) -> None:
        if self._closed:
            raise ChannelClosed(f"channel closed, dropping {frame.kind} frame")
        if frame.kind == "done":
            raise ValueError("use close() to terminate the channel")
        await self._queue.put(frame)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._queue.put(Frame.done())

    async def __aiter__(self) -> AsyncIterator[Frame]:
        while True:
            frame = await self._queue.get()
            yield frame
            if frame.kind == "done":
                return


async def encode_sse(frames: AsyncIterator[Frame]) -> AsyncIterator[str]:
    async for frame in frames:
        yield frame.encode()
