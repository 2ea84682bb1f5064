"""Value objects flowing through the voice pipeline."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from ..errors import PipelineError


@dataclass(frozen=True, slots=True)
class ProcessedAudio:
    """Canonical mono 16-bit little-endian PCM, ready for transcription."""

    pcm: bytes
    sample_rate: int
    mime_type: str = "audio/wav"
    channels: int = 1

    @property
    def num_samples(self) -> int:
        return len(self.pcm) // 2

    @property
    def duration(self) -> float:
        return self.num_samples / float(self.sample_rate)


@dataclass(frozen=True, slots=True)
class SynthesisArtifact:
    url: str
    text: str
    path: str | None = None
    media_type: str = "audio/mpeg"


@dataclass(slots=True)
class GenerationResult:
    """Generated text, with the fragments it arrived in when streamed."""

    text: str
    fragments: List[str] = field(default_factory=list)

    @classmethod
    def from_fragments(cls, fragments: List[str]) -> "GenerationResult":
        return cls(text="".join(fragments), fragments=list(fragments))


class PipelineState(str, Enum):
    RECEIVED = "received"
    DECODING = "decoding"
    TRANSCRIBING = "transcribing"
    GENERATING = "generating"
    SYNTHESIZING = "synthesizing"
    COMPLETE = "complete"
    ERRORED = "errored"


_ORDER = [
    PipelineState.RECEIVED,
    PipelineState.DECODING,
    PipelineState.TRANSCRIBING,
    PipelineState.GENERATING,
    PipelineState.SYNTHESIZING,
    PipelineState.COMPLETE,
]

TERMINAL_STATES = frozenset({PipelineState.COMPLETE, PipelineState.ERRORED})


class InvalidTransition(RuntimeError):
    pass


@dataclass(slots=True)
class PipelineRequest:
    """One user turn. Never retried; a new turn builds a new request."""

    audio: bytes | None
    container_hint: str | None = None
    stream: bool = False
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    state: PipelineState = PipelineState.RECEIVED
    processed: Optional[ProcessedAudio] = None
    transcript: Optional[str] = None
    generation: Optional[GenerationResult] = None
    artifact: Optional[SynthesisArtifact] = None
    error: Optional[PipelineError] = None

    def advance(self, state: PipelineState) -> None:
        if self.state in TERMINAL_STATES:
            raise InvalidTransition(f"request {self.request_id} already {self.state.value}")
        if state is PipelineState.ERRORED:
            self.state = state
            return
        if _ORDER.index(state) <= _ORDER.index(self.state):
            raise InvalidTransition(
                f"cannot move request {self.request_id} from {self.state.value} to {state.value}"
            )
        self.state = state

    def fail(self, error: PipelineError) -> None:
        self.error = error
        self.advance(PipelineState.ERRORED)


@dataclass(frozen=True, slots=True)
class PipelineResult:
    transcript: str
    response_text: str
    artifact: SynthesisArtifact
