"""Stage-tagged failures raised by the voice pipeline."""

from __future__ import annotations


class PipelineError(Exception):
    """A terminal failure of one pipeline stage.

    ``stage`` is one of ``decode``, ``transcription``, ``generation`` or
    ``synthesis``; ``str(exc)`` always starts with it so that a surfaced
    message names the stage that failed.
    """

    stage = "pipeline"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"{self.stage}: {message}")

    @property
    def kind(self) -> str:
        return self.stage


class AudioDecodeError(PipelineError):
    stage = "decode"


class TranscriptionError(PipelineError):
    stage = "transcription"


class GenerationError(PipelineError):
    stage = "generation"


class SynthesisError(PipelineError):
    stage = "synthesis"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ConfigurationError(RuntimeError):
    """A backend was selected without the settings it needs."""

    kind = "config"
