"""Voice pipeline orchestrator: decode -> transcribe -> generate -> synthesize.

Two delivery contracts are offered over the same stages:

* :meth:`PipelineOrchestrator.run` blocks until the request completes and
  returns a :class:`PipelineResult` (or raises the failing stage's error).
* :meth:`PipelineOrchestrator.stream` yields :class:`Frame` objects. After
  transcription a token task pushes each generated fragment onto a
  :class:`FrameChannel`; a synthesis task waits for the token task's result
  (the full text) before rendering audio and pushing the single artifact
  frame. The channel is drained by the consumer of ``stream`` only, so
  frames are written by one writer in send order. Every stream ends with
  exactly one ``artifact`` or ``error`` frame followed by the sentinel.

No stage is retried. A failing stage moves the request to ``ERRORED`` and
the remaining stages are skipped.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import aclosing
from typing import AsyncIterator, Awaitable, Callable, Dict, Type, TypeVar

from ..errors import (
    AudioDecodeError,
    GenerationError,
    PipelineError,
    SynthesisError,
    TranscriptionError,
)
from ..metrics import PIPELINE_REQUESTS, STAGE_FAILURES, STAGE_LATENCY
from ..settings import APISettings
from .adapters import Generator, Synthesizer, Transcriber
from .audio_normalizer import AudioNormalizer
from .frames import Frame, FrameChannel
from .generation import build_generator
from .synthesis import ArtifactStore, build_synthesizer
from .types import (
    GenerationResult,
    PipelineRequest,
    PipelineResult,
    PipelineState,
    SynthesisArtifact,
)
from .whisper_engine import build_transcriber

LOGGER = logging.getLogger("echoloop.pipeline")

T = TypeVar("T")

_STAGE_NAMES = {
    PipelineState.DECODING: "decode",
    PipelineState.TRANSCRIBING: "transcription",
    PipelineState.GENERATING: "generation",
    PipelineState.SYNTHESIZING: "synthesis",
}


async def _close_adapter(adapter) -> None:
    close = getattr(adapter, "aclose", None)
    if close is not None:
        await close()


class PipelineOrchestrator:
    def __init__(
        self,
        normalizer: AudioNormalizer,
        transcriber: Transcriber,
        generator: Generator,
        synthesizer: Synthesizer,
        artifacts: ArtifactStore,
        *,
        skip_empty_transcript: bool = False,
        queue_size: int = 64,
    ) -> None:
        self.normalizer = normalizer
        self.transcriber = transcriber
        self.generator = generator
        self.synthesizer = synthesizer
        self.artifacts = artifacts
        self.skip_empty_transcript = skip_empty_transcript
        self.queue_size = queue_size

    async def aclose(self) -> None:
        for adapter in (self.transcriber, self.generator, self.synthesizer):
            await _close_adapter(adapter)

    # ----------------- shared stages -----------------
    async def _stage(
        self,
        request: PipelineRequest,
        state: PipelineState,
        error_cls: Type[PipelineError],
        func: Callable[..., Awaitable[T]],
        *args,
    ) -> T:
        request.advance(state)
        stage = _STAGE_NAMES[state]
        LOGGER.debug("request %s -> %s", request.request_id, state.value)
        start = time.perf_counter()
        try:
            return await func(*args)
        except PipelineError:
            raise
        except Exception as exc:
            raise error_cls(str(exc) or type(exc).__name__) from exc
        finally:
            elapsed = time.perf_counter() - start
            STAGE_LATENCY.labels(stage=stage).observe(elapsed)
            LOGGER.info("request %s %s took %.0fms", request.request_id, stage, elapsed * 1000)

    def _fail(self, request: PipelineRequest, exc: PipelineError) -> None:
        if request.state is PipelineState.ERRORED:
            return
        request.fail(exc)
        STAGE_FAILURES.labels(stage=exc.stage).inc()
        LOGGER.warning("request %s failed: %s", request.request_id, exc)

    def _abandon(self, request: PipelineRequest, mode: str) -> None:
        if request.state not in (PipelineState.COMPLETE, PipelineState.ERRORED):
            request.advance(PipelineState.ERRORED)
        PIPELINE_REQUESTS.labels(mode=mode, status="cancelled").inc()
        LOGGER.info("request %s cancelled", request.request_id)

    async def prepare(self, request: PipelineRequest) -> str:
        """Decode and transcribe the captured audio; returns the transcript."""
        if request.transcript is not None:
            return request.transcript
        try:
            request.processed = await self._stage(
                request,
                PipelineState.DECODING,
                AudioDecodeError,
                self.normalizer.normalize,
                request.audio,
                request.container_hint,
            )
            transcript = await self._stage(
                request,
                PipelineState.TRANSCRIBING,
                TranscriptionError,
                self.transcriber.transcribe,
                request.processed.pcm,
                request.processed.sample_rate,
            )
            if self.skip_empty_transcript and not transcript.strip():
                raise TranscriptionError("no speech detected")
        except PipelineError as exc:
            self._fail(request, exc)
            raise
        request.transcript = transcript
        LOGGER.info("request %s transcript: %r", request.request_id, transcript)
        return transcript

    async def prepare_stream(self, request: PipelineRequest) -> str:
        """:meth:`prepare` for a request about to open the event stream."""
        try:
            return await self.prepare(request)
        except PipelineError:
            PIPELINE_REQUESTS.labels(mode="stream", status="errored").inc()
            raise
        except asyncio.CancelledError:
            self._abandon(request, "stream")
            raise

    async def _render(self, text: str) -> SynthesisArtifact:
        audio = await self.synthesizer.synthesize(text)
        return await self.artifacts.save(
            audio,
            extension=self.synthesizer.extension,
            text=text,
            media_type=self.synthesizer.media_type,
        )

    async def _synthesize(self, request: PipelineRequest, text: str) -> SynthesisArtifact:
        artifact = await self._stage(
            request, PipelineState.SYNTHESIZING, SynthesisError, self._render, text
        )
        request.artifact = artifact
        return artifact

    # ----------------- synchronous contract -----------------
    async def run(self, request: PipelineRequest) -> PipelineResult:
        try:
            transcript = await self.prepare(request)
            text = await self._stage(
                request,
                PipelineState.GENERATING,
                GenerationError,
                self.generator.generate,
                transcript,
            )
            request.generation = GenerationResult(text=text)
            artifact = await self._synthesize(request, text)
        except PipelineError as exc:
            self._fail(request, exc)
            PIPELINE_REQUESTS.labels(mode="sync", status="errored").inc()
            raise
        except asyncio.CancelledError:
            self._abandon(request, "sync")
            raise
        request.advance(PipelineState.COMPLETE)
        PIPELINE_REQUESTS.labels(mode="sync", status="complete").inc()
        return PipelineResult(transcript=transcript, response_text=text, artifact=artifact)

    # ----------------- incremental contract -----------------
    async def stream(self, request: PipelineRequest) -> AsyncIterator[Frame]:
        channel = FrameChannel(maxsize=self.queue_size)
        producer = asyncio.create_task(self._produce(request, channel))
        try:
            async for frame in channel:
                yield frame
        finally:
            if not producer.done():
                producer.cancel()
            try:
                await producer
            except asyncio.CancelledError:
                self._abandon(request, "stream")

    async def _produce(self, request: PipelineRequest, channel: FrameChannel) -> None:
        try:
            transcript = await self.prepare(request)
        except PipelineError as exc:
            await channel.send(Frame.error(exc.stage, str(exc)))
            await channel.close()
            PIPELINE_REQUESTS.labels(mode="stream", status="errored").inc()
            return

        tokens = asyncio.create_task(self._emit_tokens(request, transcript, channel))
        speech = asyncio.create_task(self._emit_artifact(request, tokens, channel))
        try:
            await speech
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            LOGGER.exception("request %s stream crashed", request.request_id)
            if request.state is not PipelineState.ERRORED:
                request.advance(PipelineState.ERRORED)
            if not channel.closed:
                await channel.send(Frame.error("pipeline", f"pipeline: {exc}"))
        finally:
            for task in (tokens, speech):
                if not task.done():
                    task.cancel()
        await channel.close()
        status = "complete" if request.state is PipelineState.COMPLETE else "errored"
        PIPELINE_REQUESTS.labels(mode="stream", status=status).inc()

    async def _emit_tokens(
        self, request: PipelineRequest, transcript: str, channel: FrameChannel
    ) -> GenerationResult:
        request.advance(PipelineState.GENERATING)
        fragments: list[str] = []
        start = time.perf_counter()
        try:
            async with aclosing(self.generator.stream(transcript)) as pieces:
                async for fragment in pieces:
                    fragments.append(fragment)
                    await channel.send(Frame.token(fragment))
        except PipelineError:
            raise
        except Exception as exc:
            raise GenerationError(str(exc) or type(exc).__name__) from exc
        finally:
            STAGE_LATENCY.labels(stage="generation").observe(time.perf_counter() - start)
        result = GenerationResult.from_fragments(fragments)
        request.generation = result
        LOGGER.info(
            "request %s generated %d fragments in %.0fms",
            request.request_id,
            len(fragments),
            (time.perf_counter() - start) * 1000,
        )
        return result

    async def _emit_artifact(
        self,
        request: PipelineRequest,
        tokens: "asyncio.Task[GenerationResult]",
        channel: FrameChannel,
    ) -> None:
        try:
            result = await tokens
        except PipelineError as exc:
            self._fail(request, exc)
            await channel.send(Frame.error(exc.stage, str(exc)))
            return
        try:
            artifact = await self._synthesize(request, result.text)
        except PipelineError as exc:
            self._fail(request, exc)
            await channel.send(Frame.error(exc.stage, str(exc)))
            return
        await channel.send(Frame.artifact(artifact.url, artifact.text))
        request.advance(PipelineState.COMPLETE)


def build_pipeline(settings: APISettings) -> PipelineOrchestrator:
    return PipelineOrchestrator(
        AudioNormalizer(
            ffmpeg_path=settings.ffmpeg_path,
            sample_rate=settings.normalizer_sample_rate,
            tmp_dir=None,
            timeout=settings.ffmpeg_timeout_sec,
        ),
        build_transcriber(settings),
        build_generator(settings),
        build_synthesizer(settings),
        ArtifactStore(
            settings.audio_dir,
            url_prefix=settings.audio_url_prefix,
            retention_sec=settings.artifact_retention_sec,
        ),
        skip_empty_transcript=settings.skip_empty_transcript,
        queue_size=settings.stream_queue_size,
    )


_PIPELINES: Dict[str, PipelineOrchestrator] = {}
_SYNTHESIZERS: Dict[str, Synthesizer] = {}


def get_pipeline_for(settings: APISettings) -> PipelineOrchestrator:
    """One orchestrator (and its HTTP clients) per distinct configuration.

    Raises :class:`ConfigurationError` when a selected backend is missing
    its credentials; nothing is cached in that case.
    """
    key = settings.model_dump_json()
    if key not in _PIPELINES:
        _PIPELINES[key] = build_pipeline(settings)
    return _PIPELINES[key]


def get_synthesizer_for(settings: APISettings) -> Synthesizer:
    """The synthesizer alone, for routes that never touch the other stages."""
    key = settings.model_dump_json()
    if key not in _SYNTHESIZERS:
        _SYNTHESIZERS[key] = build_synthesizer(settings)
    return _SYNTHESIZERS[key]


async def close_pipelines() -> None:
    """Close the HTTP clients of every cached orchestrator and synthesizer."""
    pipelines = list(_PIPELINES.values())
    synthesizers = list(_SYNTHESIZERS.values())
    _PIPELINES.clear()
    _SYNTHESIZERS.clear()
    for pipeline in pipelines:
        await pipeline.aclose()
    for synthesizer in synthesizers:
        await _close_adapter(synthesizer)
