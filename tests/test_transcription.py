import asyncio
from types import SimpleNamespace

import pytest

from conftest import sine_pcm
from src.api.errors import ConfigurationError, TranscriptionError
from src.api.services.whisper_engine import (
    OpenAITranscriber,
    WhisperTranscriber,
    build_transcriber,
)
from src.api.settings import APISettings


class _FakeTranscriptions:
    def __init__(self, error=None):
        self.error = error
        self.kwargs = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        if self.error:
            raise self.error
        return SimpleNamespace(text="  turn on the lights ")


def _openai(error=None):
    transcriptions = _FakeTranscriptions(error)
    client = SimpleNamespace(audio=SimpleNamespace(transcriptions=transcriptions))
    return OpenAITranscriber(APISettings(transcription_language="en"), client=client), transcriptions


def test_whisper_mock_mode_reports_sample_count():
    transcriber = WhisperTranscriber(APISettings(whisper_mock_transcriber=True))
    pcm = sine_pcm(0.25).tobytes()
    assert asyncio.run(transcriber.transcribe(pcm, 16000)) == "[mock transcript 4000 samples]"


def test_whisper_rejects_other_sample_rates():
    transcriber = WhisperTranscriber(APISettings(whisper_mock_transcriber=False))
    with pytest.raises(TranscriptionError, match="16000"):
        asyncio.run(transcriber.transcribe(b"\x00\x00" * 10, 8000))


def test_openai_transcriber_uploads_wav():
    transcriber, transcriptions = _openai()
    text = asyncio.run(transcriber.transcribe(sine_pcm(0.1).tobytes(), 16000))
    assert text == "turn on the lights"
    name, payload, mime = transcriptions.kwargs["file"]
    assert name == "turn.wav"
    assert payload[:4] == b"RIFF"
    assert mime == "audio/wav"
    assert transcriptions.kwargs["language"] == "en"


def test_openai_transcriber_wraps_failures():
    transcriber, _ = _openai(error=ConnectionError("network down"))
    with pytest.raises(TranscriptionError, match="network down"):
        asyncio.run(transcriber.transcribe(b"\x00\x00" * 10, 16000))


def test_build_transcriber_backends():
    mock = build_transcriber(APISettings(transcriber_backend="mock"))
    assert isinstance(mock, WhisperTranscriber)
    assert mock._mock is True
    with pytest.raises(ConfigurationError, match="OPENAI_API_KEY"):
        build_transcriber(APISettings(transcriber_backend="openai", openai_api_key=None))
    with pytest.raises(ConfigurationError, match="Unknown"):
        build_transcriber(APISettings(transcriber_backend="morse"))
