"""API settings resolved from the environment."""

from __future__ import annotations

import os
from functools import lru_cache

from pydantic import BaseModel, Field


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


def _env_float(name: str) -> float | None:
    raw = os.getenv(name)
    if not raw:
        return None
    return float(raw)


class APISettings(BaseModel):
    app_name: str = Field(default="Echoloop Voice API")
    version: str = Field(default="1.0.0")
    log_level: str = Field(default=os.getenv("LOG_LEVEL", "INFO"))
    data_dir: str = Field(default=os.getenv("DATA_DIR", "data"))
    audio_dir: str = Field(default=os.getenv("AUDIO_DIR", "data/audio"))
    audio_url_prefix: str = Field(default=os.getenv("AUDIO_URL_PREFIX", "/audio"))
    artifact_retention_sec: float = Field(
        default=float(os.getenv("ARTIFACT_RETENTION_SEC", "3600"))
    )

    ffmpeg_path: str = Field(default=os.getenv("FFMPEG_PATH", "ffmpeg"))
    normalizer_sample_rate: int = Field(default=16000)
    ffmpeg_timeout_sec: float = Field(default=float(os.getenv("FFMPEG_TIMEOUT_SEC", "30")))

    transcriber_backend: str = Field(default=os.getenv("TRANSCRIBER_BACKEND", "whisper"))
    whisper_model: str = Field(default=os.getenv("WHISPER_MODEL", "tiny"))
    whisper_device: str = Field(default=os.getenv("WHISPER_DEVICE", "cpu"))
    whisper_compute_type: str = Field(
        default=os.getenv("WHISPER_COMPUTE_TYPE", "int8")
    )
    whisper_mock_transcriber: bool = Field(default=_env_flag("WHISPER_USE_MOCK"))
    transcription_language: str | None = Field(
        default=os.getenv("TRANSCRIPTION_LANGUAGE", "en") or None
    )
    openai_api_key: str | None = Field(default=os.getenv("OPENAI_API_KEY"))
    openai_whisper_model: str = Field(
        default=os.getenv("OPENAI_WHISPER_MODEL", "gpt-4o-mini-transcribe")
    )

    generator_backend: str = Field(default=os.getenv("GENERATOR_BACKEND", "ollama"))
    ollama_url: str = Field(default=os.getenv("OLLAMA_URL", "http://localhost:11434"))
    ollama_model: str = Field(default=os.getenv("OLLAMA_MODEL", "llama3:3b"))
    openai_chat_model: str = Field(default=os.getenv("OPENAI_CHAT_MODEL", "gpt-4o-mini"))
    prompt_template: str = Field(
        default=os.getenv(
            "PROMPT_TEMPLATE",
            "Respond to the following query in a helpful, professional manner: {transcript}",
        )
    )
    generation_timeout_sec: float = Field(
        default=float(os.getenv("GENERATION_TIMEOUT_SEC", "60"))
    )

    synthesizer_backend: str = Field(default=os.getenv("SYNTHESIZER_BACKEND", "playht"))
    playht_api_key: str | None = Field(default=os.getenv("PLAYHT_API_KEY"))
    playht_user_id: str | None = Field(default=os.getenv("PLAYHT_USER_ID"))
    playht_voice: str = Field(
        default=os.getenv(
            "PLAYHT_VOICE",
            "s3://voice-cloning-zero-shot/d9ff78ba-d016-47f6-b0ef-dd630f59414e/female-cs/manifest.json",
        )
    )
    elevenlabs_api_key: str | None = Field(default=os.getenv("ELEVENLABS_API_KEY"))
    elevenlabs_voice_id: str = Field(
        default=os.getenv("ELEVENLABS_VOICE_ID", "21m00Tcm4TlvDq8ikWAM")
    )
    elevenlabs_model_id: str = Field(
        default=os.getenv("ELEVENLABS_MODEL_ID", "eleven_turbo_v2")
    )
    elevenlabs_output_format: str = Field(
        default=os.getenv("ELEVENLABS_OUTPUT_FORMAT", "mp3_44100_128")
    )
    synthesis_timeout_sec: float = Field(
        default=float(os.getenv("SYNTHESIS_TIMEOUT_SEC", "60"))
    )

    skip_empty_transcript: bool = Field(default=_env_flag("SKIP_EMPTY_TRANSCRIPT"))
    stream_queue_size: int = Field(default=int(os.getenv("STREAM_QUEUE_SIZE", "64")))
    request_timeout_sec: float | None = Field(default=_env_float("REQUEST_TIMEOUT_SEC"))


@lru_cache()
def get_settings() -> APISettings:
    return APISettings()
