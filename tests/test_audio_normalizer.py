import asyncio
import io
import shutil
import stat
import sys

import numpy as np
import pytest
import soundfile as sf

from conftest import sine_pcm
from src.api.errors import AudioDecodeError
from src.api.services.audio_normalizer import (
    AudioNormalizer,
    suffix_for,
    unwrap_wav,
    wrap_wav,
)

needs_ffmpeg = pytest.mark.skipif(shutil.which("ffmpeg") is None, reason="ffmpeg not installed")
posix_only = pytest.mark.skipif(sys.platform.startswith("win"), reason="needs a POSIX shell script")


def test_wav_envelope_roundtrip_is_byte_identical():
    pcm = sine_pcm(0.25).tobytes()
    wav = wrap_wav(pcm, 16000)
    assert wav[:4] == b"RIFF"
    payload, sample_rate = unwrap_wav(wav)
    assert sample_rate == 16000
    assert payload == pcm


@pytest.mark.parametrize("blob", [None, b""])
def test_missing_or_empty_blob_is_rejected(tmp_path, blob):
    normalizer = AudioNormalizer(tmp_dir=str(tmp_path))
    with pytest.raises(AudioDecodeError, match="no audio data"):
        asyncio.run(normalizer.normalize(blob))
    assert list(tmp_path.iterdir()) == []


def test_missing_transcoder_cleans_up(tmp_path):
    normalizer = AudioNormalizer(ffmpeg_path=str(tmp_path / "no-such-ffmpeg"), tmp_dir=str(tmp_path / "work"))
    with pytest.raises(AudioDecodeError, match="transcoder not found"):
        asyncio.run(normalizer.normalize(b"\x1aE\xdf\xa3webm", "audio/webm"))
    assert list((tmp_path / "work").iterdir()) == []


@posix_only
def test_transcoder_error_surfaces_last_stderr_line(tmp_path):
    fake = tmp_path / "fake-ffmpeg"
    fake.write_text("#!/bin/sh\necho 'first line' >&2\necho 'Invalid data found when processing input' >&2\nexit 1\n")
    fake.chmod(fake.stat().st_mode | stat.S_IEXEC)
    normalizer = AudioNormalizer(ffmpeg_path=str(fake), tmp_dir=str(tmp_path / "work"))

    with pytest.raises(AudioDecodeError) as excinfo:
        asyncio.run(normalizer.normalize(b"garbage", "audio/webm"))

    assert "Invalid data found" in str(excinfo.value)
    assert str(excinfo.value).startswith("decode:")
    assert list((tmp_path / "work").iterdir()) == []


@needs_ffmpeg
def test_canonical_wav_passes_through_unchanged(tmp_path):
    pcm = sine_pcm(0.5)
    normalizer = AudioNormalizer(tmp_dir=str(tmp_path))
    processed = asyncio.run(normalizer.normalize(wrap_wav(pcm.tobytes(), 16000), "audio/wav"))

    assert processed.sample_rate == 16000
    assert processed.mime_type == "audio/wav"
    assert processed.pcm == pcm.tobytes()
    assert list(tmp_path.iterdir()) == []


@needs_ffmpeg
def test_stereo_44k_capture_is_downmixed_and_resampled(tmp_path):
    t = np.arange(44100) / 44100.0
    left = np.sin(2 * np.pi * 330 * t) * 0.3
    stereo = np.stack([left, left], axis=1).astype(np.float32)
    buffer = io.BytesIO()
    sf.write(buffer, stereo, 44100, format="FLAC")

    processed = asyncio.run(AudioNormalizer(tmp_dir=str(tmp_path)).normalize(buffer.getvalue(), "recording.flac"))

    assert processed.sample_rate == 16000
    assert processed.channels == 1
    assert abs(processed.duration - 1.0) < 0.05


@needs_ffmpeg
def test_undecodable_blob_raises(tmp_path):
    normalizer = AudioNormalizer(tmp_dir=str(tmp_path))
    with pytest.raises(AudioDecodeError):
        asyncio.run(normalizer.normalize(b"not really audio at all" * 10, "audio/webm"))
    assert list(tmp_path.iterdir()) == []


def test_suffix_for_hints():
    assert suffix_for("audio/webm;codecs=opus") == ".webm"
    assert suffix_for("audio/x-wav") == ".wav"
    assert suffix_for("recording.ogg") == ".ogg"
    assert suffix_for(None) == ".bin"
    assert suffix_for("application/octet-stream") == ".bin"
