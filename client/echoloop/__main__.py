"""Console voice loop: record a turn, send it, print and save the reply."""

from __future__ import annotations

import argparse
import io
import logging
import sys
import time
from pathlib import Path

from .audio.recorder import AudioRecorder
from .services.network import ApiClient, ApiError
from .store.settings_store import SettingsStore

LOGGER = logging.getLogger("echoloop.client")


def _save_reply(client: ApiClient, url: str, output_dir: Path) -> Path:
    data = client.fetch_audio(url)
    output_dir.mkdir(parents=True, exist_ok=True)
    target = output_dir / Path(url).name
    target.write_bytes(data)
    return target


def _play(path: Path) -> None:
    import sounddevice as sd
    import soundfile as sf

    audio, sample_rate = sf.read(io.BytesIO(path.read_bytes()), dtype="float32")
    sd.play(audio, sample_rate)
    sd.wait()


def run_turn(client: ApiClient, blob: bytes, *, stream: bool, out=sys.stdout) -> str | None:
    """Send one recorded turn; returns the reply audio URL, if any."""
    if not stream:
        reply = client.send_turn(blob)
        out.write(f"you: {reply.get('transcript', '')}\n")
        out.write(f"assistant: {reply.get('response_text', '')}\n")
        return reply.get("audio_url")

    out.write("assistant: ")
    url = None
    for frame in client.stream_turn(blob):
        kind = frame.get("type")
        if kind == "token":
            out.write(frame.get("content", ""))
            out.flush()
        elif kind == "artifact":
            url = frame.get("url")
        elif kind == "error":
            out.write(f"\n[{frame.get('stage', 'error')}] {frame.get('message', '')}")
    out.write("\n")
    return url


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Talk to the Echoloop voice API.")
    parser.add_argument("--settings", type=Path, default=Path.home() / ".echoloop" / "settings.json")
    parser.add_argument("--server", help="API base URL (persisted)")
    parser.add_argument("--no-stream", action="store_true", help="wait for the complete reply")
    parser.add_argument("--turns", type=int, default=0, help="stop after N turns (0 = forever)")
    parser.add_argument("--play", action="store_true", help="play the reply audio")
    parser.add_argument("--max-turn-sec", type=float, default=60.0)
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    store = SettingsStore(args.settings)
    if args.server:
        store.update(server_url=args.server)
    if args.no_stream:
        store.update(stream=False)
    settings = store.get()

    client = ApiClient(store)
    recorder = AudioRecorder(
        sample_rate=settings.sample_rate,
        silence_threshold=settings.silence_threshold,
        silence_window_ms=settings.silence_window_ms,
        tick_interval_ms=settings.tick_interval_ms,
    )
    turns = 0
    try:
        while not args.turns or turns < args.turns:
            print("Listening... (stops after silence, Ctrl+C to quit)")
            blob = recorder.record_turn(timeout=args.max_turn_sec)
            if not blob:
                LOGGER.info("No audio captured; listening again")
                time.sleep(0.2)
                continue
            turns += 1
            try:
                url = run_turn(client, blob, stream=settings.stream)
                if url:
                    path = _save_reply(client, url, Path(settings.output_dir))
                    print(f"reply audio: {path}")
                    if args.play:
                        _play(path)
            except ApiError as exc:
                print(f"error ({exc.kind or 'api'}): {exc}")
    except KeyboardInterrupt:
        recorder.stop()
    finally:
        client.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
