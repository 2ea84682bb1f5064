import httpx
import pytest

from client.echoloop.services.network import ApiClient, ApiError, iter_sse
from client.echoloop.store.settings_store import SettingsStore


def make_client(tmp_path, handler):
    settings = SettingsStore(tmp_path / "settings.json")
    settings.update(server_url="https://api.example.com")
    return ApiClient(settings, client=httpx.Client(transport=httpx.MockTransport(handler)))


def test_send_turn_posts_audio(tmp_path):
    def handler(request):
        assert request.url.path == "/v1/chat"
        body = request.content.decode("utf-8", errors="ignore")
        assert 'name="audio"' in body
        assert 'name="stream"' in body
        return httpx.Response(200, json={"transcript": "hi", "response_text": "hello", "audio_url": "/audio/x.mp3"})

    reply = make_client(tmp_path, handler).send_turn(b"RIFF....")
    assert reply["audio_url"] == "/audio/x.mp3"


def test_send_turn_surfaces_stage_error(tmp_path):
    def handler(request):
        return httpx.Response(502, json={"kind": "synthesis", "message": "synthesis: quota"})

    with pytest.raises(ApiError) as excinfo:
        make_client(tmp_path, handler).send_turn(b"RIFF")
    assert excinfo.value.kind == "synthesis"
    assert "quota" in str(excinfo.value)


def test_stream_turn_yields_frames_until_sentinel(tmp_path):
    body = (
        'data: {"type": "token", "content": "Hel"}\n\n'
        'data: {"type": "token", "content": "lo"}\n\n'
        'data: {"type": "artifact", "url": "/audio/a.mp3", "text": "Hello"}\n\n'
        "data: [DONE]\n\n"
    )

    def handler(request):
        return httpx.Response(200, content=body.encode(), headers={"content-type": "text/event-stream"})

    frames = list(make_client(tmp_path, handler).stream_turn(b"RIFF"))
    assert [f["type"] for f in frames] == ["token", "token", "artifact"]
    assert frames[-1]["text"] == "Hello"


def test_stream_turn_without_sentinel_fails(tmp_path):
    def handler(request):
        return httpx.Response(200, content=b'data: {"type": "token", "content": "x"}\n\n')

    with pytest.raises(ApiError, match="sentinel"):
        list(make_client(tmp_path, handler).stream_turn(b"RIFF"))


def test_stream_turn_error_before_stream(tmp_path):
    def handler(request):
        return httpx.Response(400, json={"kind": "decode", "message": "decode: no audio data received"})

    with pytest.raises(ApiError) as excinfo:
        list(make_client(tmp_path, handler).stream_turn(b""))
    assert excinfo.value.kind == "decode"


def test_fetch_audio_resolves_relative_urls(tmp_path):
    def handler(request):
        assert str(request.url) == "https://api.example.com/audio/a.mp3"
        return httpx.Response(200, content=b"ID3")

    assert make_client(tmp_path, handler).fetch_audio("/audio/a.mp3") == b"ID3"


def test_iter_sse_ignores_comments_and_blank_lines():
    lines = [": keepalive", "", 'data: {"type": "token", "content": "a"}', "data: [DONE]", 'data: {"type": "token"}']
    assert list(iter_sse(iter(lines))) == [{"type": "token", "content": "a"}, None]


def test_missing_server_url(tmp_path):
    settings = SettingsStore(tmp_path / "settings.json")
    settings.update(server_url="")
    client = ApiClient(settings, client=httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(200))))
    with pytest.raises(ApiError, match="Server URL missing"):
        client.send_turn(b"RIFF")


def test_run_turn_prints_tokens_and_returns_artifact_url(tmp_path):
    import io

    from client.echoloop.__main__ import run_turn

    body = (
        'data: {"type": "token", "content": "Hi"}\n\n'
        'data: {"type": "token", "content": "!"}\n\n'
        'data: {"type": "artifact", "url": "/audio/tts-1.mp3", "text": "Hi!"}\n\n'
        "data: [DONE]\n\n"
    )
    client = make_client(tmp_path, lambda request: httpx.Response(200, content=body.encode()))
    out = io.StringIO()
    assert run_turn(client, b"RIFF", stream=True, out=out) == "/audio/tts-1.mp3"
    assert out.getvalue() == "assistant: Hi!\n"
