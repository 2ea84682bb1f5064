import asyncio
import json

import httpx
import pytest

from src.api.errors import ConfigurationError, GenerationError
from src.api.services.generation import MockGenerator, OllamaGenerator, build_generator
from src.api.settings import APISettings


def _ollama(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OllamaGenerator(
        "http://ollama.local:11434/",
        "llama3:3b",
        prompt_template="Respond helpfully: {transcript}",
        client=client,
    )


def _drain(iterator):
    async def _go():
        return [item async for item in iterator]

    return asyncio.run(_go())


def test_ollama_generate_posts_prompt():
    seen = {}

    def handler(request):
        seen.update(json.loads(request.content))
        assert request.url.path == "/api/generate"
        return httpx.Response(200, json={"response": "Sure thing.", "done": True})

    text = asyncio.run(_ollama(handler).generate("turn on the lights"))
    assert text == "Sure thing."
    assert seen == {
        "model": "llama3:3b",
        "prompt": "Respond helpfully: turn on the lights",
        "stream": False,
    }


def test_ollama_stream_yields_fragments_until_done():
    lines = [
        {"response": "Hel", "done": False},
        {"response": "lo", "done": False},
        {"response": "", "done": True},
        {"response": "ignored", "done": False},
    ]

    def handler(request):
        assert json.loads(request.content)["stream"] is True
        body = "\n".join(json.dumps(line) for line in lines) + "\n"
        return httpx.Response(200, content=body.encode())

    assert _drain(_ollama(handler).stream("hi")) == ["Hel", "lo"]


def test_ollama_stream_without_done_is_an_error():
    def handler(request):
        return httpx.Response(200, content=b'{"response": "partial", "done": false}\n')

    with pytest.raises(GenerationError, match="completion marker"):
        _drain(_ollama(handler).stream("hi"))


def test_ollama_http_errors_become_generation_errors():
    def handler(request):
        return httpx.Response(500, text="model not loaded")

    generator = _ollama(handler)
    with pytest.raises(GenerationError, match="500"):
        asyncio.run(generator.generate("hi"))
    with pytest.raises(GenerationError, match="500"):
        _drain(generator.stream("hi"))


def test_ollama_inline_stream_error():
    def handler(request):
        return httpx.Response(200, content=b'{"error": "out of memory"}\n')

    with pytest.raises(GenerationError, match="out of memory"):
        _drain(_ollama(handler).stream("hi"))


def test_mock_generator_stream_matches_blocking_reply():
    generator = MockGenerator()
    fragments = _drain(generator.stream("what time is it"))
    assert "".join(fragments) == asyncio.run(generator.generate("what time is it"))


def test_build_generator_backends():
    assert isinstance(build_generator(APISettings(generator_backend="mock")), MockGenerator)
    assert isinstance(build_generator(APISettings(generator_backend="ollama")), OllamaGenerator)
    with pytest.raises(ConfigurationError, match="OPENAI_API_KEY"):
        build_generator(APISettings(generator_backend="openai", openai_api_key=None))
    with pytest.raises(ConfigurationError, match="Unknown"):
        build_generator(APISettings(generator_backend="parrot"))
