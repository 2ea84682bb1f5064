"""Generation adapters: Ollama over httpx, OpenAI chat completions, and a mock."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import AsyncIterator, Optional

import httpx
from openai import AsyncOpenAI

from ..errors import ConfigurationError, GenerationError
from ..settings import APISettings

LOGGER = logging.getLogger("echoloop.generation")


class OllamaGenerator:
    """Calls a local Ollama server's ``/api/generate`` endpoint."""

    def __init__(
        self,
        base_url: str,
        model: str,
        *,
        prompt_template: str = "{transcript}",
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.prompt_template = prompt_template
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def _payload(self, text: str, stream: bool) -> dict:
        return {
            "model": self.model,
            "prompt": self.prompt_template.format(transcript=text),
            "stream": stream,
        }

    async def generate(self, text: str) -> str:
        try:
            resp = await self._client.post(
                f"{self.base_url}/api/generate", json=self._payload(text, stream=False)
            )
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as exc:
            raise GenerationError(f"Ollama API error: {exc.response.status_code}") from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise GenerationError(f"failed to generate response: {exc}") from exc
        response = data.get("response")
        if not isinstance(response, str):
            raise GenerationError("Ollama reply has no 'response' text")
        return response

    async def stream(self, text: str) -> AsyncIterator[str]:
        try:
            async with self._client.stream(
                "POST", f"{self.base_url}/api/generate", json=self._payload(text, stream=True)
            ) as resp:
                if resp.status_code >= 400:
                    await resp.aread()
                    raise GenerationError(f"Ollama API error: {resp.status_code}")
                async for line in resp.aiter_lines():
                    if not line.strip():
                        continue
                    chunk = json.loads(line)
                    if chunk.get("error"):
                        raise GenerationError(f"Ollama stream error: {chunk['error']}")
                    fragment = chunk.get("response") or ""
                    if fragment:
                        yield fragment
                    if chunk.get("done"):
                        return
        except GenerationError:
            raise
        except (httpx.HTTPError, ValueError) as exc:
            raise GenerationError(f"stream error: {exc}") from exc
        raise GenerationError("stream ended without a completion marker")

    async def aclose(self) -> None:
        await self._client.aclose()


class OpenAIGenerator:
    def __init__(self, settings: APISettings, client: Optional[AsyncOpenAI] = None) -> None:
        if client is None:
            if not settings.openai_api_key:
                raise ConfigurationError("GENERATOR_BACKEND=openai but OPENAI_API_KEY is missing")
            client = AsyncOpenAI(
                api_key=settings.openai_api_key, timeout=settings.generation_timeout_sec
            )
        self._client = client
        self.model = settings.openai_chat_model
        self.prompt_template = settings.prompt_template

    def _messages(self, text: str) -> list[dict]:
        return [{"role": "user", "content": self.prompt_template.format(transcript=text)}]

    async def generate(self, text: str) -> str:
        try:
            completion = await self._client.chat.completions.create(
                model=self.model, messages=self._messages(text)
            )
        except Exception as exc:
            raise GenerationError(f"failed to generate response: {exc}") from exc
        return completion.choices[0].message.content or ""

    async def stream(self, text: str) -> AsyncIterator[str]:
        try:
            events = await self._client.chat.completions.create(
                model=self.model, messages=self._messages(text), stream=True
            )
            async for event in events:
                if not event.choices:
                    continue
                fragment = event.choices[0].delta.content
                if fragment:
                    yield fragment
        except Exception as exc:
            raise GenerationError(f"stream error: {exc}") from exc

    async def aclose(self) -> None:
        await self._client.close()


class MockGenerator:
    """Echoes the transcript back word by word."""

    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay

    def _reply(self, text: str) -> str:
        return f"You said: {text}" if text else "I did not catch that."

    async def generate(self, text: str) -> str:
        return self._reply(text)

    async def stream(self, text: str) -> AsyncIterator[str]:
        words = self._reply(text).split(" ")
        for idx, word in enumerate(words):
            if self.delay:
                await asyncio.sleep(self.delay)
            yield word if idx == 0 else f" {word}"


def build_generator(settings: APISettings):
    backend = settings.generator_backend.lower()
    if backend == "ollama":
        return OllamaGenerator(
            settings.ollama_url,
            settings.ollama_model,
            prompt_template=settings.prompt_template,
            timeout=settings.generation_timeout_sec,
        )
    if backend == "openai":
        return OpenAIGenerator(settings)
    if backend == "mock":
        return MockGenerator()
    raise ConfigurationError(f"Unknown GENERATOR_BACKEND '{settings.generator_backend}'")
