"""HTTP client helpers for the Echoloop voice API."""

from __future__ import annotations

import json
from typing import Any, Dict, Iterator, Optional

import httpx

from ..store.settings_store import SettingsStore

DONE_SENTINEL = "[DONE]"


class ApiError(Exception):
    def __init__(self, message: str, kind: str | None = None) -> None:
        super().__init__(message)
        self.kind = kind


class ApiClient:
    def __init__(self, settings: SettingsStore, *, timeout: float = 120.0, client: Optional[httpx.Client] = None) -> None:
        self.settings_store = settings
        self.timeout = timeout
        self._client = client or httpx.Client(timeout=timeout)

    def _url(self, path: str) -> str:
        base = self.settings_store.get().server_url.rstrip("/")
        if not base:
            raise ApiError("Server URL missing")
        return f"{base}{path}"

    def test_connection(self) -> bool:
        try:
            resp = self._client.get(self._url("/healthz"))
            return resp.status_code == 200
        except httpx.HTTPError as exc:
            raise ApiError(str(exc))

    def _raise_for_error(self, resp: httpx.Response) -> None:
        if resp.status_code < 400:
            return
        try:
            body = resp.json()
        except ValueError:
            raise ApiError(f"Request failed: {resp.status_code}")
        raise ApiError(body.get("message") or body.get("error") or str(body), kind=body.get("kind"))

    def send_turn(self, audio: bytes, filename: str = "turn.wav", mime: str = "audio/wav") -> Dict[str, Any]:
        """Synchronous contract: one JSON result per turn."""
        try:
            resp = self._client.post(
                self._url("/v1/chat"),
                files={"audio": (filename, audio, mime)},
                data={"stream": "false"},
            )
            self._raise_for_error(resp)
            try:
                return resp.json()
            except ValueError as exc:
                raise ApiError(f"Invalid response: {exc}") from exc
        except httpx.HTTPError as exc:
            raise ApiError(str(exc))

    def stream_turn(self, audio: bytes, filename: str = "turn.wav", mime: str = "audio/wav") -> Iterator[Dict[str, Any]]:
        """Incremental contract: yields decoded frames until the sentinel."""
        try:
            with self._client.stream(
                "POST",
                self._url("/v1/chat"),
                files={"audio": (filename, audio, mime)},
                data={"stream": "true"},
            ) as resp:
                if resp.status_code >= 400:
                    resp.read()
                    self._raise_for_error(resp)
                for frame in iter_sse(resp.iter_lines()):
                    if frame is None:
                        return
                    yield frame
        except httpx.HTTPError as exc:
            raise ApiError(str(exc))
        raise ApiError("Stream ended without completion sentinel")

    def fetch_audio(self, url: str) -> bytes:
        target = url if url.startswith("http") else self._url(url)
        try:
            resp = self._client.get(target)
            resp.raise_for_status()
            return resp.content
        except httpx.HTTPStatusError as exc:
            raise ApiError(f"Audio download failed: {exc.response.status_code}")
        except httpx.HTTPError as exc:
            raise ApiError(str(exc))

    def close(self) -> None:
        self._client.close()


def iter_sse(lines: Iterator[str]) -> Iterator[Optional[Dict[str, Any]]]:
    """Decode ``data:`` lines; yields ``None`` for the completion sentinel."""
    for line in lines:
        if not line.startswith("data:"):
            continue
        data = line[len("data:"):].strip()
        if data == DONE_SENTINEL:
            yield None
            return
        try:
            yield json.loads(data)
        except ValueError as exc:
            raise ApiError(f"Malformed frame: {data[:80]}") from exc
