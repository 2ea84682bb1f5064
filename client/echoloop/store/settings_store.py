"""Persistent settings storage for the capture client."""

from __future__ import annotations

import json
from dataclasses import dataclass, asdict
from pathlib import Path


@dataclass(slots=True)
class AppSettings:
    server_url: str = "http://localhost:8000"
    stream: bool = True
    silence_threshold: float = 5.0
    silence_window_ms: int = 1500
    tick_interval_ms: int = 16
    sample_rate: int = 16000
    output_dir: str = "replies"


class SettingsStore:
    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._settings = self._load()

    def _load(self) -> AppSettings:
        if not self.path.exists():
            return AppSettings()
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except ValueError:
            raw = {}
        settings = AppSettings()
        for key, value in raw.items():
            if hasattr(settings, key):
                self._assign(settings, key, value)
        return settings

    def get(self) -> AppSettings:
        return self._settings

    def update(self, **kwargs) -> AppSettings:
        for key, value in kwargs.items():
            if not hasattr(self._settings, key):
                continue
            self._assign(self._settings, key, value)
        self._persist()
        return self._settings

    @staticmethod
    def _assign(settings: AppSettings, key: str, value) -> None:
        current = getattr(settings, key)
        if isinstance(current, bool):
            if isinstance(value, str):
                value = value.strip().lower() in {"1", "true", "yes"}
            setattr(settings, key, bool(value))
        elif isinstance(current, float):
            setattr(settings, key, float(value))
        elif isinstance(current, int):
            setattr(settings, key, int(value))
        else:
            setattr(settings, key, value or "")

    def _persist(self) -> None:
        self.path.write_text(json.dumps(asdict(self._settings)), encoding="utf-8")
