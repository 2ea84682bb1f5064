"""FastAPI application factory."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from .errors import AudioDecodeError, ConfigurationError, PipelineError
from .metrics import instrument_app
from .metrics import router as metrics_router
from .routers import chat, health, tts_stream
from .schemas import ErrorResponse
from .services.pipeline import close_pipelines
from .settings import APISettings, get_settings

LOGGER = logging.getLogger("echoloop.api")


async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    status = 400 if isinstance(exc, AudioDecodeError) else 502
    body = ErrorResponse(kind=exc.kind, message=str(exc))
    return JSONResponse(status_code=status, content=body.model_dump())


async def configuration_error_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
    LOGGER.error("backend misconfigured: %s", exc)
    body = ErrorResponse(kind=exc.kind, message=str(exc))
    return JSONResponse(status_code=500, content=body.model_dump())


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await close_pipelines()


def create_app(settings: APISettings | None = None) -> FastAPI:
    if settings is None:
        settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)
    app.dependency_overrides[get_settings] = lambda: settings
    instrument_app(app)
    app.add_exception_handler(PipelineError, pipeline_error_handler)
    app.add_exception_handler(ConfigurationError, configuration_error_handler)

    app.include_router(health.router)
    app.include_router(chat.router)
    app.include_router(tts_stream.router)
    app.include_router(metrics_router)

    audio_dir = Path(settings.audio_dir)
    audio_dir.mkdir(parents=True, exist_ok=True)
    app.mount(settings.audio_url_prefix, StaticFiles(directory=str(audio_dir)), name="audio")
    LOGGER.info("serving synthesized audio from %s at %s", audio_dir, settings.audio_url_prefix)
    return app


if __name__ == "__main__":  # pragma: no cover
    import uvicorn

    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
