"""FastAPI application for the control surface."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI

from .. import __version__
from ..config.settings import TranscribeConfig
from ..core.orchestrator import Orchestrator
from .router import router

logger = logging.getLogger("ApiServer")


def create_app(
    config: Optional[TranscribeConfig] = None,
    orchestrator_factory: Optional[Callable[[TranscribeConfig], Orchestrator]] = None,
) -> FastAPI:
    config = config or TranscribeConfig()
    factory = orchestrator_factory or Orchestrator

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        logger.info("API Server starting up")
        orchestrator = factory(config)
        orchestrator.start()
        app.state.orchestrator = orchestrator
        yield
        # Shutdown
        logger.info("API Server shutting down")
        orchestrator.shutdown()

    app = FastAPI(
        title="Niri Transcribe API",
        version=__version__,
        lifespan=lifespan,
    )
    app.include_router(router)
    return app
