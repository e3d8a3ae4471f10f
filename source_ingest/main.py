"""App FastAPI del servicio de ingesta de fuentes.

El manager se construye en el lifespan y vive en app.state; los routers lo
obtienen vía dependencia.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine

from common.config import Settings, get_settings
from common.db import create_db_engine

from . import __version__
from .core.errors import ConfigValidationError, SourceNotFoundError
from .endpoints import data_sources_router, health_router
from .manager import SourceManager
from .persistence import SourceConfigRepository, SqlReadingSink, ensure_schema

logger = logging.getLogger(__name__)


def build_manager(engine: Engine) -> SourceManager:
    ensure_schema(engine)
    return SourceManager(SourceConfigRepository(engine), SqlReadingSink(engine))


def create_app(
    settings: Optional[Settings] = None,
    *,
    engine: Optional[Engine] = None,
    manager: Optional[SourceManager] = None,
) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app_engine = engine or create_db_engine(settings.database_url)
        app_manager = manager or build_manager(app_engine)
        app.state.settings = settings
        app.state.engine = app_engine
        app.state.source_manager = app_manager

        if settings.manager_autostart:
            try:
                app_manager.initialize()
            except Exception:
                # El próximo initialize() (o un start explícito) reintenta
                logger.exception("[API] Source manager initialization failed")
        else:
            logger.info("[API] MANAGER_AUTOSTART disabled, sources not started")

        yield

        report = app_manager.shutdown()
        if report.failed:
            logger.warning("[API] Sources failed to stop: %s", report.failed)

    app = FastAPI(title="Historian Source Ingest", version=__version__, lifespan=lifespan)

    @app.exception_handler(ConfigValidationError)
    async def config_error_handler(request: Request, exc: ConfigValidationError):
        return JSONResponse(
            status_code=400,
            content={"detail": str(exc), "missingFields": exc.missing_fields},
        )

    @app.exception_handler(SourceNotFoundError)
    async def not_found_handler(request: Request, exc: SourceNotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    app.include_router(health_router)
    app.include_router(data_sources_router)
    return app
