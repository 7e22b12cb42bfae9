"""FastAPI entrypoint: wires config, container, routes, and lifecycle hooks."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from trace_assistant.api.http.health import router as health_router
from trace_assistant.api.http.sessions import router as sessions_router
from trace_assistant.core.config import Settings
from trace_assistant.core.container import build_container
from trace_assistant.core.lifecycle import on_shutdown, on_startup
from trace_assistant.infra.observability.logger import setup_logging


# Assemble the app: settings, logging, container, lifecycle, routers.
def create_app() -> FastAPI:
    settings = Settings.from_env()
    setup_logging(settings.log_level, reducer_level=settings.reducer_log_level)
    container = build_container(settings)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        on_startup(container)
        try:
            yield
        finally:
            on_shutdown(container)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router)
    app.include_router(sessions_router)

    return app


app = create_app()
