from __future__ import annotations

import asyncio
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.messages import router as messages_router
from app.core.container import Services, build_services
from app.core.settings import get_settings
from app.services.cleanup import cache_maintenance_loop


def create_app(services: Services | None = None) -> FastAPI:
    settings = services.settings if services is not None else get_settings()
    logging.basicConfig(level=settings.log_level.upper())

    app = FastAPI(title=settings.app_name)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(messages_router, prefix=settings.api_prefix)
    app.state.services = services

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.on_event("startup")
    async def on_startup() -> None:
        if app.state.services is None:
            app.state.services = build_services(settings)
        await app.state.services.initialize()
        app.state.maintenance_stop_event = asyncio.Event()
        app.state.maintenance_task = asyncio.create_task(
            cache_maintenance_loop(
                app.state.services.cache,
                app.state.maintenance_stop_event,
                settings.cache_maintenance_interval_sec,
            )
        )

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        app.state.maintenance_stop_event.set()
        await app.state.maintenance_task
        await app.state.services.aclose()

    return app


app = create_app()
