from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api import (
    metrics_router,
    alerts_router,
    channels_router,
    executions_router,
    realtime_router,
    ws_router,
    feed_router,
    export_router,
)
from config import Settings, load_settings
from core.logs import configure_logging
from services import MonitoringPlatform


def create_app(settings: Optional[Settings] = None, platform: Optional[MonitoringPlatform] = None) -> FastAPI:
    if platform is not None:
        settings = platform.settings
    settings = settings or load_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.platform = platform or MonitoringPlatform(settings)
        await app.state.platform.start()
        yield
        await app.state.platform.shutdown()

    app = FastAPI(
        title=settings.app_name,
        version=settings.version,
        lifespan=lifespan,
        docs_url="/docs",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(metrics_router, prefix="/api")
    app.include_router(alerts_router, prefix="/api")
    app.include_router(channels_router, prefix="/api")
    app.include_router(executions_router, prefix="/api")
    app.include_router(realtime_router, prefix="/api")
    app.include_router(feed_router, prefix="/api")
    app.include_router(export_router, prefix="/api")
    app.include_router(ws_router)

    @app.get("/")
    async def root():
        return {
            "name": settings.app_name,
            "version": settings.version,
            "docs": "/docs",
        }

    @app.get("/health")
    async def health():
        platform = app.state.platform
        queue = platform.scheduler.queue_status()
        realtime = platform.realtime.stats()

        return {
            "status": "healthy",
            "alerts": {
                "rules": len(platform.evaluator.get_rules()),
                "history_size": platform.evaluator.stats()["history_size"],
            },
            "executions": {
                "pending": queue["pending"],
                "running": queue["running"],
                "max_concurrent": queue["max_concurrent"],
            },
            "realtime": {
                "clients": realtime["total_clients"],
            },
            "metrics_feed": {
                "is_running": platform.feed.is_running,
                "url": platform.feed.url,
                "messages_received": platform.feed.stats.messages_received,
            },
        }

    @app.get("/api/stats")
    async def stats():
        return app.state.platform.stats()

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    _settings = load_settings()
    uvicorn.run("main:app", host=_settings.host, port=_settings.port, reload=True)
