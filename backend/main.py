import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import Settings, configure_logging, get_settings
from connection_manager import UpdateBroker
from database import Store
from routes import rooms, votes, stream, ws

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store = Store(settings.resolved_database_url)
        await store.init()
        app.state.store = store
        app.state.broker = UpdateBroker()
        logger.info("Vote tracker ready (%s)", store.database_url)
        try:
            yield
        finally:
            await store.dispose()

    app = FastAPI(title="Vote Tracker API", lifespan=lifespan)
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request, call_next):
        response = await call_next(request)
        logger.info("%s %s -> %s", request.method, request.url.path, response.status_code)
        return response

    # Include Routers
    app.include_router(rooms.router)
    app.include_router(votes.router)
    app.include_router(stream.router)
    app.include_router(ws.router)

    @app.get("/")
    async def root():
        return {"status": "ok", "message": "Vote Tracker API is running"}

    return app
