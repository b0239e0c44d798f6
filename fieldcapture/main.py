"""FieldCapture FastAPI backend: main application entry point."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fieldcapture import config
from fieldcapture.capture_sessions import SessionService
from fieldcapture.db import connection, migrations
from fieldcapture.dispatcher import WebhookDispatcher
from fieldcapture.ingestion import ResultIngestor
from fieldcapture.observability import initialize as initialize_observability, shutdown as shutdown_observability
from fieldcapture.retry import RetryCoordinator
from fieldcapture.routers.captures import captures_router
from fieldcapture.routers.projects import projects_router
from fieldcapture.routers.sessions import sessions_router
from fieldcapture.routers.settings import settings_router
from fieldcapture.routers.sync import sync_router
from fieldcapture.routers.tasks import tasks_router
from fieldcapture.routers.webhook import webhook_router
from fieldcapture.store import FieldStore

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("fieldcapture")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info("FieldCapture backend starting up")
    initialize_observability(app)

    # 1. Initialize DB connection
    db = await connection.get_connection()

    # 2. Run migrations
    await migrations.run_migrations(db)

    # 3. Application state and the services that share it
    store = FieldStore(db)
    await store.load_all()
    session_service = SessionService(store)
    ingestor = ResultIngestor(store)
    dispatcher = WebhookDispatcher(
        store,
        session_service,
        ingestor,
        timeout=config.WEBHOOK_TIMEOUT_SECONDS,
        media_root=config.MEDIA_ROOT,
    )
    retry_coordinator = RetryCoordinator(store, dispatcher)

    app.state.store = store
    app.state.session_service = session_service
    app.state.ingestor = ingestor
    app.state.dispatcher = dispatcher
    app.state.retry_coordinator = retry_coordinator

    # 4. Background auto-sync of ended sessions
    await retry_coordinator.start(
        config.AUTO_SYNC_INTERVAL_SECONDS,
        startup_delay=config.AUTO_SYNC_STARTUP_DELAY_SECONDS,
    )

    yield

    logger.info("FieldCapture backend shutting down")
    await retry_coordinator.stop()
    shutdown_observability(app)
    await connection.close_connection()


app = FastAPI(
    title="FieldCapture API",
    description="Backend API for field capture sessions, webhook dispatch and result ingestion",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS for the mobile/web client dev servers
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        config.FRONTEND_ORIGIN,
        "http://localhost:19006",
        "http://127.0.0.1:8081",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(projects_router)
app.include_router(captures_router)
app.include_router(sessions_router)
app.include_router(tasks_router)
app.include_router(sync_router)
app.include_router(webhook_router)
app.include_router(settings_router)


@app.get("/api/health")
def health():
    """Health check endpoint."""
    retry_coordinator = getattr(app.state, "retry_coordinator", None)
    return {
        "status": "ok",
        "db": "connected" if connection._connection else "disconnected",
        "autoSync": "running" if retry_coordinator and retry_coordinator.is_running else "stopped",
    }


def run() -> None:
    import uvicorn

    uvicorn.run("fieldcapture.main:app", host=config.HOST, port=config.PORT)
