from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .api.connection import router as connection_router
from .api.debug_log import router as debug_log_router
from .api.event_log import router as event_log_router
from .api.events import router as events_router
from .api.health import router as health_router
from .config import config
from .runtime import build_runtime

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    runtime = build_runtime(config)
    app.state.runtime = runtime

    await runtime.start()
    runtime.event_log.log_system("Telemetry service started")
    logger.info("appwatch started (data dir %s)", config.data_path)
    yield
    logger.info("appwatch shutting down")

    await runtime.stop()


app = FastAPI(title="appwatch", version=__version__, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(debug_log_router)
app.include_router(event_log_router)
app.include_router(health_router)
app.include_router(connection_router)
app.include_router(events_router)


@app.get("/health")
async def health():
    return {"status": "ok"}
