"""Entitlement validation FastAPI application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from entval.api.health import router as health_router
from entval.api.validation import router as validation_router
from entval.config import settings
from entval.database import async_session_maker
from entval.lookup.sml_client import SMLClient
from entval.worker.runner import ValidationScheduler, ValidationWorker

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    worker = ValidationWorker.from_settings(async_session_maker, SMLClient.from_settings(settings), settings)
    app.state.worker = worker
    app.state.scheduler = None
    if settings.worker_enabled:
        scheduler = ValidationScheduler(worker, settings.poll_interval_seconds)
        scheduler.start()
        app.state.scheduler = scheduler
    else:
        logger.info("Background worker disabled, async rules run only via /v1/validation/async-run")
    try:
        yield
    finally:
        if app.state.scheduler is not None:
            await app.state.scheduler.stop()


app = FastAPI(
    title="Entval - Entitlement Validation Service",
    description="Validates provisioning request entitlements with sync rules and queued SML checks",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_router, tags=["Health"])
app.include_router(validation_router, prefix="/v1/validation", tags=["Validation"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {"service": "entval", "version": "0.1.0", "docs": "/docs"}
