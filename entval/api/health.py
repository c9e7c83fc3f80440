"""Health and metrics endpoints."""

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "ok"}


@router.get("/metrics")
async def metrics(request: Request):
    """Basic metrics endpoint for observability."""
    scheduler = getattr(request.app.state, "scheduler", None)
    return {
        "service": "entval",
        "version": "0.1.0",
        "worker_running": bool(scheduler and scheduler.running),
    }
