"""
HTTP server for the live session control plane.
Can be run standalone (python -m control_plane) or mounted into an existing app.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI

from logging_setup import get_logger, Component
from . import control_api

logger = get_logger(Component.CONTROL_PLANE)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Release microphone, speaker and connection before the process exits
    await control_api.shutdown()
    logger.info("Control plane stopped")


app = FastAPI(title="Live Session Control Plane", lifespan=lifespan)
app.include_router(control_api.router)


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "ok", "component": "control_plane"}
