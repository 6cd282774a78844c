"""
Administrative routes for the pocketstream HTTP host.

- POST /api/checkpoint: force a database checkpoint (not write-gated)
- GET /health: replication health from the last recorded check
"""

from __future__ import annotations

import logging
import sqlite3

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from ..replication import ReplicationSupervisor

logger = logging.getLogger(__name__)

router = APIRouter(tags=["pocketstream"])


class CheckpointResponse(BaseModel):
    """Successful checkpoint result."""

    status: str


def get_supervisor(request: Request) -> ReplicationSupervisor:
    """Get the replication supervisor from app state."""
    return request.app.state.supervisor


@router.post("/api/checkpoint", response_model=CheckpointResponse)
async def checkpoint(request: Request):
    """Force a WAL checkpoint so schema changes reach the main database file."""
    supervisor = get_supervisor(request)
    try:
        await run_in_threadpool(supervisor.checkpoint)
    except sqlite3.Error as e:
        logger.error(f"Checkpoint failed: {e}")
        return JSONResponse(status_code=500, content={"error": str(e)})
    return CheckpointResponse(status="checkpoint completed")


@router.get("/health")
async def health(request: Request):
    """Report service health; unhealthy replication yields 503."""
    if not request.app.state.config.replication_enabled:
        return {"status": "healthy", "replication": None}

    snapshot = get_supervisor(request).health.snapshot()
    body = {
        "status": "healthy" if snapshot.healthy else "unhealthy",
        "replication": snapshot.to_dict(),
    }
    return JSONResponse(status_code=200 if snapshot.healthy else 503, content=body)
