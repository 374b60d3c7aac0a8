"""Offline sync endpoints: connectivity signal, queue status and draining.

Replays can run many store writes back to back, so they are run in a worker
thread rather than on the event loop.
"""
import asyncio
from dataclasses import asdict
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from app.dependencies import get_pipeline, get_signal
from app.services.offline_queue import ConnectivitySignal, OfflineSubmissionPipeline

router = APIRouter(prefix="/api/sync", tags=["sync"])


class ConnectivityUpdate(BaseModel):
    """Connectivity state pushed by the client or network monitor."""
    is_connected: bool


@router.post("/connectivity")
async def push_connectivity(
    body: ConnectivityUpdate,
    signal: ConnectivitySignal = Depends(get_signal),
    pipeline: OfflineSubmissionPipeline = Depends(get_pipeline)
):
    """Push connectivity; a transition to online triggers one drain pass."""
    # Subscribers run inside publish(), including the drain
    changed = await asyncio.to_thread(signal.publish, body.is_connected)
    return {"connected": signal.is_connected, "changed": changed, "queued": pipeline.queue.count()}


@router.get("/status")
async def sync_status(pipeline: OfflineSubmissionPipeline = Depends(get_pipeline)):
    """Queue depth, per-entry attempts and exhausted-retry warnings."""
    return pipeline.status()


@router.post("/drain")
async def drain_queue(
    force: bool = False,
    pipeline: OfflineSubmissionPipeline = Depends(get_pipeline)
):
    """Replay queued updates and flush deferred ones."""
    report = await asyncio.to_thread(pipeline.drain, force)
    flushed = await asyncio.to_thread(pipeline.flush_deferred)
    response = asdict(report)
    response["blocked_until"] = report.blocked_until.isoformat() if report.blocked_until else None
    response["deferred_flushed"] = sum(len(results) for results in flushed.values())
    return response
