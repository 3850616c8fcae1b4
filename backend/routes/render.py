"""API routes for render jobs."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, HTTPException, Request, Response, WebSocket
from fastapi.responses import FileResponse
from starlette.websockets import WebSocketDisconnect

from models import (
    CreateRenderJobRequest,
    JobStatusResponse,
    RenderJob,
    RenderProgress,
    RenderRequest,
    RenderStatus,
)
from services.compositions import UnknownCompositionError, UnsupportedFormatError
from services.render_queue import InvalidTransitionError, JobNotFoundError
from services.render_service import RenderService

router = APIRouter()


def _service(request: Request) -> RenderService:
    return request.app.state.render_service


def _get_job_or_404(service: RenderService, job_id: str) -> RenderJob:
    job = service.get_job(job_id)
    if not job:
        raise HTTPException(404, f"Render job '{job_id}' not found.")
    return job


# ---------------------------------------------------------------------------
# POST /api/render
# ---------------------------------------------------------------------------
@router.post("/", response_model=RenderJob, status_code=201)
async def create_render_job(body: CreateRenderJobRequest, request: Request):
    """Queue a new render job. Returns immediately with status 'queued'."""
    try:
        return _service(request).create_job(RenderRequest(**body.model_dump()))
    except (UnknownCompositionError, UnsupportedFormatError) as e:
        raise HTTPException(400, str(e))


# ---------------------------------------------------------------------------
# GET /api/render  (list all jobs)
# ---------------------------------------------------------------------------
@router.get("/", response_model=list[RenderJob])
async def list_render_jobs(request: Request, status: Optional[RenderStatus] = None):
    """List render jobs (most recent first), optionally filtered by status."""
    jobs = _service(request).get_jobs()
    if status is not None:
        jobs = [j for j in jobs if j.status == status]
    return sorted(jobs, key=lambda j: j.created_at, reverse=True)


# ---------------------------------------------------------------------------
# POST /api/render/bundle/invalidate
# ---------------------------------------------------------------------------
@router.post("/bundle/invalidate")
async def invalidate_bundle(request: Request):
    """Force the next job to rebuild the composition bundle."""
    _service(request).invalidate_bundle()
    return {"status": "ok"}


# ---------------------------------------------------------------------------
# GET /api/render/{job_id}
# ---------------------------------------------------------------------------
@router.get("/{job_id}", response_model=RenderJob)
async def get_render_job(job_id: str, request: Request):
    return _get_job_or_404(_service(request), job_id)


# ---------------------------------------------------------------------------
# GET /api/render/{job_id}/status
# ---------------------------------------------------------------------------
@router.get("/{job_id}/status", response_model=JobStatusResponse)
async def get_render_status(job_id: str, request: Request):
    """Lightweight status poll."""
    job = _get_job_or_404(_service(request), job_id)

    download_url = None
    if job.status == RenderStatus.COMPLETED:
        download_url = f"/api/render/{job_id}/download"

    return JobStatusResponse(
        id=job.id,
        status=job.status,
        progress=job.progress,
        error=job.error,
        download_url=download_url,
    )


# ---------------------------------------------------------------------------
# POST /api/render/{job_id}/cancel
# ---------------------------------------------------------------------------
@router.post("/{job_id}/cancel", response_model=RenderJob)
async def cancel_render_job(job_id: str, request: Request, response: Response):
    """Cancel a job. 202 while a running job is still stopping."""
    try:
        job = _service(request).cancel_job(job_id)
    except JobNotFoundError:
        raise HTTPException(404, f"Render job '{job_id}' not found.")
    except InvalidTransitionError as e:
        raise HTTPException(409, str(e))

    if not job.status.is_terminal:
        response.status_code = 202
    return job


# ---------------------------------------------------------------------------
# GET /api/render/{job_id}/download
# ---------------------------------------------------------------------------
@router.get("/{job_id}/download")
async def download_video(job_id: str, request: Request):
    """Download the rendered MP4."""
    job = _get_job_or_404(_service(request), job_id)

    if job.status != RenderStatus.COMPLETED:
        raise HTTPException(400, "Video is not ready yet.")

    if not Path(job.output_path).exists():
        raise HTTPException(404, "Video file not found on disk.")

    return FileResponse(
        job.output_path,
        media_type="video/mp4",
        filename=Path(job.output_path).name,
    )


# ---------------------------------------------------------------------------
# GET /api/render/{job_id}/thumbnail
# ---------------------------------------------------------------------------
@router.get("/{job_id}/thumbnail")
async def download_thumbnail(job_id: str, request: Request):
    job = _get_job_or_404(_service(request), job_id)

    if not job.thumbnail_path or not Path(job.thumbnail_path).exists():
        raise HTTPException(404, "Thumbnail not available.")

    return FileResponse(job.thumbnail_path, media_type="image/jpeg")


# ---------------------------------------------------------------------------
# WS /api/render/{job_id}/progress
# ---------------------------------------------------------------------------
@router.websocket("/{job_id}/progress")
async def stream_progress(websocket: WebSocket, job_id: str):
    """Send the current job state, then every progress event until the job ends."""
    service: RenderService = websocket.app.state.render_service
    await websocket.accept()

    job = service.get_job(job_id)
    if job is None:
        await websocket.close(code=4404, reason="Render job not found")
        return

    events: asyncio.Queue[RenderProgress] = asyncio.Queue()
    unsubscribe = service.subscribe_to_progress(job_id, events.put_nowait)
    try:
        event = RenderProgress(job_id=job.id, status=job.status, progress=job.progress)
        while True:
            await websocket.send_json(event.model_dump(mode="json"))
            if event.status.is_terminal:
                break
            event = await events.get()
        await websocket.close()
    except WebSocketDisconnect:
        pass
    finally:
        unsubscribe()
