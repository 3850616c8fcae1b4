"""Render service – turns render requests into jobs and drives them to completion.

Per-job lifecycle:
  1. bundling   – wait for the shared composition bundle
  2. rendering  – resolve the composition and hand it to the engine
  3. encoding   – reported by the engine once frames are being encoded
  4. thumbnail  – best effort still frame a quarter of the way in
  5. completed / failed / cancelled
"""

from __future__ import annotations

import asyncio
import dataclasses
import functools
import logging
import uuid
from pathlib import Path
from typing import Optional

import config
from models import Quality, RenderJob, RenderProgress, RenderRequest, RenderStatus, utcnow
from services.bundle_manager import BundleManager
from services.compositions import (
    DIMENSIONS,
    QUALITY_PRESETS,
    CompositionInfo,
    UnsupportedFormatError,
    get_composition,
    list_compositions,
)
from services.engine import EngineProgress, RenderEngine
from services.render_queue import (
    InvalidTransitionError,
    JobNotFoundError,
    ProgressCallback,
    RenderQueue,
)

logger = logging.getLogger("renderflow.render")


class RenderError(Exception):
    """Raised by ``render_composition`` when the job does not complete."""


class RenderTimeoutError(RenderError):
    """Raised when a job exceeds its deadline."""


class RenderService:
    """Creates render jobs and processes them up to the queue's concurrency cap."""

    def __init__(
        self,
        queue: RenderQueue,
        bundles: BundleManager,
        engine: RenderEngine,
        output_dir: Path = config.OUTPUTS_DIR,
        job_timeout: Optional[float] = config.RENDER_JOB_TIMEOUT,
        default_fps: int = config.DEFAULT_FPS,
    ) -> None:
        self.queue = queue
        self.bundles = bundles
        self.engine = engine
        self.output_dir = Path(output_dir)
        self.job_timeout = job_timeout or None
        self.default_fps = default_fps
        self._tasks: dict[str, asyncio.Task] = {}
        self._draining = False

        self.output_dir.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Job management
    # ------------------------------------------------------------------
    def create_job(self, request: RenderRequest) -> RenderJob:
        """Validate, enqueue and return a snapshot of the new job.

        Raises ``UnknownCompositionError`` / ``UnsupportedFormatError`` before
        anything is queued. Processing starts in the background when called
        from the event loop; otherwise the job waits until ``process_queue``
        runs inside it.
        """
        composition = get_composition(request.composition_id)
        if request.format not in composition.formats:
            raise UnsupportedFormatError(
                f"Composition {composition.id} does not support format {request.format.value}"
            )

        dims = DIMENSIONS[request.format]
        filename = request.output_filename or f"{composition.id}_{uuid.uuid4().hex[:8]}.mp4"
        output_dir = Path(request.output_dir) if request.output_dir else self.output_dir

        job = RenderJob(
            id=uuid.uuid4().hex,
            composition_id=composition.id,
            input_props=dict(request.input_props),
            format=request.format,
            width=dims.width,
            height=dims.height,
            duration=request.duration or composition.default_duration,
            fps=request.fps or self.default_fps,
            quality=request.quality or Quality.STANDARD,
            output_path=str(output_dir / filename),
        )
        self.queue.add(job)
        self.process_queue()
        return job.model_copy(deep=True)

    def get_job(self, job_id: str) -> Optional[RenderJob]:
        job = self.queue.get(job_id)
        return job.model_copy(deep=True) if job else None

    def get_jobs(self) -> list[RenderJob]:
        return [job.model_copy(deep=True) for job in self.queue.get_all()]

    def subscribe_to_progress(self, job_id: str, callback: ProgressCallback):
        return self.queue.subscribe(job_id, callback)

    def list_compositions(self) -> list[CompositionInfo]:
        return list_compositions()

    def invalidate_bundle(self) -> None:
        self.bundles.invalidate()

    def cancel_job(self, job_id: str) -> RenderJob:
        """Cancel a waiting or running job.

        A queued job is dropped from the pending list and the returned
        snapshot is already ``cancelled``. A running job has its task
        cancelled, which stops the engine call; the snapshot is taken before
        the task unwinds, so it still shows the running status and the job
        turns ``cancelled`` shortly after.
        """
        job = self.queue.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.status.is_terminal:
            raise InvalidTransitionError(f"Cannot cancel job with status {job.status.value}")

        if self.queue.remove_pending(job_id):
            self.queue.update(job_id, status=RenderStatus.CANCELLED, completed_at=utcnow())
        else:
            task = self._tasks.get(job_id)
            if task is not None:
                task.cancel()
        logger.info("Job %s cancellation requested (was %s)", job_id, job.status.value)
        return job.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Queue processing
    # ------------------------------------------------------------------
    def process_queue(self) -> None:
        """Start jobs until the concurrency cap is reached. Never waits for them."""
        if self._draining:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Jobs stay pending until a call from inside the loop picks them up
            logger.warning(
                "No running event loop; %d job(s) left pending", self.queue.pending_count
            )
            return
        self._draining = True
        try:
            while self.queue.can_process():
                job = self.queue.dequeue()
                if job is None:
                    break
                task = loop.create_task(self.process_job(job), name=f"render-{job.id}")
                self._tasks[job.id] = task
                task.add_done_callback(functools.partial(self._on_job_done, job.id))
        finally:
            self._draining = False

    def _on_job_done(self, job_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(job_id) is task:
            # Cancelled before process_job ever ran, so its cleanup never happened
            self._tasks.pop(job_id)
            self.queue.complete(job_id)
            if not self.queue.get(job_id).status.is_terminal:
                self.queue.update(job_id, status=RenderStatus.CANCELLED, completed_at=utcnow())
            self.process_queue()
        if task.cancelled():
            return
        err = task.exception()
        if err is not None:
            logger.error("Job %s failed: %s", job_id, err, exc_info=err)

    async def process_job(self, job: RenderJob) -> None:
        job_id = job.id
        try:
            await asyncio.wait_for(self._run_job(job), timeout=self.job_timeout)
        except asyncio.TimeoutError:
            message = f"Render timed out after {self.job_timeout:g} seconds"
            self._mark_failed(job_id, message)
            raise RenderTimeoutError(message) from None
        except asyncio.CancelledError:
            if not self.queue.get(job_id).status.is_terminal:
                self.queue.update(job_id, status=RenderStatus.CANCELLED, completed_at=utcnow())
            raise
        except Exception as e:
            self._mark_failed(job_id, str(e) or e.__class__.__name__)
            raise
        finally:
            self.queue.complete(job_id)
            self._tasks.pop(job_id, None)
            # Pull the next waiting job into the freed slot
            self.process_queue()

    async def _run_job(self, job: RenderJob) -> None:
        job_id = job.id
        self.queue.update(job_id, status=RenderStatus.BUNDLING, started_at=utcnow())
        logger.info("[%s] Bundling …", job_id)
        bundle_location = await self.bundles.get_bundle()

        self.queue.update(job_id, status=RenderStatus.RENDERING)
        logger.info(
            "[%s] Rendering %s at %dx%d, %s s @ %d fps (%s)",
            job_id, job.composition_id, job.width, job.height,
            job.duration, job.fps, job.quality.value,
        )
        resolved = await self.engine.resolve_composition(
            bundle_location, job.composition_id, job.input_props
        )
        composition = dataclasses.replace(
            resolved,
            width=job.width,
            height=job.height,
            fps=job.fps,
            duration_in_frames=job.total_frames,
        )
        Path(job.output_path).parent.mkdir(parents=True, exist_ok=True)

        def on_progress(update: EngineProgress) -> None:
            status = RenderStatus.ENCODING if update.encoded_frames > 0 else RenderStatus.RENDERING
            if self.queue.get(job_id).status == RenderStatus.ENCODING:
                status = RenderStatus.ENCODING
            # 100 is reserved for the completed state
            self.queue.update(job_id, status=status, progress=min(round(update.progress * 100), 99))

        await self.engine.render(
            composition, job.output_path, QUALITY_PRESETS[job.quality], on_progress
        )

        thumbnail_path = await self._render_thumbnail(job, composition)

        self.queue.update(
            job_id,
            status=RenderStatus.COMPLETED,
            progress=100,
            thumbnail_path=thumbnail_path,
            completed_at=utcnow(),
        )
        logger.info("[%s] Render complete: %s", job_id, job.output_path)

    async def _render_thumbnail(self, job: RenderJob, composition) -> Optional[str]:
        output = Path(job.output_path)
        thumbnail_path = output.with_name(f"{output.stem}_thumb.jpg")
        try:
            await self.engine.render_still(
                composition, str(thumbnail_path), frame=job.total_frames // 4
            )
        except Exception as e:
            logger.warning("[%s] Thumbnail generation failed: %s", job.id, e)
            return None
        return str(thumbnail_path) if thumbnail_path.exists() else None

    def _mark_failed(self, job_id: str, message: str) -> None:
        logger.error("[%s] Render failed: %s", job_id, message)
        self.queue.update(
            job_id, status=RenderStatus.FAILED, error=message, completed_at=utcnow()
        )

    # ------------------------------------------------------------------
    # Convenience
    # ------------------------------------------------------------------
    async def render_composition(self, request: RenderRequest) -> str:
        """Create a job and wait for it; returns the output path."""
        job = self.create_job(request)
        done: asyncio.Future[str] = asyncio.get_running_loop().create_future()

        def on_progress(event: RenderProgress) -> None:
            if done.done():
                return
            if event.status == RenderStatus.COMPLETED:
                done.set_result(self.queue.get(job.id).output_path)
            elif event.status in (RenderStatus.FAILED, RenderStatus.CANCELLED):
                error = self.queue.get(job.id).error or f"Render {event.status.value}"
                done.set_exception(RenderError(error))

        unsubscribe = self.subscribe_to_progress(job.id, on_progress)
        try:
            return await done
        finally:
            unsubscribe()

    async def drain(self) -> None:
        """Wait until every queued and running job has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel waiting and running jobs and wait for their tasks to unwind."""
        for job in self.queue.get_pending():
            self.cancel_job(job.id)
        for task in list(self._tasks.values()):
            task.cancel()
        await self.drain()
        logger.info("Render service stopped.")
