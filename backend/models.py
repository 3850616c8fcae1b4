"""Pydantic models for render jobs and API request/response schemas."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class RenderStatus(str, Enum):
    QUEUED = "queued"
    BUNDLING = "bundling"
    RENDERING = "rendering"
    ENCODING = "encoding"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {RenderStatus.COMPLETED, RenderStatus.FAILED, RenderStatus.CANCELLED}
)


class OutputFormat(str, Enum):
    LANDSCAPE = "landscape"
    PORTRAIT = "portrait"
    SQUARE = "square"


class Quality(str, Enum):
    DRAFT = "draft"
    STANDARD = "standard"
    HIGH = "high"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CreateRenderJobRequest(BaseModel):
    """Body of ``POST /api/render``. Output location is always server-chosen."""

    model_config = ConfigDict(extra="forbid")

    composition_id: str = Field(min_length=1)
    input_props: dict[str, Any] = Field(default_factory=dict)
    format: OutputFormat = OutputFormat.LANDSCAPE
    duration: Optional[float] = Field(default=None, gt=0, le=300)
    fps: Optional[int] = Field(default=None, ge=24, le=60)
    quality: Optional[Quality] = None


class RenderRequest(CreateRenderJobRequest):
    """What an in-process caller asks to have rendered."""

    output_dir: Optional[str] = None
    output_filename: Optional[str] = None


class RenderJob(BaseModel):
    """A render job record. Only ``RenderQueue.update`` mutates one."""

    id: str
    composition_id: str
    input_props: dict[str, Any] = Field(default_factory=dict)
    format: OutputFormat
    width: int
    height: int
    duration: float
    fps: int
    quality: Quality

    status: RenderStatus = RenderStatus.QUEUED
    progress: int = 0  # 0-100
    error: Optional[str] = None
    output_path: str
    thumbnail_path: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def total_frames(self) -> int:
        return max(1, round(self.duration * self.fps))


class RenderProgress(BaseModel):
    """Snapshot pushed to subscribers on every job update."""

    job_id: str
    status: RenderStatus
    progress: int


class JobStatusResponse(BaseModel):
    id: str
    status: RenderStatus
    progress: int
    error: Optional[str] = None
    download_url: Optional[str] = None
