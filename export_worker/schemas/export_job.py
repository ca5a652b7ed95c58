from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from export_worker.schemas.timeline import TimelineDocument

ExportJobStatus = Literal["queued", "processing", "completed", "failed"]


class ExportJobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: str
    project_id: str
    status: ExportJobStatus
    width: int
    height: int
    fps: int
    duration: float
    progress: int
    download_url: str | None
    error_message: str | None
    created_at: datetime
    completed_at: datetime | None


class WorkerHealth(BaseModel):
    status: str
    version: str
    active_jobs: list[UUID]
    max_concurrent_jobs: int


class ExportRequest(BaseModel):
    user_id: str
    project_id: str
    timeline_data: TimelineDocument
