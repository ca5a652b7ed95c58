"""
Pytest fixtures for export worker tests.

Nothing here needs ffmpeg, a database server or cloud credentials:
- timelines are built in memory
- the orchestrator runs against in-memory fakes of the job store and buckets
- the claim race test uses a real SQLite file through aiosqlite
"""

import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

from export_worker.config import Settings
from export_worker.models.export_job import COMPLETED, FAILED, PROCESSING, QUEUED, ExportJob
from export_worker.schemas.timeline import TimelineDocument


def make_document(
    tracks: list[dict[str, Any]] | None = None,
    media_items: dict[str, dict[str, Any]] | None = None,
    **project: Any,
) -> TimelineDocument:
    """Build a timeline document from camelCase dicts, as clients send it."""
    project_data = {"canvasSize": {"width": 1920, "height": 1080}, "fps": 30, **project}
    return TimelineDocument.model_validate(
        {
            "project": project_data,
            "tracks": tracks or [],
            "mediaItems": media_items or {},
        }
    )


def video_element(element_id: str, media_id: str, start: float = 0, duration: float = 5, **extra: Any) -> dict:
    return {
        "id": element_id,
        "type": "media",
        "mediaId": media_id,
        "startTime": start,
        "duration": duration,
        "trimStart": extra.pop("trim_start", 0),
        **extra,
    }


def text_element(element_id: str, content: str, start: float = 0, duration: float = 2, **extra: Any) -> dict:
    return {
        "id": element_id,
        "type": "text",
        "content": content,
        "startTime": start,
        "duration": duration,
        **extra,
    }


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        scratch_dir=str(tmp_path / "scratch"),
        local_storage_path=str(tmp_path / "storage"),
        max_concurrent_jobs=2,
        poll_interval_seconds=0.05,
        render_timeout_seconds=5,
    )


@pytest.fixture
def simple_document() -> TimelineDocument:
    """1920x1080 project with one video clip and one caption."""
    return make_document(
        tracks=[
            {"id": "t-video", "type": "media", "elements": [video_element("e-video", "m1", start=0, duration=5)]},
            {"id": "t-text", "type": "text", "elements": [text_element("e-text", "Hi", start=1, duration=2)]},
        ],
        media_items={"m1": {"type": "video", "url": "https://cdn.example.com/m1.mp4"}},
    )


# =============================================================================
# In-memory fakes
# =============================================================================


class FakeJobStore:
    """Dict-backed stand-in for ExportJobStore with the same method surface."""

    def __init__(self):
        self.jobs: dict[uuid.UUID, ExportJob] = {}
        self.progress_updates: list[tuple[uuid.UUID, int]] = []
        self.fail_progress_writes = False
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def add_queued(self, user_id: str = "user-1", duration: float = 5.0) -> ExportJob:
        self._clock += timedelta(seconds=1)
        job = ExportJob(
            id=uuid.uuid4(),
            user_id=user_id,
            project_id="project-1",
            status=QUEUED,
            progress=0,
            width=1920,
            height=1080,
            fps=30,
            duration=duration,
            created_at=self._clock,
        )
        self.jobs[job.id] = job
        return job

    async def create(self, *, user_id, project_id, width, height, fps, duration, job_id=None) -> ExportJob:
        job = self.add_queued(user_id=user_id, duration=duration)
        del self.jobs[job.id]
        job.id = job_id or job.id
        job.project_id = project_id
        job.width, job.height, job.fps = width, height, fps
        self.jobs[job.id] = job
        return job

    async def get(self, job_id):
        return self.jobs.get(job_id)

    async def fetch_oldest_queued(self):
        queued = [job for job in self.jobs.values() if job.status == QUEUED]
        return min(queued, key=lambda job: job.created_at, default=None)

    async def claim(self, job_id) -> bool:
        job = self.jobs.get(job_id)
        if job is None or job.status != QUEUED:
            return False
        job.status = PROCESSING
        return True

    async def update_progress(self, job_id, progress: int) -> None:
        if self.fail_progress_writes:
            raise ConnectionError("database went away")
        self.progress_updates.append((job_id, progress))
        self.jobs[job_id].progress = progress

    async def mark_completed(self, job_id, download_url: str) -> None:
        job = self.jobs[job_id]
        job.status = COMPLETED
        job.progress = 100
        job.download_url = download_url
        job.completed_at = datetime.now(timezone.utc)

    async def mark_failed(self, job_id, error_message: str) -> None:
        job = self.jobs[job_id]
        job.status = FAILED
        job.error_message = error_message
        job.completed_at = datetime.now(timezone.utc)


class FakeBucket:
    """In-memory blob store with the storage service's async interface."""

    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.fail_uploads = False
        self.signed: list[tuple[str, int]] = []

    async def read_text(self, storage_key: str) -> str:
        if storage_key not in self.objects:
            raise FileNotFoundError(storage_key)
        return self.objects[storage_key].decode("utf-8")

    async def write_text(self, storage_key: str, text: str, content_type: str = "application/json") -> None:
        self.objects[storage_key] = text.encode("utf-8")

    async def upload_file(self, local_path, storage_key: str, content_type: str | None = None) -> None:
        if self.fail_uploads:
            raise ConnectionError("bucket unavailable")
        self.objects[storage_key] = Path(local_path).read_bytes()

    async def generate_download_url(self, storage_key: str, expires_minutes: int = 60) -> str:
        self.signed.append((storage_key, expires_minutes))
        return f"https://storage.example.com/{storage_key}?X-Goog-Expires={expires_minutes * 60}"


class FakeRunner:
    """Stands in for FFmpegRunner: reports progress and writes a dummy output."""

    def __init__(self, progress_steps: tuple[int, ...] = (25, 50, 99), error: Exception | None = None):
        self.progress_steps = progress_steps
        self.error = error
        self.calls: list[tuple[list[str], Path]] = []
        self.scratch_seen: list[Path] = []
        self.durations: list[float] = []

    async def run(self, arguments, output_path, duration_seconds, on_progress=None):
        output_path = Path(output_path)
        self.calls.append((list(arguments), output_path))
        self.scratch_seen.append(output_path.parent)
        self.durations.append(duration_seconds)
        for progress in self.progress_steps:
            if on_progress is not None:
                await on_progress(progress)
        if self.error is not None:
            raise self.error
        output_path.write_bytes(b"fake mp4")
        return output_path


@pytest.fixture
def job_store() -> FakeJobStore:
    return FakeJobStore()


@pytest.fixture
def input_bucket() -> FakeBucket:
    return FakeBucket()


@pytest.fixture
def output_bucket() -> FakeBucket:
    return FakeBucket()
