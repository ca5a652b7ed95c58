"""Export job persistence.

The worker only mutates jobs through these methods. ``claim`` is the single
cross-process synchronization point: it is a conditional UPDATE guarded by
``status = 'queued'``, so of two workers racing for the same row exactly one
sees ``rowcount == 1``.
"""

import logging
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from export_worker.models.export_job import COMPLETED, FAILED, PROCESSING, QUEUED, ExportJob

logger = logging.getLogger(__name__)


class ExportJobStore:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def create(
        self,
        *,
        user_id: str,
        project_id: str,
        width: int,
        height: int,
        fps: int,
        duration: float,
        job_id: UUID | None = None,
    ) -> ExportJob:
        job = ExportJob(
            user_id=user_id,
            project_id=project_id,
            status=QUEUED,
            progress=0,
            width=width,
            height=height,
            fps=fps,
            duration=duration,
        )
        if job_id is not None:
            job.id = job_id
        async with self.session_maker() as session:
            session.add(job)
            await session.commit()
            await session.refresh(job)
        return job

    async def get(self, job_id: UUID) -> ExportJob | None:
        async with self.session_maker() as session:
            return await session.get(ExportJob, job_id)

    async def fetch_oldest_queued(self) -> ExportJob | None:
        async with self.session_maker() as session:
            result = await session.execute(
                select(ExportJob)
                .where(ExportJob.status == QUEUED)
                .order_by(ExportJob.created_at.asc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def claim(self, job_id: UUID) -> bool:
        """Move a job from queued to processing. False if someone else got it first."""
        async with self.session_maker() as session:
            result = await session.execute(
                update(ExportJob)
                .where(ExportJob.id == job_id, ExportJob.status == QUEUED)
                .values(status=PROCESSING, progress=0)
            )
            await session.commit()
        return result.rowcount == 1

    async def update_progress(self, job_id: UUID, progress: int) -> None:
        async with self.session_maker() as session:
            await session.execute(
                update(ExportJob).where(ExportJob.id == job_id).values(progress=progress)
            )
            await session.commit()

    async def mark_completed(self, job_id: UUID, download_url: str) -> None:
        async with self.session_maker() as session:
            await session.execute(
                update(ExportJob)
                .where(ExportJob.id == job_id)
                .values(
                    status=COMPLETED,
                    progress=100,
                    download_url=download_url,
                    completed_at=datetime.now(timezone.utc),
                )
            )
            await session.commit()

    async def mark_failed(self, job_id: UUID, error_message: str) -> None:
        async with self.session_maker() as session:
            await session.execute(
                update(ExportJob)
                .where(ExportJob.id == job_id)
                .values(
                    status=FAILED,
                    error_message=error_message,
                    completed_at=datetime.now(timezone.utc),
                )
            )
            await session.commit()
