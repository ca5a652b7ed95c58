"""Creates export jobs from a client-supplied timeline document."""

import logging
import uuid

from export_worker.exceptions import TransientAssetReferenceError, UploadError
from export_worker.models.export_job import ExportJob
from export_worker.schemas.timeline import TimelineDocument, calculate_timeline_duration
from export_worker.services.job_store import ExportJobStore

logger = logging.getLogger(__name__)


class ExportSubmissionService:
    def __init__(self, job_store: ExportJobStore, input_storage):
        self.job_store = job_store
        self.input_storage = input_storage

    async def submit(self, user_id: str, project_id: str, document: TimelineDocument) -> ExportJob:
        """Store the timeline document and enqueue a job for it.

        The document is written before the row is inserted, so a worker never
        claims a queued job whose input is not there yet.

        Raises:
            TransientAssetReferenceError: a media item still has a ``blob:`` url
            UploadError: the document could not be written to input storage
        """
        for media_id, asset in document.media_items.items():
            if asset.url and asset.url.lower().startswith("blob:"):
                raise TransientAssetReferenceError(
                    "Resolve in-browser blob: URLs before exporting", media_id=media_id
                )

        job_id = uuid.uuid4()
        input_key = f"{user_id}/{job_id}/timeline.json"
        try:
            await self.input_storage.write_text(input_key, document.model_dump_json(by_alias=True))
        except Exception as e:
            logger.error(f"Failed to store timeline document {input_key}: {e}")
            raise UploadError(f"Failed to store timeline document: {e}") from e

        project = document.project
        job = await self.job_store.create(
            job_id=job_id,
            user_id=user_id,
            project_id=project_id,
            width=project.canvas_size.width,
            height=project.canvas_size.height,
            fps=project.fps,
            duration=calculate_timeline_duration(document.tracks),
        )
        logger.info(f"Queued export job {job.id} for project {project_id} ({job.duration:.3f}s)")
        return job
