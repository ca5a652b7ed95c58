"""Worker HTTP endpoints: liveness, new-job notification and job lookup."""

import logging
from uuid import UUID

from fastapi import APIRouter, HTTPException, status

from export_worker.api.deps import JobStore, Orchestrator, SubmissionService
from export_worker.config import get_settings
from export_worker.exceptions import TransientAssetReferenceError, UploadError
from export_worker.schemas.export_job import ExportJobResponse, ExportRequest, WorkerHealth

router = APIRouter()
logger = logging.getLogger(__name__)
settings = get_settings()


@router.get("/health", response_model=WorkerHealth)
async def health_check(orchestrator: Orchestrator) -> WorkerHealth:
    return WorkerHealth(
        status="healthy",
        version=settings.app_version,
        active_jobs=orchestrator.active_jobs,
        max_concurrent_jobs=orchestrator.max_concurrent_jobs,
    )


@router.post("/webhook/new-job", status_code=status.HTTP_202_ACCEPTED)
async def new_job_webhook(orchestrator: Orchestrator) -> dict:
    """Ask the worker to poll now rather than at the next tick."""
    logger.info("[WEBHOOK] New job notification received")
    orchestrator.trigger()
    return {"status": "accepted"}


@router.post("/exports", response_model=ExportJobResponse, status_code=status.HTTP_201_CREATED)
async def create_export(
    request: ExportRequest,
    submission_service: SubmissionService,
    orchestrator: Orchestrator,
) -> ExportJobResponse:
    try:
        job = await submission_service.submit(request.user_id, request.project_id, request.timeline_data)
    except TransientAssetReferenceError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.message)
    except UploadError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)

    orchestrator.trigger()
    return ExportJobResponse.model_validate(job)


@router.get("/exports/{job_id}", response_model=ExportJobResponse)
async def get_export(job_id: UUID, job_store: JobStore) -> ExportJobResponse:
    job = await job_store.get(job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Export job not found")
    return ExportJobResponse.model_validate(job)
