from typing import Annotated

from fastapi import Depends, Request

from export_worker.services.job_store import ExportJobStore
from export_worker.services.submission import ExportSubmissionService
from export_worker.worker.orchestrator import ExportOrchestrator


def get_orchestrator(request: Request) -> ExportOrchestrator:
    return request.app.state.orchestrator


def get_job_store(request: Request) -> ExportJobStore:
    return request.app.state.job_store


def get_submission_service(request: Request) -> ExportSubmissionService:
    return request.app.state.submission_service


Orchestrator = Annotated[ExportOrchestrator, Depends(get_orchestrator)]
JobStore = Annotated[ExportJobStore, Depends(get_job_store)]
SubmissionService = Annotated[ExportSubmissionService, Depends(get_submission_service)]
