import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import uvicorn
from fastapi import FastAPI

from export_worker.api import worker
from export_worker.config import get_settings
from export_worker.models.database import async_session_maker, engine, init_db
from export_worker.services.job_store import ExportJobStore
from export_worker.services.storage_service import get_input_storage, get_output_storage
from export_worker.services.submission import ExportSubmissionService
from export_worker.worker.orchestrator import ExportOrchestrator

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    await init_db()
    job_store = ExportJobStore(async_session_maker)
    input_storage = get_input_storage()
    orchestrator = ExportOrchestrator(job_store, input_storage, get_output_storage(), settings)

    app.state.job_store = job_store
    app.state.orchestrator = orchestrator
    app.state.submission_service = ExportSubmissionService(job_store, input_storage)

    orchestrator.start()
    yield
    # Shutdown
    await orchestrator.stop()
    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)

app.include_router(worker.router, tags=["worker"])


def run() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
