"""
Export job orchestrator.

Polls the job store for queued exports and runs up to ``max_concurrent_jobs``
of them at once, each as an asyncio task owned by the orchestrator. A job goes
queued -> processing -> completed | failed exactly once; there are no retries.

Both the polling timer and ``trigger()`` funnel into ``poll_once``, which
claims under a lock so the in-flight ceiling holds no matter how many wakeups
arrive together.
"""

import asyncio
import json
import logging
import shutil
from pathlib import Path
from uuid import UUID

import httpx
from pydantic import ValidationError

from export_worker.config import Settings, get_settings
from export_worker.exceptions import (
    ExportWorkerError,
    InputFetchError,
    TimelineParseError,
    UploadError,
)
from export_worker.models.export_job import ExportJob
from export_worker.render.compiler import CompilerOptions, compile_document
from export_worker.render.engine import FFmpegRunner
from export_worker.schemas.timeline import TimelineDocument
from export_worker.services.asset_fetcher import AssetMaterializer
from export_worker.services.job_store import ExportJobStore

logger = logging.getLogger(__name__)

OUTPUT_FILENAME = "export.mp4"


class ExportOrchestrator:
    def __init__(
        self,
        job_store: ExportJobStore,
        input_storage,
        output_storage,
        settings: Settings | None = None,
        runner: FFmpegRunner | None = None,
        compiler_options: CompilerOptions | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        settings = settings or get_settings()
        self.job_store = job_store
        self.input_storage = input_storage
        self.output_storage = output_storage
        self.max_concurrent_jobs = settings.max_concurrent_jobs
        self.poll_interval_seconds = settings.poll_interval_seconds
        self.scratch_root = Path(settings.scratch_dir)
        self.asset_fetch_timeout_seconds = settings.asset_fetch_timeout_seconds
        self.download_url_expiry_minutes = settings.download_url_expiry_days * 24 * 60
        self.runner = runner or FFmpegRunner(settings.ffmpeg_path, settings.render_timeout_seconds)
        self.compiler_options = compiler_options or CompilerOptions.from_settings(settings)
        self.http_client = http_client

        self._in_flight: dict[UUID, asyncio.Task] = {}
        self._claim_lock = asyncio.Lock()
        self._wakeup = asyncio.Event()
        self._loop_task: asyncio.Task | None = None

    @property
    def active_jobs(self) -> list[UUID]:
        return list(self._in_flight)

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    # =========================================================================
    # Claiming
    # =========================================================================

    async def poll_once(self) -> UUID | None:
        """Claim the oldest queued job if a slot is free; return its id."""
        async with self._claim_lock:
            if len(self._in_flight) >= self.max_concurrent_jobs:
                logger.debug(f"[CLAIM] At capacity ({len(self._in_flight)}/{self.max_concurrent_jobs})")
                return None

            job = await self.job_store.fetch_oldest_queued()
            if job is None:
                return None

            if not await self.job_store.claim(job.id):
                logger.info(f"[CLAIM] Job {job.id} was claimed by another worker")
                return None

            logger.info(f"[CLAIM] Claimed job {job.id} (user={job.user_id}, project={job.project_id})")
            self._in_flight[job.id] = asyncio.create_task(self.process_job(job), name=f"export-{job.id}")
            return job.id

    async def fill_slots(self) -> list[UUID]:
        """Claim jobs until the queue is empty or every slot is busy."""
        claimed = []
        while len(self._in_flight) < self.max_concurrent_jobs:
            job_id = await self.poll_once()
            if job_id is None:
                break
            claimed.append(job_id)
        return claimed

    def trigger(self) -> None:
        """Wake the polling loop now instead of at the next tick."""
        self._wakeup.set()

    # =========================================================================
    # Loop lifecycle
    # =========================================================================

    def start(self) -> None:
        if self.is_running:
            return
        logger.info(
            f"Export worker started: poll every {self.poll_interval_seconds:g}s, "
            f"max {self.max_concurrent_jobs} concurrent job(s)"
        )
        self._loop_task = asyncio.create_task(self._run_loop(), name="export-poll-loop")

    async def stop(self, cancel_running: bool = False) -> None:
        """Stop polling, then wait for (or cancel) jobs that are still running."""
        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        running = list(self._in_flight.values())
        if cancel_running:
            for task in running:
                task.cancel()
        if running:
            logger.info(f"Waiting for {len(running)} export job(s) to finish")
            await asyncio.gather(*running, return_exceptions=True)
        self._in_flight.clear()
        logger.info("Export worker stopped")

    async def _run_loop(self) -> None:
        while True:
            try:
                await self.fill_slots()
            except Exception as e:
                logger.error(f"[POLL] Polling for queued jobs failed: {e}")

            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self.poll_interval_seconds)
            except asyncio.TimeoutError:
                pass
            self._wakeup.clear()

    # =========================================================================
    # Job execution
    # =========================================================================

    async def process_job(self, job: ExportJob) -> None:
        """Render one claimed job. Never raises except on cancellation."""
        scratch_dir = self.scratch_root / str(job.id)
        logger.info(f"[JOB] Processing export {job.id} in {scratch_dir}")

        try:
            scratch_dir.mkdir(parents=True, exist_ok=True)
            document = await self._load_document(job)

            materializer = AssetMaterializer(
                scratch_dir / "assets",
                client=self.http_client,
                timeout_seconds=self.asset_fetch_timeout_seconds,
            )
            locators = await materializer.materialize(document)

            result = compile_document(document.with_media_locators(locators), self.compiler_options)
            for outcome in result.skipped:
                logger.warning(
                    f"[JOB] Skipped element {outcome.element_id} on track {outcome.track_id}: {outcome.reason}"
                )

            output_path = scratch_dir / OUTPUT_FILENAME
            await self.runner.run(
                result.arguments,
                output_path,
                job.duration,
                on_progress=lambda progress: self._report_progress(job.id, progress),
            )

            download_url = await self._publish(job, output_path)
            await self.job_store.mark_completed(job.id, download_url)
            logger.info(f"[JOB] Export {job.id} completed")
        except ExportWorkerError as e:
            logger.error(f"[JOB] Export {job.id} failed: {e.to_error_message()}")
            await self._mark_failed(job.id, e.to_error_message())
        except asyncio.CancelledError:
            logger.warning(f"[JOB] Export {job.id} cancelled")
            await self._mark_failed(job.id, "CANCELLED: Worker shut down before the export finished")
            raise
        except Exception as e:
            logger.exception(f"[JOB] Export {job.id} failed unexpectedly")
            await self._mark_failed(job.id, f"INTERNAL_ERROR: {e}")
        finally:
            self._in_flight.pop(job.id, None)
            self._wakeup.set()
            self._remove_scratch(scratch_dir)

    async def _load_document(self, job: ExportJob) -> TimelineDocument:
        try:
            raw = await self.input_storage.read_text(job.input_key)
        except Exception as e:
            raise InputFetchError(f"Could not read {job.input_key}: {e}") from e

        try:
            data = json.loads(raw)
        except ValueError as e:
            raise InputFetchError(f"{job.input_key} is not valid JSON: {e}") from e

        try:
            return TimelineDocument.model_validate(data)
        except ValidationError as e:
            raise TimelineParseError(f"{job.input_key} is not a timeline document: {e}") from e

    async def _report_progress(self, job_id: UUID, progress: int) -> None:
        # Progress is advisory; the render continues if the write fails
        try:
            await self.job_store.update_progress(job_id, progress)
        except Exception as e:
            logger.warning(f"[JOB] Failed to record progress {progress}% for {job_id}: {e}")

    async def _publish(self, job: ExportJob, output_path: Path) -> str:
        try:
            await self.output_storage.upload_file(output_path, job.output_key, "video/mp4")
            return await self.output_storage.generate_download_url(
                job.output_key, expires_minutes=self.download_url_expiry_minutes
            )
        except Exception as e:
            raise UploadError(f"Could not publish {job.output_key}: {e}") from e

    async def _mark_failed(self, job_id: UUID, error_message: str) -> None:
        try:
            await self.job_store.mark_failed(job_id, error_message)
        except Exception as e:
            logger.error(f"[JOB] Could not record failure for {job_id}: {e}")

    def _remove_scratch(self, scratch_dir: Path) -> None:
        if not scratch_dir.exists():
            return
        try:
            shutil.rmtree(scratch_dir)
        except OSError as e:
            logger.error(f"[JOB] Failed to remove scratch dir {scratch_dir}: {e}")
