"""Tests for ExportOrchestrator using in-memory fakes.

Features:
- Concurrency ceiling and claim flow
- Full job lifecycle: input -> compile -> render -> upload -> completed
- Failure mapping to coded error messages
- Scratch directory cleanup on every path
"""

import asyncio
import base64
from pathlib import Path

import pytest

from conftest import FakeRunner, make_document, text_element, video_element
from export_worker.exceptions import EngineExecutionError, RenderTimeoutError
from export_worker.models.export_job import COMPLETED, FAILED, PROCESSING, QUEUED
from export_worker.worker.orchestrator import ExportOrchestrator

PNG_DATA_URI = "data:image/png;base64," + base64.b64encode(b"fake png").decode()


def store_document(bucket, job, document) -> None:
    bucket.objects[job.input_key] = document.model_dump_json(by_alias=True).encode()


@pytest.fixture
def offline_document():
    """A timeline whose only media is inline, so no network is needed."""
    return make_document(
        tracks=[
            {"id": "t1", "elements": [video_element("e-logo", "logo", start=0, duration=3)]},
            {"id": "t2", "type": "text", "elements": [text_element("e-title", "Hello", start=0, duration=3)]},
        ],
        media_items={"logo": {"type": "image", "url": PNG_DATA_URI}},
    )


def make_orchestrator(settings, job_store, input_bucket, output_bucket, runner=None) -> ExportOrchestrator:
    return ExportOrchestrator(
        job_store,
        input_bucket,
        output_bucket,
        settings,
        runner=runner or FakeRunner(),
    )


async def drain(orchestrator: ExportOrchestrator) -> None:
    while orchestrator._in_flight:
        await asyncio.gather(*orchestrator._in_flight.values(), return_exceptions=True)


class TestConcurrency:
    """Claiming respects max_concurrent_jobs."""

    @pytest.mark.asyncio
    async def test_ceiling_blocks_new_claims(self, settings, job_store, input_bucket, output_bucket):
        for _ in range(3):
            job_store.add_queued()
        orchestrator = make_orchestrator(settings, job_store, input_bucket, output_bucket)
        # Hold each claimed slot until released
        release = asyncio.Event()

        async def hold(job):
            try:
                await release.wait()
            finally:
                orchestrator._in_flight.pop(job.id, None)

        orchestrator.process_job = hold

        first = await orchestrator.poll_once()
        second = await orchestrator.poll_once()
        assert first is not None and second is not None
        assert len(orchestrator.active_jobs) == 2

        # A third tick while both slots are busy claims nothing
        assert await orchestrator.poll_once() is None
        statuses = sorted(job.status for job in job_store.jobs.values())
        assert statuses == [PROCESSING, PROCESSING, QUEUED]

        release.set()
        await drain(orchestrator)
        assert await orchestrator.poll_once() is not None
        await drain(orchestrator)

    @pytest.mark.asyncio
    async def test_fill_slots_claims_oldest_first(self, settings, job_store, input_bucket, output_bucket):
        jobs = [job_store.add_queued() for _ in range(3)]
        orchestrator = make_orchestrator(settings, job_store, input_bucket, output_bucket)
        release = asyncio.Event()

        async def hold(job):
            try:
                await release.wait()
            finally:
                orchestrator._in_flight.pop(job.id, None)

        orchestrator.process_job = hold

        claimed = await orchestrator.fill_slots()

        assert claimed == [jobs[0].id, jobs[1].id]
        release.set()
        await drain(orchestrator)

    @pytest.mark.asyncio
    async def test_lost_race_is_silent(self, settings, job_store, input_bucket, output_bucket):
        job = job_store.add_queued()
        orchestrator = make_orchestrator(settings, job_store, input_bucket, output_bucket)

        async def someone_else_won(job_id):
            return False

        job_store.claim = someone_else_won

        assert await orchestrator.poll_once() is None
        assert orchestrator.active_jobs == []
        assert job_store.jobs[job.id].status == QUEUED


class TestJobLifecycle:
    """End-to-end processing with a fake engine."""

    @pytest.mark.asyncio
    async def test_completed_job(self, settings, job_store, input_bucket, output_bucket, offline_document):
        job = job_store.add_queued(duration=3.0)
        store_document(input_bucket, job, offline_document)
        runner = FakeRunner(progress_steps=(10, 50, 99))
        orchestrator = make_orchestrator(settings, job_store, input_bucket, output_bucket, runner)

        assert await orchestrator.poll_once() == job.id
        await drain(orchestrator)

        done = job_store.jobs[job.id]
        assert done.status == COMPLETED
        assert done.progress == 100
        assert done.download_url.startswith(f"https://storage.example.com/{job.output_key}")
        assert output_bucket.objects[job.output_key] == b"fake mp4"
        assert output_bucket.signed == [(job.output_key, 7 * 24 * 60)]
        assert [progress for _, progress in job_store.progress_updates] == [10, 50, 99]

        arguments, output_path = runner.calls[0]
        assert output_path.name == "export.mp4"
        # the inline image was written to scratch and referenced by path
        assert any(arg.startswith(str(settings.scratch_dir)) and arg.endswith(".png") for arg in arguments)
        assert any("drawtext=text='Hello'" in arg for arg in arguments)

    @pytest.mark.asyncio
    async def test_scratch_removed_after_success(self, settings, job_store, input_bucket, output_bucket, offline_document):
        job = job_store.add_queued()
        store_document(input_bucket, job, offline_document)
        runner = FakeRunner()
        orchestrator = make_orchestrator(settings, job_store, input_bucket, output_bucket, runner)

        await orchestrator.poll_once()
        await drain(orchestrator)

        assert runner.scratch_seen == [Path(settings.scratch_dir) / str(job.id)]
        assert not runner.scratch_seen[0].exists()
        assert orchestrator.active_jobs == []

    @pytest.mark.asyncio
    async def test_progress_measured_against_job_duration(
        self, settings, job_store, input_bucket, output_bucket, offline_document
    ):
        # the stored document ends at 3s but the job was submitted as 30s long
        job = job_store.add_queued(duration=30.0)
        store_document(input_bucket, job, offline_document)
        runner = FakeRunner()
        orchestrator = make_orchestrator(settings, job_store, input_bucket, output_bucket, runner)

        await orchestrator.poll_once()
        await drain(orchestrator)

        assert runner.durations == [30.0]
        assert job_store.jobs[job.id].status == COMPLETED

    @pytest.mark.asyncio
    async def test_scratch_removed_after_failure(self, settings, job_store, input_bucket, output_bucket, offline_document):
        job = job_store.add_queued()
        store_document(input_bucket, job, offline_document)
        runner = FakeRunner(error=EngineExecutionError("ffmpeg exited with code 1: boom", returncode=1))
        orchestrator = make_orchestrator(settings, job_store, input_bucket, output_bucket, runner)

        await orchestrator.poll_once()
        await drain(orchestrator)

        failed = job_store.jobs[job.id]
        assert failed.status == FAILED
        assert failed.error_message == "ENGINE_FAILED: ffmpeg exited with code 1: boom"
        assert failed.completed_at is not None
        assert not runner.scratch_seen[0].exists()
        assert orchestrator.active_jobs == []

    @pytest.mark.asyncio
    async def test_progress_write_failures_are_ignored(self, settings, job_store, input_bucket, output_bucket, offline_document):
        job = job_store.add_queued()
        store_document(input_bucket, job, offline_document)
        job_store.fail_progress_writes = True
        orchestrator = make_orchestrator(settings, job_store, input_bucket, output_bucket)

        await orchestrator.poll_once()
        await drain(orchestrator)

        assert job_store.jobs[job.id].status == COMPLETED

    @pytest.mark.asyncio
    async def test_upload_failure(self, settings, job_store, input_bucket, output_bucket, offline_document):
        job = job_store.add_queued()
        store_document(input_bucket, job, offline_document)
        output_bucket.fail_uploads = True
        orchestrator = make_orchestrator(settings, job_store, input_bucket, output_bucket)

        await orchestrator.poll_once()
        await drain(orchestrator)

        failed = job_store.jobs[job.id]
        assert failed.status == FAILED
        assert failed.error_message.startswith("UPLOAD_FAILED: ")
        assert not (Path(settings.scratch_dir) / str(job.id)).exists()

    @pytest.mark.asyncio
    async def test_render_timeout(self, settings, job_store, input_bucket, output_bucket, offline_document):
        job = job_store.add_queued()
        store_document(input_bucket, job, offline_document)
        runner = FakeRunner(error=RenderTimeoutError("ffmpeg did not finish within 5s"))
        orchestrator = make_orchestrator(settings, job_store, input_bucket, output_bucket, runner)

        await orchestrator.poll_once()
        await drain(orchestrator)

        assert job_store.jobs[job.id].error_message == "RENDER_TIMEOUT: ffmpeg did not finish within 5s"


class TestInputErrors:
    """Bad or missing timeline documents fail the job with a coded message."""

    @pytest.mark.asyncio
    async def test_missing_input(self, settings, job_store, input_bucket, output_bucket):
        job = job_store.add_queued()
        runner = FakeRunner()
        orchestrator = make_orchestrator(settings, job_store, input_bucket, output_bucket, runner)

        await orchestrator.poll_once()
        await drain(orchestrator)

        assert job_store.jobs[job.id].error_message.startswith("INPUT_FETCH_FAILED: ")
        assert runner.calls == []
        assert not (Path(settings.scratch_dir) / str(job.id)).exists()

    @pytest.mark.asyncio
    async def test_corrupt_json(self, settings, job_store, input_bucket, output_bucket):
        job = job_store.add_queued()
        input_bucket.objects[job.input_key] = b"{not json"
        orchestrator = make_orchestrator(settings, job_store, input_bucket, output_bucket)

        await orchestrator.poll_once()
        await drain(orchestrator)

        assert job_store.jobs[job.id].error_message.startswith("INPUT_FETCH_FAILED: ")

    @pytest.mark.asyncio
    async def test_not_a_timeline(self, settings, job_store, input_bucket, output_bucket):
        job = job_store.add_queued()
        input_bucket.objects[job.input_key] = b'{"tracks": "nope"}'
        orchestrator = make_orchestrator(settings, job_store, input_bucket, output_bucket)

        await orchestrator.poll_once()
        await drain(orchestrator)

        assert job_store.jobs[job.id].error_message.startswith("INVALID_TIMELINE: ")

    @pytest.mark.asyncio
    async def test_blob_asset(self, settings, job_store, input_bucket, output_bucket):
        job = job_store.add_queued()
        document = make_document(
            tracks=[{"id": "t1", "elements": [video_element("e1", "m1")]}],
            media_items={"m1": {"type": "video", "url": "blob:https://editor.example.com/abc"}},
        )
        store_document(input_bucket, job, document)
        orchestrator = make_orchestrator(settings, job_store, input_bucket, output_bucket)

        await orchestrator.poll_once()
        await drain(orchestrator)

        assert job_store.jobs[job.id].error_message.startswith("TRANSIENT_ASSET_REFERENCE: ")


class TestPollingLoop:
    """Timer and trigger both reach the claim routine."""

    @pytest.mark.asyncio
    async def test_trigger_wakes_loop(self, settings, job_store, input_bucket, output_bucket, offline_document):
        settings.poll_interval_seconds = 60
        orchestrator = make_orchestrator(settings, job_store, input_bucket, output_bucket)
        orchestrator.start()
        await asyncio.sleep(0.05)  # first tick finds nothing

        job = job_store.add_queued()
        store_document(input_bucket, job, offline_document)
        orchestrator.trigger()

        for _ in range(100):
            if job_store.jobs[job.id].status == COMPLETED:
                break
            await asyncio.sleep(0.02)
        await orchestrator.stop()

        assert job_store.jobs[job.id].status == COMPLETED
        assert not orchestrator.is_running

    @pytest.mark.asyncio
    async def test_timer_picks_up_jobs(self, settings, job_store, input_bucket, output_bucket, offline_document):
        orchestrator = make_orchestrator(settings, job_store, input_bucket, output_bucket)
        orchestrator.start()
        await asyncio.sleep(0.02)

        job = job_store.add_queued()
        store_document(input_bucket, job, offline_document)

        for _ in range(100):
            if job_store.jobs[job.id].status == COMPLETED:
                break
            await asyncio.sleep(0.02)
        await orchestrator.stop()

        assert job_store.jobs[job.id].status == COMPLETED

    @pytest.mark.asyncio
    async def test_polling_errors_do_not_stop_loop(self, settings, job_store, input_bucket, output_bucket):
        calls = 0

        async def flaky_fetch():
            nonlocal calls
            calls += 1
            raise ConnectionError("database unavailable")

        job_store.fetch_oldest_queued = flaky_fetch
        orchestrator = make_orchestrator(settings, job_store, input_bucket, output_bucket)
        orchestrator.start()
        await asyncio.sleep(0.2)
        assert orchestrator.is_running
        await orchestrator.stop()

        assert calls >= 2
