"""Tests for the worker HTTP endpoints."""

import uuid

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from export_worker.api import worker
from export_worker.services.submission import ExportSubmissionService
from export_worker.worker.orchestrator import ExportOrchestrator


@pytest.fixture
def orchestrator(settings, job_store, input_bucket, output_bucket) -> ExportOrchestrator:
    return ExportOrchestrator(job_store, input_bucket, output_bucket, settings)


@pytest.fixture
def client(orchestrator, job_store, input_bucket) -> TestClient:
    app = FastAPI()
    app.include_router(worker.router)
    app.state.orchestrator = orchestrator
    app.state.job_store = job_store
    app.state.submission_service = ExportSubmissionService(job_store, input_bucket)
    return TestClient(app)


class TestHealth:
    def test_idle_worker(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["active_jobs"] == []
        assert data["max_concurrent_jobs"] == 2

    def test_lists_active_jobs(self, client, orchestrator):
        job_id = uuid.uuid4()
        orchestrator._in_flight[job_id] = None

        assert client.get("/health").json()["active_jobs"] == [str(job_id)]


class TestWebhook:
    def test_new_job_triggers_poll(self, client, orchestrator):
        response = client.post("/webhook/new-job")

        assert response.status_code == 202
        assert orchestrator._wakeup.is_set()


class TestExports:
    def test_create_and_fetch(self, client, simple_document):
        response = client.post(
            "/exports",
            json={
                "user_id": "user-1",
                "project_id": "project-1",
                "timeline_data": simple_document.model_dump(mode="json", by_alias=True),
            },
        )

        assert response.status_code == 201
        created = response.json()
        assert created["status"] == "queued"
        assert created["duration"] == 5.0

        fetched = client.get(f"/exports/{created['id']}")
        assert fetched.status_code == 200
        assert fetched.json()["id"] == created["id"]

    def test_blob_urls_are_rejected(self, client):
        response = client.post(
            "/exports",
            json={
                "user_id": "user-1",
                "project_id": "project-1",
                "timeline_data": {
                    "project": {"canvasSize": {"width": 1280, "height": 720}},
                    "mediaItems": {"m1": {"type": "video", "url": "blob:https://editor.example.com/x"}},
                },
            },
        )
        assert response.status_code == 422

    def test_unknown_job(self, client):
        assert client.get(f"/exports/{uuid.uuid4()}").status_code == 404
