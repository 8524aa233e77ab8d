from __future__ import annotations

import asyncio

import pytest
from fastapi.testclient import TestClient

from clipping_pipeline.config import get_settings
from clipping_pipeline.runtime import build_pipeline
from clipping_pipeline.server import create_app
from tests._helpers.media import FakeMediaOps


@pytest.fixture()
def pipeline():
    return build_pipeline(media=FakeMediaOps())


@pytest.fixture()
def client(pipeline):
    with TestClient(create_app(pipeline, start_orchestrator=False)) as c:
        yield c


def _submit(c: TestClient, job_id: str = "api-1", **extra):
    body = {
        "id": job_id,
        "source": {"kind": "remote", "url": "https://example.com/talk.mp4"},
        "target_duration_s": 15,
        "clip_count": 2,
        **extra,
    }
    return c.post("/api/jobs", json=body)


def test_submit_and_poll_to_completion(client: TestClient, pipeline) -> None:
    r = _submit(client)
    assert r.status_code == 202
    assert r.json()["status"] == "queued"
    assert r.json()["stage"] == "ingest"

    asyncio.run(pipeline.orchestrator.run_until_idle())

    r = client.get("/api/jobs/api-1")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "completed"
    assert body["progress"] == 100
    assert body["result"]["clips"]

    r = client.get("/api/jobs", params={"status": "completed"})
    assert [j["id"] for j in r.json()["items"]] == ["api-1"]

    events = client.get("/api/jobs/api-1/events").json()["events"]
    assert events[-1]["event"] == "completed"


def test_resubmit_returns_same_job(client: TestClient, pipeline) -> None:
    assert _submit(client).json()["id"] == "api-1"
    assert _submit(client).json()["id"] == "api-1"
    assert len(pipeline.store.list()) == 1


def test_invalid_payloads_are_422(client: TestClient) -> None:
    assert client.post("/api/jobs", json={"source": {"kind": "ftp"}}).status_code == 422
    r = _submit(client, metadata={"subtitle_preferences": {"fontSize": 60}})
    assert r.status_code == 422
    assert "font_size" in r.json()["detail"]


def test_unknown_job_is_404(client: TestClient) -> None:
    assert client.get("/api/jobs/nope").status_code == 404
    assert client.get("/api/jobs/nope/events").status_code == 404
    assert client.delete("/api/jobs/nope").status_code == 404


def test_cancel(client: TestClient, pipeline) -> None:
    _submit(client, job_id="to-cancel")
    r = client.delete("/api/jobs/to-cancel")
    assert r.json() == {"id": "to-cancel", "canceled": True}
    assert client.get("/api/jobs/to-cancel").status_code == 404
    assert pipeline.orchestrator.queues.idle()


def test_reprocess_clip_endpoint(client: TestClient, pipeline) -> None:
    _submit(client)
    asyncio.run(pipeline.orchestrator.run_until_idle())

    r = client.post("/api/jobs/api-1/clips/clip-01/reprocess", json={"fontSize": 20})
    assert r.status_code == 200
    assert r.json()["id"] == "clip-01"

    assert client.post("/api/jobs/api-1/clips/clip-01/reprocess", json={"fontSize": 60}).status_code == 422
    assert client.post("/api/jobs/nope/clips/clip-01/reprocess", json={}).status_code == 404

    pipeline.cache.delete("api-1", "clip-01")
    r = client.post("/api/jobs/api-1/clips/clip-01/reprocess", json={})
    assert r.status_code == 409
    assert r.json()["detail"] == "Clip data not cached; full reprocessing required"


def test_queue_health_and_metrics(client: TestClient) -> None:
    _submit(client)
    h = client.get("/api/queue/health").json()
    assert h["stages"]["ingest"]["waiting"] == 1
    assert client.get("/healthz").json() == {"ok": True}
    r = client.get("/metrics")
    assert r.status_code == 200
    assert "clipping_pipeline_jobs_submitted_total" in r.text


def test_admin_cleanup(client: TestClient) -> None:
    r = client.post("/api/admin/cleanup")
    assert r.status_code == 200
    assert r.json() == {"evicted": {"completed": 0, "failed": 0}}


def test_bearer_token_required_when_configured(monkeypatch, pipeline) -> None:
    monkeypatch.setenv("API_TOKEN", "s3cret-token")
    get_settings.cache_clear()
    with TestClient(create_app(pipeline, start_orchestrator=False)) as c:
        assert c.get("/api/jobs").status_code == 401
        assert c.get("/api/jobs", headers={"Authorization": "Bearer wrong"}).status_code == 401
        ok = c.get("/api/jobs", headers={"Authorization": "Bearer s3cret-token"})
        assert ok.status_code == 200
        assert c.get("/healthz").status_code == 200
