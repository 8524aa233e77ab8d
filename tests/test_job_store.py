from __future__ import annotations

from pathlib import Path

from clipping_pipeline.jobs.models import Job, JobStatus, SourceRef, Stage, now_utc
from clipping_pipeline.jobs.store import JobStore


def _job(job_id: str, created_at: str | None = None) -> Job:
    ts = created_at or now_utc()
    return Job(
        id=job_id,
        source=SourceRef(kind="remote", url="https://example.com/a.mp4"),
        target_duration_s=30.0,
        clip_count=3,
        created_at=ts,
        updated_at=ts,
    )


def test_put_get_roundtrip(tmp_path: Path) -> None:
    store = JobStore(tmp_path / "jobs.db")
    job = _job("a")
    job.data = {"transcript": [{"start": 0.0, "end": 1.0, "text": "hi"}]}
    store.put(job)

    got = store.get("a")
    assert got is not None
    assert got.source.url == "https://example.com/a.mp4"
    assert got.stage == Stage.ingest
    assert got.status == JobStatus.queued
    assert got.data == job.data
    assert store.get("missing") is None


def test_get_or_create_returns_existing_untouched(tmp_path: Path) -> None:
    store = JobStore(tmp_path / "jobs.db")
    made: list[str] = []

    def factory() -> Job:
        made.append("x")
        return _job("dup")

    first, created = store.get_or_create("dup", factory)
    store.mutate("dup", lambda j: setattr(j, "progress", 50))
    second, created_again = store.get_or_create("dup", factory)

    assert created is True
    assert created_again is False
    assert made == ["x"]
    assert first.id == second.id
    assert second.progress == 50


def test_mutate_applies_and_persists(tmp_path: Path) -> None:
    store = JobStore(tmp_path / "jobs.db")
    store.put(_job("m"))

    def bump(j: Job) -> None:
        j.progress = 35
        j.stage = Stage.detect_scenes

    out = store.mutate("m", bump)
    assert out is not None and out.progress == 35
    assert store.get("m").stage == Stage.detect_scenes
    assert store.mutate("gone", bump) is None


def test_list_newest_first_with_status_filter(tmp_path: Path) -> None:
    store = JobStore(tmp_path / "jobs.db")
    store.put(_job("old", "2024-01-01T00:00:00+00:00"))
    store.put(_job("new", "2024-06-01T00:00:00+00:00"))
    store.mutate("old", lambda j: setattr(j, "status", JobStatus.completed))

    assert [j.id for j in store.list()] == ["new", "old"]
    assert [j.id for j in store.list(status="completed")] == ["old"]
    assert store.list(status="bogus") == []
    assert [j.id for j in store.list(limit=1)] == ["new"]
    assert store.counts() == {"queued": 1, "active": 0, "completed": 1, "failed": 0}


def test_delete_job(tmp_path: Path) -> None:
    store = JobStore(tmp_path / "jobs.db")
    store.put(_job("d"))
    assert store.delete_job("d") is True
    assert store.delete_job("d") is False
    assert store.get("d") is None


def test_status_view_shape(tmp_path: Path) -> None:
    view = _job("v").status_view()
    assert set(view) == {"id", "stage", "status", "progress", "result", "failed_reason", "finished_on"}
    assert view["stage"] == "ingest"
