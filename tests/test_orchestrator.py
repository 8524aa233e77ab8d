from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from clipping_pipeline.jobs.errors import (
    JobNotFound,
    StageError,
    StageTimeout,
    StylePreferencesError,
    SubmissionError,
)
from clipping_pipeline.jobs.models import STAGE_ORDER, JobStatus, Stage
from clipping_pipeline.utils.retry import RetryPolicy
from tests._helpers.runtime import FakeClock, make_orchestrator, noop_handlers, remote_payload


def _flaky(fail_times: int, calls: list[int]):
    def handler(ctx):
        calls.append(ctx.attempt)
        if len(calls) <= fail_times:
            raise RuntimeError(f"boom {len(calls)}")
        return {"source_path": "/tmp/x.mp4", "source_duration_s": 30.0}

    return handler


def test_submit_same_id_is_idempotent(tmp_path: Path) -> None:
    calls: list[tuple[str, Stage]] = []
    orch = make_orchestrator(tmp_path, noop_handlers(calls))

    a = orch.submit(remote_payload("job-1"))
    b = orch.submit(remote_payload("job-1"))
    assert a == b == "job-1"

    asyncio.run(orch.run_until_idle())
    assert [st for _, st in calls] == list(STAGE_ORDER)

    # Re-submitting a finished job neither re-runs nor resets it.
    assert orch.submit(remote_payload("job-1")) == "job-1"
    asyncio.run(orch.run_until_idle())
    assert len(calls) == len(STAGE_ORDER)
    assert orch.get_job("job-1").status == JobStatus.completed


def test_submit_without_id_generates_one(tmp_path: Path) -> None:
    orch = make_orchestrator(tmp_path, noop_handlers())
    a = orch.submit(remote_payload())
    b = orch.submit(remote_payload())
    assert a != b
    assert orch.status(a)["status"] == "queued"
    assert orch.status(a)["stage"] == "ingest"


def test_invalid_submission_enqueues_nothing(tmp_path: Path) -> None:
    orch = make_orchestrator(tmp_path, noop_handlers())
    with pytest.raises(SubmissionError):
        orch.submit({"source": {"kind": "remote"}})
    with pytest.raises(SubmissionError):
        orch.submit(remote_payload(target_duration_s=5))
    with pytest.raises(StylePreferencesError):
        orch.submit(remote_payload(metadata={"subtitle_preferences": {"fontSize": 60}}))
    assert orch.queues.idle()
    assert orch.store.list() == []


def test_stage_succeeds_on_third_attempt(tmp_path: Path) -> None:
    clock = FakeClock()
    attempts: list[int] = []
    handlers = noop_handlers()
    handlers[Stage.ingest] = _flaky(2, attempts)
    orch = make_orchestrator(tmp_path, handlers, clock=clock)

    job_id = orch.submit(remote_payload("retry-ok"))
    asyncio.run(orch.run_until_idle())

    job = orch.get_job(job_id)
    assert job.status == JobStatus.completed
    assert job.failed_reason is None
    assert attempts == [1, 2, 3]
    assert job.attempts["ingest"] == 3
    assert sum(clock.slept) == pytest.approx(15.0)


def test_retry_exhaustion_fails_after_three_attempts(tmp_path: Path) -> None:
    clock = FakeClock()
    attempts: list[int] = []
    handlers = noop_handlers()
    handlers[Stage.ingest] = _flaky(99, attempts)
    orch = make_orchestrator(tmp_path, handlers, clock=clock)

    job_id = orch.submit(remote_payload("retry-fail"))
    asyncio.run(orch.run_until_idle())

    job = orch.get_job(job_id)
    assert job.status == JobStatus.failed
    assert attempts == [1, 2, 3]
    assert sum(clock.slept) >= 5 + 10 + 20
    assert job.failed_reason.startswith("ingest failed after 3 attempts")
    assert "VIDEO_DOWNLOAD_ERROR" in job.failed_reason
    assert job.finished_on is not None
    assert orch.queues.idle()


def test_status_is_queued_with_reason_while_waiting_to_retry(tmp_path: Path) -> None:
    clock = FakeClock()
    attempts: list[int] = []
    handlers = noop_handlers()
    handlers[Stage.ingest] = _flaky(1, attempts)
    orch = make_orchestrator(tmp_path, handlers, clock=clock)
    job_id = orch.submit(remote_payload("waiting"))

    entry = orch.queues.dequeue_ready(Stage.ingest, clock())
    asyncio.run(orch._process(entry))

    view = orch.status(job_id)
    assert view["status"] == "queued"
    assert view["stage"] == "ingest"
    assert "boom 1" in view["failed_reason"]
    assert orch.queues.next_ready_at(Stage.ingest) == pytest.approx(clock() + 5.0)


def test_each_job_runs_stages_in_order(tmp_path: Path) -> None:
    calls: list[tuple[str, Stage]] = []
    orch = make_orchestrator(tmp_path, noop_handlers(calls), concurrency=3)
    ids = [orch.submit(remote_payload(f"job-{i}")) for i in range(4)]
    asyncio.run(orch.run_until_idle())

    for jid in ids:
        assert [st for j, st in calls if j == jid] == list(STAGE_ORDER)
        assert orch.status(jid)["progress"] == 100


def test_stage_concurrency_is_bounded(tmp_path: Path) -> None:
    running = 0
    peak = 0

    async def slow_ingest(ctx):
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.01)
        running -= 1
        return {}

    handlers = noop_handlers()
    handlers[Stage.ingest] = slow_ingest
    orch = make_orchestrator(tmp_path, handlers, concurrency=2)
    for i in range(5):
        orch.submit(remote_payload(f"c-{i}"))
    asyncio.run(orch.run_until_idle())
    assert peak == 2


def test_rate_limit_delays_stage_starts(tmp_path: Path) -> None:
    clock = FakeClock()
    starts: list[float] = []

    def ingest(ctx):
        starts.append(clock())
        return {}

    handlers = noop_handlers()
    handlers[Stage.ingest] = ingest
    orch = make_orchestrator(tmp_path, handlers, clock=clock, concurrency=5, rate_limit=(2, 60.0))
    for i in range(3):
        orch.submit(remote_payload(f"r-{i}"))
    asyncio.run(orch.run_until_idle())

    assert len(starts) == 3
    assert starts[2] - starts[0] >= 60.0


def test_merge_conflict_fails_job_without_retry(tmp_path: Path) -> None:
    rank_calls: list[int] = []

    def bad_rank(ctx):
        rank_calls.append(ctx.attempt)
        return {"transcript": []}

    handlers = noop_handlers()
    handlers[Stage.rank] = bad_rank
    orch = make_orchestrator(tmp_path, handlers)
    job_id = orch.submit(remote_payload("conflict"))
    asyncio.run(orch.run_until_idle())

    job = orch.get_job(job_id)
    assert job.status == JobStatus.failed
    assert job.failed_reason.startswith("MERGE_CONFLICT")
    assert rank_calls == [1]


def test_stage_timeout_counts_as_failure(tmp_path: Path) -> None:
    async def hang(ctx):
        await asyncio.sleep(5)
        return {}

    handlers = noop_handlers()
    handlers[Stage.transcribe] = hang
    orch = make_orchestrator(
        tmp_path, handlers, policy=RetryPolicy(max_attempts=1, base_delay_s=1.0), stage_timeout_s=0.05
    )
    job_id = orch.submit(remote_payload("slow"))
    asyncio.run(orch.run_until_idle())

    job = orch.get_job(job_id)
    assert job.status == JobStatus.failed
    assert "TRANSCRIPTION_ERROR" in job.failed_reason
    assert "timed out" in job.failed_reason


def test_stage_timeout_error_carries_stage_and_limit() -> None:
    err = StageTimeout("render", 2.0)
    assert isinstance(err, StageError)
    assert (err.stage, err.timeout_s) == ("render", 2.0)
    assert str(err) == "render timed out after 2.0s"
    assert not hasattr(err, "kind")


def test_cancel_queued_job(tmp_path: Path) -> None:
    calls: list[tuple[str, Stage]] = []
    orch = make_orchestrator(tmp_path, noop_handlers(calls))
    job_id = orch.submit(remote_payload("cancel-me"))

    assert orch.cancel(job_id) is True
    assert orch.queues.idle()
    with pytest.raises(JobNotFound):
        orch.get_job(job_id)
    asyncio.run(orch.run_until_idle())
    assert calls == []


def test_cancel_unknown_or_finished_returns_false(tmp_path: Path) -> None:
    orch = make_orchestrator(tmp_path, noop_handlers())
    assert orch.cancel("nope") is False

    job_id = orch.submit(remote_payload("done"))
    asyncio.run(orch.run_until_idle())
    assert orch.cancel(job_id) is False
    assert orch.get_job(job_id).status == JobStatus.completed


def test_cancel_during_stage_discards_result(tmp_path: Path) -> None:
    calls: list[tuple[str, Stage]] = []
    handlers = noop_handlers(calls)
    holder: dict = {}

    async def ingest(ctx):
        assert holder["orch"].cancel(ctx.job_id) is True
        return {"source_path": "/tmp/a.mp4", "source_duration_s": 10.0}

    handlers[Stage.ingest] = ingest
    orch = make_orchestrator(tmp_path, handlers)
    holder["orch"] = orch
    job_id = orch.submit(remote_payload("inflight"))
    asyncio.run(orch.run_until_idle())

    assert orch.store.get(job_id) is None
    assert calls == []
    assert orch.queues.idle()


def test_status_of_unknown_job_raises(tmp_path: Path) -> None:
    orch = make_orchestrator(tmp_path, noop_handlers())
    with pytest.raises(JobNotFound):
        orch.status("missing")


def test_events_record_stage_lifecycle(tmp_path: Path) -> None:
    orch = make_orchestrator(tmp_path, noop_handlers())
    job_id = orch.submit(remote_payload("events"))
    asyncio.run(orch.run_until_idle())

    names = [e["event"] for e in orch.get_job(job_id).events]
    assert names[0] == "submitted"
    assert names[-1] == "completed"
    assert names.count("stage_completed") == len(STAGE_ORDER)


def test_recover_requeues_unowned_jobs(tmp_path: Path) -> None:
    orch = make_orchestrator(tmp_path, noop_handlers())
    job_id = orch.submit(remote_payload("orphan"))

    # A fresh orchestrator over the same store has empty queues.
    fresh = make_orchestrator(tmp_path, noop_handlers())
    assert fresh.recover() == 1
    assert fresh.recover() == 0
    asyncio.run(fresh.run_until_idle())
    assert fresh.get_job(job_id).status == JobStatus.completed


def test_recover_counts_the_attempt_waiting_out_its_backoff(tmp_path: Path) -> None:
    attempts: list[int] = []
    handlers = noop_handlers()
    handlers[Stage.ingest] = _flaky(99, attempts)
    clock = FakeClock()
    orch = make_orchestrator(tmp_path, handlers, clock=clock)
    job_id = orch.submit(remote_payload("restarted"))
    entry = orch.queues.dequeue_ready(Stage.ingest, clock())
    asyncio.run(orch._process(entry))
    assert orch.status(job_id)["status"] == "queued"
    assert orch.get_job(job_id).attempts["ingest"] == 1

    # Restart while attempt 1 is waiting for its retry.
    fresh = make_orchestrator(tmp_path, handlers)
    assert fresh.recover() == 1
    asyncio.run(fresh.run_until_idle())

    job = fresh.get_job(job_id)
    assert attempts == [1, 2, 3]
    assert job.status == JobStatus.failed
    assert job.failed_reason.startswith("ingest failed after 3 attempts")


def test_recover_retries_a_stage_interrupted_mid_run(tmp_path: Path) -> None:
    orch = make_orchestrator(tmp_path, noop_handlers())
    job_id = orch.submit(remote_payload("crashed"))

    def mid_run(j) -> None:
        j.attempts["ingest"] = 1
        j.status = JobStatus.active

    orch.store.mutate(job_id, mid_run)

    fresh = make_orchestrator(tmp_path, noop_handlers())
    assert fresh.recover() == 1
    entry = fresh.queues.dequeue_ready(Stage.ingest, fresh._clock())
    assert entry.attempt == 2


def test_start_and_wait_idle(tmp_path: Path) -> None:
    from clipping_pipeline.jobs.orchestrator import PipelineOrchestrator
    from clipping_pipeline.jobs.store import JobStore

    orch = PipelineOrchestrator(
        store=JobStore(tmp_path / "jobs.db"),
        handlers=noop_handlers(),
        concurrency=2,
        poll_interval_s=0.01,
        work_root=tmp_path / "jobs",
    )

    async def go() -> None:
        await orch.start()
        try:
            assert orch.running
            ids = [orch.submit(remote_payload(f"live-{i}")) for i in range(3)]
            await orch.wait_idle(timeout_s=10)
            for jid in ids:
                assert orch.status(jid)["status"] == "completed"
        finally:
            await orch.stop()
        assert not orch.running

    asyncio.run(go())


def test_health_reports_queue_depth(tmp_path: Path) -> None:
    orch = make_orchestrator(tmp_path, noop_handlers())
    orch.submit(remote_payload("h1"))
    orch.submit(remote_payload("h2"))
    h = orch.health()
    assert h["stages"]["ingest"]["waiting"] == 2
    assert h["stages"]["render"] == {"waiting": 0, "delayed": 0, "active": 0}
    assert h["jobs"]["queued"] == 2
    assert h["running"] is False
