"""
Pipeline orchestrator.

Moves jobs through ingest -> transcribe -> detect-scenes -> rank -> render ->
generate-texts -> export. One asyncio dispatcher per stage pulls ready entries
from the stage queues under a per-stage semaphore and sliding-window rate
limit; synchronous handlers run in worker threads under a stage timeout.

The orchestrator is the only writer of job records. Stage handlers return
their output (or raise); the orchestrator records the outcome, merges the
output and hands the job to the next stage.
"""

from __future__ import annotations

import asyncio
import inspect
import threading
import time
from collections.abc import Awaitable, Callable
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from clipping_pipeline.cache.store import ReprocessCache
from clipping_pipeline.config import get_settings
from clipping_pipeline.jobs import fsm
from clipping_pipeline.jobs.errors import JobNotFound, MergeConflict, StageError, StageTimeout
from clipping_pipeline.jobs.merge import merge_stage_output
from clipping_pipeline.jobs.models import (
    STAGE_ORDER,
    Job,
    JobStatus,
    Stage,
    new_id,
    next_stage,
    now_utc,
)
from clipping_pipeline.jobs.reprocess import cache_job_data
from clipping_pipeline.jobs.store import JobStore
from clipping_pipeline.jobs.submission import parse_submission
from clipping_pipeline.ops import metrics
from clipping_pipeline.ops.retention import RetentionPolicy, purge_job_dir, select_evictions
from clipping_pipeline.queue.interfaces import QueueEntry, StageQueueBackend
from clipping_pipeline.queue.stage_queue import StageQueues, retry_entry
from clipping_pipeline.stages.builtin import build_result
from clipping_pipeline.stages.context import StageContext, StageHandler
from clipping_pipeline.subtitles.preferences import parse_preferences
from clipping_pipeline.utils.log import logger, set_job_context
from clipping_pipeline.utils.ratelimit import SlidingWindowLimiter
from clipping_pipeline.utils.retry import RetryPolicy

MAX_EVENTS = 100

# Error category reported in failed_reason, per stage.
ERROR_KINDS: dict[Stage, str] = {
    Stage.ingest: "VIDEO_DOWNLOAD_ERROR",
    Stage.transcribe: "TRANSCRIPTION_ERROR",
    Stage.detect_scenes: "SCENE_DETECTION_ERROR",
    Stage.rank: "ANALYSIS_ERROR",
    Stage.render: "RENDER_ERROR",
    Stage.generate_texts: "TEXT_GENERATION_ERROR",
    Stage.export: "EXPORT_ERROR",
}


@dataclass(frozen=True, slots=True)
class StageOutcome:
    job_id: str
    stage: Stage
    attempt: int
    ok: bool
    output: dict[str, Any] | None = None
    error: str | None = None
    duration_s: float = 0.0


def _event(job: Job, name: str, **fields: Any) -> None:
    job.events.append({"ts": now_utc(), "event": name, **fields})
    if len(job.events) > MAX_EVENTS:
        del job.events[: len(job.events) - MAX_EVENTS]


class PipelineOrchestrator:
    def __init__(
        self,
        *,
        store: JobStore,
        handlers: dict[Stage, StageHandler],
        queues: StageQueueBackend | None = None,
        reprocess_cache: ReprocessCache | None = None,
        policy: RetryPolicy | None = None,
        concurrency: int | dict[Stage, int] | None = None,
        rate_limit: tuple[int, float] | None = None,
        stage_timeout_s: float | None = None,
        poll_interval_s: float | None = None,
        retention: RetentionPolicy | None = None,
        work_root: Path | None = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        s = get_settings()
        self.store = store
        self.handlers = dict(handlers)
        self.queues: StageQueueBackend = queues if queues is not None else StageQueues()
        self.reprocess_cache = reprocess_cache
        self.policy = policy or RetryPolicy(
            max_attempts=int(s.stage_max_attempts), base_delay_s=float(s.stage_backoff_base_s)
        )
        self.stage_timeout_s = float(stage_timeout_s if stage_timeout_s is not None else s.stage_timeout_s)
        self.poll_interval_s = float(
            poll_interval_s if poll_interval_s is not None else s.stage_poll_interval_s
        )
        self.retention = retention or RetentionPolicy.from_settings()
        self.work_root = Path(work_root or (Path(s.output_dir) / "jobs"))
        self._clock = clock
        self._wall_clock = wall_clock
        self._sleep = sleep

        if isinstance(concurrency, dict):
            self.concurrency = {st: max(1, int(concurrency.get(st, 1))) for st in STAGE_ORDER}
        elif concurrency is not None:
            self.concurrency = {st: max(1, int(concurrency)) for st in STAGE_ORDER}
        else:
            self.concurrency = {st: s.concurrency_for(st.value) for st in STAGE_ORDER}
        limit, window = rate_limit or (int(s.stage_rate_max), float(s.stage_rate_window_s))
        self._limiters = {
            st: SlidingWindowLimiter(limit=limit, window_s=window, clock=clock) for st in STAGE_ORDER
        }

        self._lock = threading.RLock()
        self._canceled: set[str] = set()
        self._dispatchers: list[asyncio.Task[None]] = []
        self._inflight: set[asyncio.Task[None]] = set()
        self._cleanup_task: asyncio.Task[None] | None = None
        self._stopping: asyncio.Event | None = None

    # --- public contract ---

    def submit(self, payload: dict[str, Any]) -> str:
        """
        Validate and register a job; re-submitting a known id returns it unchanged.

        Raises SubmissionError / StylePreferencesError on invalid input.
        """
        sub = parse_submission(payload)
        metadata = dict(sub.metadata)
        if metadata.get("subtitle_preferences") is not None:
            metadata["subtitle_preferences"] = parse_preferences(
                metadata["subtitle_preferences"]
            ).model_dump()
        job_id = sub.id or new_id()

        def factory() -> Job:
            ts = now_utc()
            job = Job(
                id=job_id,
                source=sub.source.to_ref(),
                target_duration_s=float(sub.target_duration_s),
                clip_count=int(sub.clip_count),
                created_at=ts,
                updated_at=ts,
                metadata=metadata,
            )
            _event(job, "submitted")
            return job

        with self._lock:
            _job, created = self.store.get_or_create(job_id, factory)
            if created:
                now = self._clock()
                self.queues.enqueue(
                    QueueEntry(job_id=job_id, stage=STAGE_ORDER[0], available_at=now, enqueued_at=now)
                )
        if created:
            metrics.jobs_submitted.inc()
            logger.info("job_submitted", job_id=job_id, source=sub.source.kind)
        else:
            metrics.jobs_deduplicated.inc()
            logger.info("job_submit_deduplicated", job_id=job_id)
        return job_id

    def get_job(self, job_id: str) -> Job:
        job = self.store.get(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job

    def status(self, job_id: str) -> dict[str, Any]:
        return self.get_job(job_id).status_view()

    def cancel(self, job_id: str) -> bool:
        """
        Remove a non-terminal job. False when unknown or already finished.
        A running stage is not interrupted; its result is discarded.
        """
        with self._lock:
            job = self.store.get(job_id)
            if job is None or job.status.terminal:
                return False
            active = self.queues.is_active(job_id)
            self.queues.remove(job_id)
            if active:
                self._canceled.add(job_id)
            self.store.delete_job(job_id)
        metrics.jobs_canceled.inc()
        logger.info("job_canceled", job_id=job_id, in_flight=active)
        return True

    def cleanup(self, *, now: float | None = None) -> dict[str, int]:
        """
        Evict terminal jobs outside the retention windows.
        """
        t = self._wall_clock() if now is None else float(now)
        evicted = {"completed": 0, "failed": 0}
        for job in select_evictions(self.store.list(limit=None), now=t, policy=self.retention):
            with self._lock:
                if not self.store.delete_job(job.id):
                    continue
            with suppress(Exception):
                purge_job_dir(job.id, root=self.work_root)
            evicted[job.status.value] += 1
            with suppress(Exception):
                metrics.jobs_evicted.labels(state=job.status.value).inc()
        if self.reprocess_cache is not None:
            with self._lock, suppress(Exception):
                self.reprocess_cache.purge_expired_sources()
        if evicted["completed"] or evicted["failed"]:
            logger.info("retention_cleanup", **evicted)
        return evicted

    def health(self) -> dict[str, Any]:
        counts = self.queues.counts(self._clock())
        for st, c in counts.items():
            with suppress(Exception):
                metrics.stage_queue_depth.labels(stage=st.value).set(c.waiting + c.delayed)
        return {
            "running": self.running,
            "stages": {st.value: c.to_dict() for st, c in counts.items()},
            "jobs": self.store.counts(),
        }

    # --- lifecycle ---

    @property
    def running(self) -> bool:
        return bool(self._dispatchers) and not (self._stopping and self._stopping.is_set())

    def recover(self) -> int:
        """
        Re-enqueue non-terminal jobs that no stage queue owns (after a restart).
        """
        n = 0
        now = self._clock()
        for job in self.store.list(limit=None):
            if job.status.terminal or job.stage is None:
                continue
            if self.queues.owner(job.id) is not None:
                continue
            attempt = int(job.attempts.get(job.stage.value, 0))
            # A running attempt died with the process; a queued job with a
            # failure recorded is waiting out the backoff of attempt n.
            if job.status == JobStatus.active or job.failed_reason:
                attempt += 1
            entry = QueueEntry(
                job_id=job.id,
                stage=job.stage,
                attempt=max(1, attempt),
                available_at=now,
                enqueued_at=now,
                last_error=job.failed_reason,
            )
            if self.queues.enqueue(entry):
                n += 1
        if n:
            logger.info("jobs_recovered", count=n)
        return n

    async def start(self) -> None:
        if self._dispatchers:
            return
        self._stopping = asyncio.Event()
        self.recover()
        self._dispatchers = [
            asyncio.create_task(self._dispatch(st), name=f"dispatch:{st.value}") for st in STAGE_ORDER
        ]
        self._cleanup_task = asyncio.create_task(self._cleanup_loop(), name="retention")
        logger.info("orchestrator_started", concurrency={k.value: v for k, v in self.concurrency.items()})

    async def stop(self) -> None:
        if self._stopping is not None:
            self._stopping.set()
        tasks = [*self._dispatchers, *self._inflight]
        if self._cleanup_task is not None:
            tasks.append(self._cleanup_task)
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._dispatchers = []
        self._inflight.clear()
        self._cleanup_task = None
        logger.info("orchestrator_stopped")

    async def wait_idle(self, *, timeout_s: float = 30.0, poll_s: float = 0.01) -> None:
        """Wait (real time) until no job is queued or running."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + float(timeout_s)
        while not (self.queues.idle() and not self._inflight):
            if loop.time() > deadline:
                raise TimeoutError("pipeline did not go idle")
            await asyncio.sleep(poll_s)

    async def run_until_idle(self, *, max_rounds: int = 100_000) -> None:
        """
        Drive all stages from the calling task until every queue is drained.

        Honors concurrency and rate limits; waits for delayed entries through
        the injected sleep, so a fake clock makes retries instantaneous.
        """
        for _ in range(int(max_rounds)):
            if self.queues.idle():
                return
            now = self._clock()
            batch: list[QueueEntry] = []
            for st in STAGE_ORDER:
                limiter = self._limiters[st]
                taken = 0
                while taken < self.concurrency[st] and limiter.retry_after(now) <= 0:
                    entry = self.queues.dequeue_ready(st, now)
                    if entry is None:
                        break
                    limiter.allow(now)
                    batch.append(entry)
                    taken += 1
            if batch:
                await asyncio.gather(*(self._process(e) for e in batch))
                continue
            await self._sleep(self._idle_wait(now))
        raise RuntimeError("pipeline did not go idle")

    def _idle_wait(self, now: float) -> float:
        waits: list[float] = []
        for st in STAGE_ORDER:
            at = self.queues.next_ready_at(st)
            if at is None:
                continue
            waits.append(max(at - now, self._limiters[st].retry_after(now)))
        return max(0.0, min(waits)) if waits else self.poll_interval_s

    # --- dispatch ---

    async def _dispatch(self, stage: Stage) -> None:
        sem = asyncio.Semaphore(self.concurrency[stage])
        limiter = self._limiters[stage]
        assert self._stopping is not None
        while not self._stopping.is_set():
            await sem.acquire()
            try:
                entry = await self._next_ready(stage, limiter)
            except BaseException:
                sem.release()
                raise
            if entry is None:
                sem.release()
                return
            task = asyncio.create_task(self._run_entry(entry, sem))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)

    async def _next_ready(self, stage: Stage, limiter: SlidingWindowLimiter) -> QueueEntry | None:
        assert self._stopping is not None
        while not self._stopping.is_set():
            now = self._clock()
            wait = limiter.retry_after(now)
            if wait <= 0:
                entry = self.queues.dequeue_ready(stage, now)
                if entry is not None:
                    limiter.allow(now)
                    return entry
                at = self.queues.next_ready_at(stage)
                wait = self.poll_interval_s if at is None else max(0.0, at - now)
            await self._sleep(min(wait, self.poll_interval_s))
        return None

    async def _run_entry(self, entry: QueueEntry, sem: asyncio.Semaphore) -> None:
        try:
            await self._process(entry)
        finally:
            sem.release()

    async def _cleanup_loop(self) -> None:
        interval = float(get_settings().cleanup_interval_s)
        assert self._stopping is not None
        while not self._stopping.is_set():
            await self._sleep(interval)
            try:
                await asyncio.to_thread(self.cleanup)
            except Exception as ex:
                logger.warning("retention_cleanup_failed", error=str(ex))

    # --- stage execution ---

    async def _process(self, entry: QueueEntry) -> None:
        job_id, stage = entry.job_id, entry.stage
        set_job_context(job_id, stage.value)
        try:
            if entry.attempt > self.policy.max_attempts:
                self._finalize_failure(entry)
                return

            def begin(j: Job) -> None:
                fsm.start_stage(j, stage, entry.attempt)
                _event(j, "stage_started", stage=stage.value, attempt=entry.attempt)

            with self._lock:
                job = self.store.mutate(job_id, begin)
                if job is None:
                    self.queues.release(job_id)
                    return
            logger.info("stage_started", attempt=entry.attempt)

            outcome = await self.execute_stage(job, entry)

            with self._lock:
                if self._discard_if_canceled(job_id):
                    return
                if outcome.ok:
                    self._on_success(job, entry, outcome)
                else:
                    self._on_failure(entry, outcome)
        except Exception as ex:
            logger.exception("stage_dispatch_error", error=str(ex))
            with self._lock, suppress(Exception):
                self._fail_job(job_id, stage, f"internal error: {ex}")
        finally:
            set_job_context(None)

    async def execute_stage(self, job: Job, entry: QueueEntry) -> StageOutcome:
        """
        Run one attempt of a stage handler and report the outcome; never raises
        for handler errors or timeouts.
        """
        stage = entry.stage
        handler = self.handlers.get(stage)
        t0 = time.perf_counter()
        metrics.stage_attempts.labels(stage=stage.value).inc()
        try:
            if handler is None:
                raise StageError(stage.value, f"no handler registered for {stage.value}")
            ctx = StageContext(
                job_id=job.id,
                stage=stage,
                attempt=entry.attempt,
                source=job.source,
                target_duration_s=job.target_duration_s,
                clip_count=job.clip_count,
                work_dir=self.work_root / job.id,
                data=dict(job.data),
                metadata=dict(job.metadata),
            )
            ctx.work_dir.mkdir(parents=True, exist_ok=True)
            if inspect.iscoroutinefunction(handler):
                pending = handler(ctx)
            else:
                pending = asyncio.to_thread(handler, ctx)
            try:
                output = await asyncio.wait_for(pending, timeout=self.stage_timeout_s)
            except asyncio.TimeoutError as ex:
                raise StageTimeout(stage.value, self.stage_timeout_s) from ex
            if inspect.isawaitable(output):
                output = await asyncio.wait_for(output, timeout=self.stage_timeout_s)
            if not isinstance(output, dict):
                raise StageError(stage.value, f"handler returned {type(output).__name__}, expected dict")
        except Exception as ex:
            dt = time.perf_counter() - t0
            metrics.stage_errors.labels(stage=stage.value).inc()
            logger.warning("stage_attempt_failed", attempt=entry.attempt, error=str(ex))
            return StageOutcome(
                job_id=job.id,
                stage=stage,
                attempt=entry.attempt,
                ok=False,
                error=f"{ERROR_KINDS[stage]}: {ex}",
                duration_s=dt,
            )
        dt = time.perf_counter() - t0
        with suppress(Exception):
            metrics.stage_seconds.labels(stage=stage.value).observe(dt)
        return StageOutcome(
            job_id=job.id, stage=stage, attempt=entry.attempt, ok=True, output=output, duration_s=dt
        )

    def _discard_if_canceled(self, job_id: str) -> bool:
        if job_id in self._canceled:
            self._canceled.discard(job_id)
            logger.info("stage_result_discarded", reason="canceled")
            return True
        return False

    def _on_success(self, job: Job, entry: QueueEntry, outcome: StageOutcome) -> None:
        stage = entry.stage
        try:
            merged = merge_stage_output(stage, job.data, outcome.output)
        except MergeConflict as ex:
            logger.error("stage_merge_conflict", field=ex.field, error=str(ex))
            self._fail_job(job.id, stage, f"MERGE_CONFLICT: {ex}")
            return

        nxt = next_stage(stage)

        def apply(j: Job) -> None:
            j.data = merged
            _event(j, "stage_completed", stage=stage.value, attempt=entry.attempt,
                   duration_s=round(outcome.duration_s, 3))
            if fsm.advance(j, stage) is None:
                fsm.complete(j, build_result(merged))
                _event(j, "completed")

        updated = self.store.mutate(job.id, apply)
        if updated is None:
            self.queues.release(job.id)
            return
        logger.info("stage_completed", attempt=entry.attempt, next=nxt.value if nxt else None)
        if nxt is not None:
            now = self._clock()
            self.queues.hand_off(
                job.id, QueueEntry(job_id=job.id, stage=nxt, available_at=now, enqueued_at=now)
            )
            return
        self.queues.release(job.id)
        metrics.jobs_finished.labels(state="completed").inc()
        logger.info("job_completed", clips=len(merged.get("clips") or []))
        self._cache_reprocess_data(job.id, merged)

    def _on_failure(self, entry: QueueEntry, outcome: StageOutcome) -> None:
        stage = entry.stage
        reason = outcome.error or f"{stage.value} failed"
        delay = self.policy.backoff_delay(entry.attempt)
        retry = retry_entry(entry, now=self._clock(), delay_s=delay, error=reason)

        def apply(j: Job) -> None:
            fsm.retry_stage(j, stage, reason)
            _event(j, "stage_failed", stage=stage.value, attempt=entry.attempt,
                   error=reason, retry_in_s=delay)

        if self.store.mutate(entry.job_id, apply) is None:
            self.queues.release(entry.job_id)
            return
        self.queues.requeue(retry)
        if not self.policy.exhausted(entry.attempt):
            metrics.stage_retries.labels(stage=stage.value).inc()
        logger.info("stage_backoff", attempt=entry.attempt, delay_s=delay)

    def _finalize_failure(self, entry: QueueEntry) -> None:
        attempts = entry.attempt - 1
        reason = f"{entry.stage.value} failed after {attempts} attempts: {entry.last_error or 'unknown error'}"
        with self._lock:
            self._fail_job(entry.job_id, entry.stage, reason)

    def _fail_job(self, job_id: str, stage: Stage, reason: str) -> None:
        def apply(j: Job) -> None:
            if j.status.terminal:
                return
            fsm.fail(j, reason)
            _event(j, "failed", stage=stage.value, error=reason)

        job = self.store.mutate(job_id, apply)
        self.queues.release(job_id)
        if job is not None and job.status == JobStatus.failed:
            metrics.jobs_finished.labels(state="failed").inc()
            logger.error("job_failed", reason=reason)

    def _cache_reprocess_data(self, job_id: str, data: dict[str, Any]) -> None:
        if self.reprocess_cache is None:
            return
        try:
            cache_job_data(self.reprocess_cache, job_id, data, work_root=self.work_root)
        except Exception as ex:
            logger.warning("reprocess_cache_write_failed", error=str(ex))
