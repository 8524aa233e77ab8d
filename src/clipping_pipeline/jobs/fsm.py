"""
Pipeline state machine.

States are "queued", the stage names, "completed" and "failed". Only the
orchestrator calls these functions; they mutate the Job in place and raise
IllegalTransition for anything else.
"""

from __future__ import annotations

from typing import Any

from clipping_pipeline.jobs.errors import IllegalTransition
from clipping_pipeline.jobs.models import (
    STAGE_ORDER,
    STAGE_PROGRESS,
    Job,
    JobStatus,
    Stage,
    next_stage,
    now_utc,
)

QUEUED = "queued"
COMPLETED = "completed"
FAILED = "failed"

TERMINAL_STATES = frozenset({COMPLETED, FAILED})


def allowed_targets(state: str) -> frozenset[str]:
    if state in TERMINAL_STATES:
        return frozenset()
    if state == QUEUED:
        return frozenset({STAGE_ORDER[0].value, FAILED})
    stage = Stage(state)
    nxt = next_stage(stage)
    # Re-entering the same stage is a retry.
    targets = {stage.value, FAILED}
    targets.add(nxt.value if nxt is not None else COMPLETED)
    return frozenset(targets)


def _move(job: Job, target: str) -> None:
    if target not in allowed_targets(job.state):
        raise IllegalTransition(f"job {job.id}: {job.state} -> {target} is not allowed")
    job.state = target


def start_stage(job: Job, stage: Stage, attempt: int) -> None:
    if job.state != stage.value:
        _move(job, stage.value)
    job.stage = stage
    job.status = JobStatus.active
    job.attempts[stage.value] = int(attempt)


def retry_stage(job: Job, stage: Stage, reason: str) -> None:
    if job.state != stage.value:
        raise IllegalTransition(f"job {job.id}: retry of {stage.value} from {job.state}")
    job.status = JobStatus.queued
    job.failed_reason = reason


def advance(job: Job, stage: Stage) -> Stage | None:
    """
    Mark `stage` done. Returns the next stage (job queued there) or None when
    `stage` was the last one; the caller then calls `complete`.
    """
    if job.state != stage.value:
        raise IllegalTransition(f"job {job.id}: advance from {stage.value} while {job.state}")
    job.progress = max(int(job.progress), STAGE_PROGRESS[stage])
    job.failed_reason = None
    nxt = next_stage(stage)
    if nxt is not None:
        _move(job, nxt.value)
        job.stage = nxt
        job.status = JobStatus.queued
    return nxt


def complete(job: Job, result: dict[str, Any]) -> None:
    _move(job, COMPLETED)
    job.status = JobStatus.completed
    job.progress = 100
    job.result = result
    job.failed_reason = None
    job.finished_on = now_utc()


def fail(job: Job, reason: str) -> None:
    _move(job, FAILED)
    job.status = JobStatus.failed
    job.failed_reason = reason
    job.finished_on = now_utc()
